"""
Session Manager — lifecycle of legislative sessions and the laws they hold.

Session lifecycle:
    DRAFT → ACTIVE → FINISHED
    DRAFT | ACTIVE → CANCELLED

Transitions cascade into laws:
    activate : session registered on the ledger, then each draft law
               registered and opened for voting (per-law failures reported)
    finish   : ledger finalization best-effort, every open law resolved
               approved (favor > against) or rejected
    cancel   : every law cancelled regardless of its state

All ledger traffic goes through the ReconciliationEngine. Session-level
transitions hold the session lock, then each law's lock.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

import pydantic

from legis_ledger.domain.results import (
    CancellationReport,
    FinishReport,
    RegistrationReport,
    VoterVoteView,
)
from legis_ledger.domain.schema import (
    Law,
    LawCategory,
    LawState,
    Session,
    SessionState,
    VotingType,
)
from legis_ledger.errors import (
    ConflictError,
    InvalidStateError,
    LedgerError,
    PreconditionFailedError,
    ValidationError,
)
from legis_ledger.governance.deadline import storage_call
from legis_ledger.governance.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

OPEN_LAW_STATES = frozenset({LawState.DRAFT, LawState.VOTING})


class SessionManager:
    """
    Manages sessions and their laws on top of a repository and a reconciliation engine.

    The manager never talks to the ledger directly and never keeps entities
    between calls: every operation loads what it needs, mutates it and saves it.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        default_quorum_percentage: int = 50,
        default_voting_type: VotingType = VotingType.SIMPLE,
    ) -> None:
        """
        Args:
            engine: Reconciliation engine; its repository, lock registry and
                timeout are shared by the manager.
            default_quorum_percentage: Quorum for sessions created without one.
            default_voting_type: Voting type for sessions created without one.
        """
        self.engine = engine
        self.repository = engine.repository
        self.locks = engine.locks
        self.default_quorum_percentage = default_quorum_percentage
        self.default_voting_type = default_voting_type

    # ── Session CRUD ────────────────────────────────────────────

    async def create_session(
        self,
        title: str,
        description: str,
        scheduled_date: date,
        quorum_percentage: int | None = None,
        voting_type: VotingType | str | None = None,
        created_by: UUID | None = None,
    ) -> Session:
        """
        Create a session in DRAFT.

        Raises:
            ValidationError: Title, description or quorum out of range.
        """
        session = _build(
            Session,
            title=title,
            description=description,
            scheduled_date=scheduled_date,
            quorum_percentage=(
                self.default_quorum_percentage if quorum_percentage is None else quorum_percentage
            ),
            voting_type=voting_type or self.default_voting_type,
            created_by=created_by,
        )
        await self._store(self.repository.save_session(session), "save_session")
        logger.info("Session created: %s '%s' on %s", str(session.id)[:8], title[:80], scheduled_date)
        return session

    async def get_session(self, session_id: UUID) -> Session:
        return await self._store(self.repository.load_session(session_id), "load_session")

    async def update_session(self, session_id: UUID, changes: dict[str, Any]) -> Session:
        """
        Apply allow-listed field changes; unknown keys are silently ignored.

        Raises:
            InvalidStateError: The session is finished or cancelled.
            ValidationError: An allowed field got an invalid value.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            applied = session.apply_updates(changes)
            if applied:
                await self._store(self.repository.save_session(session), "save_session")
                logger.info("Session %s updated: %s", str(session.id)[:8], ", ".join(applied))
        return session

    async def delete_draft(self, session_id: UUID) -> None:
        """
        Delete a draft session and all of its laws.

        Raises:
            InvalidStateError: The session has left draft.
            ConflictError: One of its laws carries votes.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            session.ensure_deletable()
            laws = await self.list_laws(session_id)
            voted = [law for law in laws if law.tally.has_votes]
            if voted:
                raise ConflictError(
                    f"Session {session.id} has {len(voted)} law(s) with votes and cannot be deleted"
                )
            for law in laws:
                await self._store(self.repository.delete_law(law.id), "delete_law")
            await self._store(self.repository.delete_session(session.id), "delete_session")
        logger.info("Draft session %s deleted with %d law(s)", str(session_id)[:8], len(laws))

    # ── Lifecycle ───────────────────────────────────────────────

    async def activate(self, session_id: UUID) -> RegistrationReport:
        """
        Register the session on the ledger and open its laws for voting.

        The session stays in draft if its own ledger registration fails.
        Once it is active, each law is registered independently: a law whose
        registration fails stays in draft and the report status is PARTIAL.

        Raises:
            InvalidStateError: The session is not in draft.
            PreconditionFailedError: The session has no laws.
            LedgerError: Registering the session itself failed.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            session.ensure_can_activate()

            receipt = await self.engine.register_session(session)
            session.activate(receipt.ledger_session_id, receipt.tx_ref)
            await self._store(self.repository.save_session(session), "save_session")

            outcomes = await self.engine.register_laws(session, list(session.law_ids))

        report = RegistrationReport(session=session, outcomes=outcomes)
        logger.info(
            "Session %s activated: ledger=#%d laws_registered=%d laws_failed=%d",
            str(session.id)[:8], session.ledger_session_id,
            report.registered_count, report.failed_count,
        )
        return report

    async def retry_law_registration(self, session_id: UUID) -> RegistrationReport:
        """
        Register every draft law of an active session on the ledger.

        Covers laws whose registration failed during activation and laws
        added after activation.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            if session.state != SessionState.ACTIVE:
                raise InvalidStateError(
                    f"Session {session.id} is {session.state.value}; "
                    f"law registration can only be retried while active"
                )
            if not session.is_on_ledger:
                raise PreconditionFailedError(
                    f"Session {session.id} is not registered on the ledger"
                )
            outcomes = await self.engine.register_laws(session, list(session.law_ids))

        report = RegistrationReport(session=session, outcomes=outcomes)
        logger.info(
            "Law registration retried for session %s: registered=%d failed=%d",
            str(session.id)[:8], report.registered_count, report.failed_count,
        )
        return report

    async def finish(self, session_id: UUID) -> FinishReport:
        """
        Close voting and resolve every open law.

        Ledger finalization is best-effort: a ledger failure is reported in
        the result and the session still finishes locally.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            session.ensure_can_finish()

            ledger_tx_ref: str | None = None
            ledger_error: LedgerError | None = None
            if session.is_on_ledger:
                try:
                    ledger_tx_ref = (await self.engine.finalize_session(session)).tx_ref
                except LedgerError as exc:
                    logger.warning(
                        "Ledger finalization of session %s failed; finishing locally: %s",
                        str(session.id)[:8], exc.message,
                    )
                    ledger_error = exc

            session.finish()
            await self._store(self.repository.save_session(session), "save_session")

            laws: list[Law] = []
            for law_id in session.law_ids:
                async with self.locks.hold(law_id):
                    law = await self._store(self.repository.load_law(law_id), "load_law")
                    if law.state in OPEN_LAW_STATES:
                        law.resolve()
                        await self._store(self.repository.save_law(law), "save_law")
                laws.append(law)

        report = FinishReport(
            session=session, laws=laws, ledger_tx_ref=ledger_tx_ref, ledger_error=ledger_error
        )
        logger.info(
            "Session %s finished: laws=%d approved=%d",
            str(session.id)[:8], len(laws), len(report.approved),
        )
        return report

    async def cancel(self, session_id: UUID) -> CancellationReport:
        """
        Cancel a draft or active session and every law it holds.

        Raises:
            InvalidStateError: The session is already finished or cancelled.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            session.cancel()
            await self._store(self.repository.save_session(session), "save_session")

            laws: list[Law] = []
            for law_id in session.law_ids:
                async with self.locks.hold(law_id):
                    law = await self._store(self.repository.load_law(law_id), "load_law")
                    law.cancel()
                    await self._store(self.repository.save_law(law), "save_law")
                laws.append(law)

        logger.info("Session %s cancelled with %d law(s)", str(session.id)[:8], len(laws))
        return CancellationReport(session=session, laws=laws)

    # ── Laws ────────────────────────────────────────────────────

    async def add_law(
        self,
        session_id: UUID,
        title: str,
        description: str,
        category: LawCategory | str = LawCategory.OTHER,
        created_by: UUID | None = None,
    ) -> Law:
        """
        Create a draft law and append it to the session's law order.

        Raises:
            InvalidStateError: The session is finished or cancelled.
            ValidationError: Title, description or category invalid.
        """
        async with self.locks.hold(session_id):
            session = await self.get_session(session_id)
            session.ensure_accepts_laws()
            law = _build(
                Law,
                session_id=session.id,
                title=title,
                description=description,
                category=category,
                created_by=created_by,
            )
            await self._store(self.repository.save_law(law), "save_law")
            session.attach_law(law.id)
            await self._store(self.repository.save_session(session), "save_session")

        logger.info("Law %s added to session %s: '%s'", str(law.id)[:8], str(session.id)[:8], title[:80])
        return law

    async def update_law(self, law_id: UUID, changes: dict[str, Any]) -> Law:
        """
        Apply allow-listed field changes (title, description, category).

        Other keys are silently ignored.

        Raises:
            InvalidStateError: The law is already resolved or cancelled.
        """
        async with self.locks.hold(law_id):
            law = await self._store(self.repository.load_law(law_id), "load_law")
            if law.state not in OPEN_LAW_STATES:
                raise InvalidStateError(
                    f"Law {law.id} is {law.state.value} and can no longer be edited"
                )
            applied = law.apply_updates(changes)
            if applied:
                await self._store(self.repository.save_law(law), "save_law")
                logger.info("Law %s updated: %s", str(law.id)[:8], ", ".join(applied))
        return law

    async def remove_law(self, law_id: UUID) -> None:
        """
        Delete a law that has no votes and detach it from its session.

        Raises:
            InvalidStateError: The owning session is finished or cancelled.
            ConflictError: The law carries votes.
        """
        law = await self._store(self.repository.load_law(law_id), "load_law")
        async with self.locks.hold(law.session_id):
            session = await self.get_session(law.session_id)
            session.ensure_accepts_laws()
            async with self.locks.hold(law_id):
                law = await self._store(self.repository.load_law(law_id), "load_law")
                if law.tally.has_votes:
                    raise ConflictError(
                        f"Law {law.id} has {len(law.tally.records)} vote(s) and cannot be removed"
                    )
                await self._store(self.repository.delete_law(law.id), "delete_law")
            session.detach_law(law.id)
            await self._store(self.repository.save_session(session), "save_session")
        logger.info("Law %s removed from session %s", str(law_id)[:8], str(session.id)[:8])

    async def list_laws(self, session_id: UUID) -> list[Law]:
        return await self._store(
            self.repository.list_laws_by_session(session_id), "list_laws_by_session"
        )

    # ── Voter views ─────────────────────────────────────────────

    async def get_voter_vote(self, law_id: UUID, voter_id: UUID) -> VoterVoteView:
        law = await self._store(self.repository.load_law(law_id), "load_law")
        return _vote_view(law, voter_id)

    async def get_voter_votes(self, session_id: UUID, voter_id: UUID) -> list[VoterVoteView]:
        """The voter's vote on every law of the session, in session order."""
        return [_vote_view(law, voter_id) for law in await self.list_laws(session_id)]

    # ── Internal ────────────────────────────────────────────────

    async def _store(self, awaitable, operation: str):
        return await storage_call(awaitable, self.engine.timeout, operation)


def _build(model: type[pydantic.BaseModel], **data: Any):
    try:
        return model(**data)
    except pydantic.ValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error["loc"])
        raise ValidationError(f"Invalid {field}: {error['msg']}", cause=exc) from exc


def _vote_view(law: Law, voter_id: UUID) -> VoterVoteView:
    return VoterVoteView(
        law_id=law.id,
        title=law.title,
        record=law.tally.record_for(voter_id),
        can_vote=law.accepts_votes,
    )
