"""
Reconciliation Engine — the only component that talks to the ledger.

Drives ledger registration of sessions and laws, vote submission, and the
pull direction of synchronization: ledger tallies overwrite local counters,
ledger membership overwrites local voter registration flags.

Ordering rules:
    - A vote is written locally only after the ledger confirmed it. A failed
      or timed-out ledger call leaves nothing to roll back.
    - Vote casting and tally sync on the same law share that law's lock, held
      across load → ledger call → mutate → save.
    - Registration and sync fan-outs are best-effort: one item's LedgerError
      is recorded in its outcome and never aborts the others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar
from uuid import UUID

from legis_ledger.domain.results import (
    LawRegistrationOutcome,
    LawResults,
    LawSyncResult,
    SessionSyncResult,
    VoteCastResult,
    VoterRegistrationResult,
    VoterRosterSyncResult,
    VoterSyncReport,
    VoterSyncState,
)
from legis_ledger.domain.schema import (
    LawState,
    Session,
    SessionState,
    Voter,
    VoteValue,
    decode_vote,
    encode_vote,
)
from legis_ledger.errors import (
    ConflictError,
    InvalidStateError,
    LedgerError,
    NotFoundError,
    PreconditionFailedError,
)
from legis_ledger.governance.deadline import ledger_call, storage_call
from legis_ledger.governance.locks import LockRegistry
from legis_ledger.ledger.client import (
    LedgerClient,
    LedgerReceipt,
    SessionReceipt,
    SigningMaterial,
)
from legis_ledger.repository.base import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Counters the ledger tracks; ``present`` is local-only.
LEDGER_COUNTERS = ("favor", "against", "abstain", "absent")


class ReconciliationEngine:
    """
    Keeps local tallies and voter flags consistent with the ledger.

    Usage:
        engine = ReconciliationEngine(ledger, repository, timeout=10.0)
        result = await engine.cast_vote(law_id, voter_id, VoteValue.FAVOR, signing)
        report = await engine.sync_session(session_id)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        repository: Repository,
        locks: LockRegistry | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Args:
            ledger: Ledger capability used for every remote write and read.
            repository: Record store for sessions, laws and voters.
            locks: Per-entity lock registry shared with the session manager.
            timeout: Deadline in seconds for each ledger or repository call.
        """
        self.ledger = ledger
        self.repository = repository
        self.locks = locks or LockRegistry()
        self.timeout = timeout

    # ── Registration ────────────────────────────────────────────

    async def register_session(self, session: Session) -> SessionReceipt:
        """Register a draft session on the ledger. The session is not modified."""
        receipt = await self._ledger(
            self.ledger.register_session(session.scheduled_date, session.description),
            "register_session",
        )
        logger.info(
            "Session %s registered on ledger as #%d",
            str(session.id)[:8], receipt.ledger_session_id,
        )
        return receipt

    async def register_laws(
        self, session: Session, law_ids: list[UUID]
    ) -> list[LawRegistrationOutcome]:
        """
        Register each draft law of ``law_ids`` under the session's ledger id.

        Laws are registered one after another in the given order so ledger ids
        follow the session's law order. A law whose registration fails stays
        in draft and its outcome carries the error.
        """
        if session.ledger_session_id is None:
            raise PreconditionFailedError(f"Session {session.id} is not registered on the ledger")

        outcomes: list[LawRegistrationOutcome] = []
        for law_id in law_ids:
            async with self.locks.hold(law_id):
                law = await self._store(self.repository.load_law(law_id), "load_law")
                if law.state != LawState.DRAFT:
                    continue
                try:
                    receipt = await self._ledger(
                        self.ledger.register_law(
                            session.ledger_session_id, law.title, law.description
                        ),
                        "register_law",
                    )
                except LedgerError as exc:
                    logger.warning(
                        "Law %s registration failed, left in draft: %s",
                        str(law.id)[:8], exc.message,
                    )
                    outcomes.append(
                        LawRegistrationOutcome(
                            law_id=law.id, title=law.title, registered=False, error=exc
                        )
                    )
                    continue

                law.open_voting(receipt.ledger_law_id, receipt.tx_ref)
                await self._store(self.repository.save_law(law), "save_law")
                outcomes.append(
                    LawRegistrationOutcome(
                        law_id=law.id,
                        title=law.title,
                        registered=True,
                        ledger_law_id=receipt.ledger_law_id,
                        tx_ref=receipt.tx_ref,
                    )
                )
        return outcomes

    async def finalize_session(self, session: Session) -> LedgerReceipt:
        if session.ledger_session_id is None:
            raise PreconditionFailedError(f"Session {session.id} is not registered on the ledger")
        return await self._ledger(
            self.ledger.finalize_session(session.ledger_session_id), "finalize_session"
        )

    # ── Vote casting ────────────────────────────────────────────

    async def cast_vote(
        self,
        law_id: UUID,
        voter_id: UUID,
        value: VoteValue | str,
        signing_material: SigningMaterial,
    ) -> VoteCastResult:
        """
        Cast or change a voter's vote on a law.

        The ledger is written first. Only after it confirms is the tally
        updated, replacing the voter's earlier vote if there is one.

        Raises:
            InvalidStateError: The law is not voting or its session is not active.
            PreconditionFailedError: The voter is not registered on the ledger,
                is inactive, or the signing material belongs to another address.
            LedgerError: The ledger rejected the vote or the call timed out.
        """
        code = encode_vote(value)
        vote = decode_vote(code)

        async with self.locks.hold(law_id):
            law = await self._store(self.repository.load_law(law_id), "load_law")
            if not law.accepts_votes:
                raise InvalidStateError(
                    f"Law {law.id} is {law.state.value}; votes are only accepted while voting"
                )
            session = await self._store(
                self.repository.load_session(law.session_id), "load_session"
            )
            if session.state != SessionState.ACTIVE:
                raise InvalidStateError(
                    f"Session {session.id} is {session.state.value}; votes need an active session"
                )

            voter = await self._store(self.repository.load_voter(voter_id), "load_voter")
            self._ensure_can_vote(voter, signing_material)

            receipt = await self._ledger(
                self.ledger.cast_vote(
                    session.ledger_session_id, law.ledger_law_id, code, signing_material
                ),
                "cast_vote",
            )

            previous = law.record_vote(voter.id, vote, tx_ref=receipt.tx_ref)
            await self._store(self.repository.save_law(law), "save_law")

        logger.info(
            "Vote recorded: law=%s voter=%s value=%s%s",
            str(law.id)[:8], str(voter.id)[:8], vote.value,
            f" (was {previous.value})" if previous else "",
        )
        return VoteCastResult(
            law_id=law.id,
            voter_id=voter.id,
            value=vote,
            previous_value=previous,
            tx_ref=receipt.tx_ref,
            tally=law.tally.model_copy(deep=True),
        )

    @staticmethod
    def _ensure_can_vote(voter: Voter, signing_material: SigningMaterial) -> None:
        if not voter.is_active:
            raise PreconditionFailedError(f"Voter {voter.id} is inactive")
        if not voter.is_registered_on_ledger:
            raise PreconditionFailedError(f"Voter {voter.id} is not registered on the ledger")
        if signing_material.voter_address.lower() != voter.address.lower():
            raise PreconditionFailedError(
                f"Signing material does not belong to voter {voter.id}"
            )

    # ── Tally reconciliation ────────────────────────────────────

    async def sync_law(self, law_id: UUID, session: Session | None = None) -> LawSyncResult:
        """
        Pull the ledger tally for one law and overwrite local counters on any difference.

        Laws that are not on the ledger are skipped. Running it twice with no
        ledger change in between reports ``updated=False`` the second time.
        """
        async with self.locks.hold(law_id):
            law = await self._store(self.repository.load_law(law_id), "load_law")
            if not law.is_on_ledger:
                return LawSyncResult(law_id=law.id, skipped=True)
            if session is None or session.id != law.session_id:
                session = await self._store(
                    self.repository.load_session(law.session_id), "load_session"
                )
            if session.ledger_session_id is None:
                return LawSyncResult(law_id=law.id, skipped=True)

            tally = await self._ledger(
                self.ledger.fetch_tally(session.ledger_session_id, law.ledger_law_id),
                "fetch_tally",
            )
            before = {name: getattr(law.tally, name) for name in LEDGER_COUNTERS}
            after = tally.as_dict()
            if before == after:
                return LawSyncResult(law_id=law.id, before=before, after=after)

            law.tally.overwrite_counters(**after)
            await self._store(self.repository.save_law(law), "save_law")

        logger.info(
            "Tally for law %s overwritten from ledger: %s -> %s",
            str(law.id)[:8], before, after,
        )
        return LawSyncResult(law_id=law.id, updated=True, before=before, after=after)

    async def sync_session(self, session_id: UUID) -> SessionSyncResult:
        """
        Reconcile every law of a ledger-registered session, concurrently.

        A law whose sync fails (ledger error, missing law) is reported in its
        own result; the other laws are still reconciled. A storage failure is
        re-raised once every law has settled.
        """
        session = await self._store(self.repository.load_session(session_id), "load_session")
        if not session.is_on_ledger:
            raise PreconditionFailedError(
                f"Session {session.id} is not registered on the ledger; nothing to reconcile"
            )

        settled = await asyncio.gather(
            *(self._sync_law_captured(law_id, session) for law_id in session.law_ids),
            return_exceptions=True,
        )
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        report = SessionSyncResult(session_id=session.id, results=list(settled))
        logger.info(
            "Session %s synced: laws=%d updated=%d failed=%d",
            str(session.id)[:8], len(report.results), report.updated_count, report.failed_count,
        )
        return report

    async def _sync_law_captured(self, law_id: UUID, session: Session) -> LawSyncResult:
        try:
            return await self.sync_law(law_id, session)
        except (LedgerError, NotFoundError) as exc:
            logger.warning("Sync of law %s failed: %s", str(law_id)[:8], exc.message)
            return LawSyncResult(law_id=law_id, error=exc)

    async def law_results(self, law_id: UUID) -> LawResults:
        """Local results of a law plus, best-effort, the ledger's tally."""
        law = await self._store(self.repository.load_law(law_id), "load_law")
        results = LawResults(
            law=law,
            counters=law.tally.counters(),
            total_counted=law.tally.total_counted,
            approved=law.is_approved(),
        )
        if not law.is_on_ledger:
            return results

        session = await self._store(
            self.repository.load_session(law.session_id), "load_session"
        )
        try:
            results.ledger_tally = await self._ledger(
                self.ledger.fetch_tally(session.ledger_session_id, law.ledger_law_id),
                "fetch_tally",
            )
        except LedgerError as exc:
            logger.warning("Ledger tally for law %s unavailable: %s", str(law.id)[:8], exc.message)
            results.ledger_error = exc
        return results

    # ── Voter registration ──────────────────────────────────────

    async def register_voter(self, voter_id: UUID) -> VoterRegistrationResult:
        return await self._set_registration(voter_id, registered=True)

    async def unregister_voter(self, voter_id: UUID) -> VoterRegistrationResult:
        return await self._set_registration(voter_id, registered=False)

    async def _set_registration(self, voter_id: UUID, registered: bool) -> VoterRegistrationResult:
        async with self.locks.hold(voter_id):
            voter = await self._store(self.repository.load_voter(voter_id), "load_voter")
            if voter.is_registered_on_ledger == registered:
                state = "already registered" if registered else "not registered"
                raise ConflictError(f"Voter {voter.id} is {state} on the ledger")

            if registered:
                receipt = await self._ledger(
                    self.ledger.register_voter(voter.address), "register_voter"
                )
            else:
                receipt = await self._ledger(
                    self.ledger.unregister_voter(voter.address), "unregister_voter"
                )

            voter.is_registered_on_ledger = registered
            await self._store(self.repository.save_voter(voter), "save_voter")

        logger.info(
            "Voter %s %s on ledger",
            str(voter.id)[:8], "registered" if registered else "unregistered",
        )
        return VoterRegistrationResult(voter=voter, tx_ref=receipt.tx_ref)

    async def verify_voter_sync(self, voter_id: UUID) -> VoterSyncReport:
        """
        Compare a voter's local registration flag with the ledger.

        Never raises for ledger trouble: an unreachable ledger yields an
        ``error`` report carrying the cause.
        """
        voter = await self._store(self.repository.load_voter(voter_id), "load_voter")
        return await self._verify(voter)

    async def _verify(self, voter: Voter) -> VoterSyncReport:
        try:
            on_ledger = await self._ledger(
                self.ledger.is_voter_registered(voter.address), "is_voter_registered"
            )
        except LedgerError as exc:
            return VoterSyncReport(
                voter_id=voter.id,
                address=voter.address,
                state=VoterSyncState.ERROR,
                local_registered=voter.is_registered_on_ledger,
                error=exc,
            )

        in_sync = on_ledger == voter.is_registered_on_ledger
        return VoterSyncReport(
            voter_id=voter.id,
            address=voter.address,
            state=VoterSyncState.SYNC if in_sync else VoterSyncState.OUT_OF_SYNC,
            local_registered=voter.is_registered_on_ledger,
            ledger_registered=on_ledger,
            can_vote=on_ledger and voter.is_active,
        )

    async def sync_voters(self) -> VoterRosterSyncResult:
        """Overwrite every out-of-sync local registration flag with the ledger's value."""
        voters = await self._store(self.repository.list_voters(), "list_voters")
        reports = await asyncio.gather(*(self._sync_voter(voter) for voter in voters))
        result = VoterRosterSyncResult(reports=list(reports))
        logger.info(
            "Voter roster synced: voters=%d updated=%d status=%s",
            len(result.reports), result.updated_count, result.status.value,
        )
        return result

    async def _sync_voter(self, listed: Voter) -> VoterSyncReport:
        async with self.locks.hold(listed.id):
            voter = await self._store(self.repository.load_voter(listed.id), "load_voter")
            report = await self._verify(voter)
            if report.state == VoterSyncState.OUT_OF_SYNC:
                voter.is_registered_on_ledger = bool(report.ledger_registered)
                await self._store(self.repository.save_voter(voter), "save_voter")
                report.updated = True
        return report

    # ── Internal ────────────────────────────────────────────────

    async def _ledger(self, awaitable: Awaitable[T], operation: str) -> T:
        return await ledger_call(awaitable, self.timeout, operation)

    async def _store(self, awaitable: Awaitable[T], operation: str) -> T:
        return await storage_call(awaitable, self.timeout, operation)

    def describe(self) -> dict[str, Any]:
        return {
            "ledger": type(self.ledger).__name__,
            "repository": type(self.repository).__name__,
            "timeout": self.timeout,
        }
