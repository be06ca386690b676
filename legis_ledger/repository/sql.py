"""
SQL Repository — the Repository boundary over a relational record store.

Work is done with synchronous SQLAlchemy sessions pushed onto a worker thread
with ``asyncio.to_thread``, so the voting core stays async while the database
driver stays sync.

Each domain model is written as a full row (plus its vote records) and read
back through Pydantic, so malformed rows surface as ValidationError at the
boundary instead of leaking into the core.

Usage:
    repository = SqlRepository(database_url)
    repository.initialize()  # Create tables
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar
from uuid import UUID

import pydantic
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from legis_ledger.domain.schema import Law, Session, Voter
from legis_ledger.errors import NotFoundError, StorageError, ValidationError
from legis_ledger.repository.base import Repository
from legis_ledger.repository.models import Base, LawDB, SessionDB, VoteRecordDB, VoterDB

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlRepository(Repository):
    """
    Record store backed by any SQLAlchemy-supported database.

    SQLite URLs get a single shared connection and serialized access, which
    is what in-memory databases need to be visible across worker threads.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        """
        Args:
            database_url: SQLAlchemy connection string (sync driver).
            echo: Log every SQL statement.
        """
        engine_kwargs: dict[str, Any] = {}
        self._serialize = database_url.startswith("sqlite")
        if self._serialize:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, echo=echo, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Record store initialized: %s", self.engine.url.render_as_string())

    def dispose(self) -> None:
        self.engine.dispose()

    # ── Sessions ────────────────────────────────────────────────

    async def load_session(self, session_id: UUID) -> Session:
        return await self._run(self._load_session, session_id)

    async def save_session(self, session: Session) -> None:
        await self._run(self._save_session, session)

    async def delete_session(self, session_id: UUID) -> None:
        await self._run(self._delete, SessionDB, session_id, "Session")

    # ── Laws ────────────────────────────────────────────────────

    async def load_law(self, law_id: UUID) -> Law:
        return await self._run(self._load_law, law_id)

    async def save_law(self, law: Law) -> None:
        await self._run(self._save_law, law)

    async def delete_law(self, law_id: UUID) -> None:
        await self._run(self._delete, LawDB, law_id, "Law")

    async def list_laws_by_session(self, session_id: UUID) -> list[Law]:
        return await self._run(self._list_laws_by_session, session_id)

    # ── Voters ──────────────────────────────────────────────────

    async def load_voter(self, voter_id: UUID) -> Voter:
        return await self._run(self._load_voter, voter_id)

    async def save_voter(self, voter: Voter) -> None:
        await self._run(self._save_voter, voter)

    async def list_voters(self) -> list[Voter]:
        return await self._run(self._list_voters)

    # ── Internal: execution ─────────────────────────────────────

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(self._call, fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Record store failure in %s: %s", fn.__name__, exc)
            raise StorageError(f"Record store failure: {exc}", cause=exc) from exc

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        if not self._serialize:
            return fn(*args)
        with self._lock:
            return fn(*args)

    def _delete(self, model: type[Base], entity_id: UUID, label: str) -> None:
        with self.SessionLocal() as db:
            row = db.get(model, entity_id)
            if row is None:
                raise NotFoundError(f"{label} {entity_id} not found")
            db.delete(row)
            db.commit()

    # ── Internal: sessions ──────────────────────────────────────

    def _load_session(self, session_id: UUID) -> Session:
        with self.SessionLocal() as db:
            row = db.get(SessionDB, session_id)
            if row is None:
                raise NotFoundError(f"Session {session_id} not found")
            return _session_from_row(row)

    def _save_session(self, session: Session) -> None:
        with self.SessionLocal() as db:
            row = db.get(SessionDB, session.id)
            if row is None:
                row = SessionDB(id=session.id)
                db.add(row)
            row.title = session.title
            row.description = session.description
            row.scheduled_date = session.scheduled_date
            row.state = session.state.value
            row.is_on_ledger = session.is_on_ledger
            row.ledger_session_id = session.ledger_session_id
            row.ledger_tx_ref = session.ledger_tx_ref
            row.law_order = [str(law_id) for law_id in session.law_ids]
            row.quorum_percentage = session.quorum_percentage
            row.voting_type = session.voting_type.value
            row.created_by = session.created_by
            row.created_at = session.created_at
            row.started_at = session.started_at
            row.ended_at = session.ended_at
            db.commit()

    # ── Internal: laws ──────────────────────────────────────────

    def _load_law(self, law_id: UUID) -> Law:
        with self.SessionLocal() as db:
            row = db.get(LawDB, law_id)
            if row is None:
                raise NotFoundError(f"Law {law_id} not found")
            return _law_from_row(row)

    def _save_law(self, law: Law) -> None:
        with self.SessionLocal() as db:
            row = db.get(LawDB, law.id)
            if row is None:
                row = LawDB(id=law.id)
                db.add(row)
            row.session_id = law.session_id
            row.title = law.title
            row.description = law.description
            row.category = law.category.value
            row.state = law.state.value
            row.is_on_ledger = law.is_on_ledger
            row.ledger_law_id = law.ledger_law_id
            row.ledger_tx_ref = law.ledger_tx_ref
            row.favor = law.tally.favor
            row.against = law.tally.against
            row.abstain = law.tally.abstain
            row.present = law.tally.present
            row.absent = law.tally.absent
            row.counters_source = law.tally.counters_source.value
            row.created_by = law.created_by
            row.created_at = law.created_at
            row.voting_started_at = law.voting_started_at
            row.last_vote_at = law.last_vote_at
            row.approved_at = law.approved_at

            # Update vote rows in place: one row per voter.
            existing = {vote.voter_id: vote for vote in row.votes}
            kept: set[UUID] = set()
            for position, record in enumerate(law.tally.records):
                vote = existing.get(record.voter_id)
                if vote is None:
                    vote = VoteRecordDB(voter_id=record.voter_id)
                    row.votes.append(vote)
                vote.position = position
                vote.value = record.value.value
                vote.cast_at = record.cast_at
                vote.tx_ref = record.tx_ref
                kept.add(record.voter_id)
            for voter_id, vote in existing.items():
                if voter_id not in kept:
                    row.votes.remove(vote)
            db.commit()

    def _list_laws_by_session(self, session_id: UUID) -> list[Law]:
        with self.SessionLocal() as db:
            session_row = db.get(SessionDB, session_id)
            if session_row is None:
                raise NotFoundError(f"Session {session_id} not found")
            order = {law_id: index for index, law_id in enumerate(session_row.law_order or [])}
            rows = db.execute(
                select(LawDB).where(LawDB.session_id == session_id)
            ).scalars().all()
            laws = [_law_from_row(row) for row in rows]
        laws.sort(key=lambda law: (order.get(str(law.id), len(order)), law.created_at))
        return laws

    # ── Internal: voters ────────────────────────────────────────

    def _load_voter(self, voter_id: UUID) -> Voter:
        with self.SessionLocal() as db:
            row = db.get(VoterDB, voter_id)
            if row is None:
                raise NotFoundError(f"Voter {voter_id} not found")
            return _voter_from_row(row)

    def _save_voter(self, voter: Voter) -> None:
        with self.SessionLocal() as db:
            row = db.get(VoterDB, voter.id)
            if row is None:
                row = VoterDB(id=voter.id)
                db.add(row)
            row.name = voter.name
            row.address = voter.address
            row.is_registered_on_ledger = voter.is_registered_on_ledger
            row.is_active = voter.is_active
            db.commit()

    def _list_voters(self) -> list[Voter]:
        with self.SessionLocal() as db:
            rows = db.execute(select(VoterDB).order_by(VoterDB.name)).scalars().all()
            return [_voter_from_row(row) for row in rows]


# ════════════════════════════════════════════════════════════════
# Row ↔ model mapping
# ════════════════════════════════════════════════════════════════


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validated(model: type[pydantic.BaseModel], data: dict[str, Any], label: str):
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Stored {label} is malformed: {exc}", cause=exc) from exc


def _session_from_row(row: SessionDB) -> Session:
    return _validated(
        Session,
        {
            "id": row.id,
            "title": row.title,
            "description": row.description,
            "scheduled_date": row.scheduled_date,
            "state": row.state,
            "is_on_ledger": row.is_on_ledger,
            "ledger_session_id": row.ledger_session_id,
            "ledger_tx_ref": row.ledger_tx_ref,
            "law_ids": list(row.law_order or []),
            "quorum_percentage": row.quorum_percentage,
            "voting_type": row.voting_type,
            "created_by": row.created_by,
            "created_at": _aware(row.created_at),
            "started_at": _aware(row.started_at),
            "ended_at": _aware(row.ended_at),
        },
        f"session {row.id}",
    )


def _law_from_row(row: LawDB) -> Law:
    tally = {
        "favor": row.favor,
        "against": row.against,
        "abstain": row.abstain,
        "present": row.present,
        "absent": row.absent,
        "counters_source": row.counters_source,
        "records": [
            {
                "voter_id": vote.voter_id,
                "value": vote.value,
                "cast_at": _aware(vote.cast_at),
                "tx_ref": vote.tx_ref,
            }
            for vote in row.votes
        ],
    }
    return _validated(
        Law,
        {
            "id": row.id,
            "session_id": row.session_id,
            "title": row.title,
            "description": row.description,
            "category": row.category,
            "state": row.state,
            "is_on_ledger": row.is_on_ledger,
            "ledger_law_id": row.ledger_law_id,
            "ledger_tx_ref": row.ledger_tx_ref,
            "tally": tally,
            "created_by": row.created_by,
            "created_at": _aware(row.created_at),
            "voting_started_at": _aware(row.voting_started_at),
            "last_vote_at": _aware(row.last_vote_at),
            "approved_at": _aware(row.approved_at),
        },
        f"law {row.id}",
    )


def _voter_from_row(row: VoterDB) -> Voter:
    return _validated(
        Voter,
        {
            "id": row.id,
            "name": row.name,
            "address": row.address,
            "is_registered_on_ledger": row.is_registered_on_ledger,
            "is_active": row.is_active,
        },
        f"voter {row.id}",
    )
