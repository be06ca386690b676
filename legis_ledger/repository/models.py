"""
Record store — SQLAlchemy models for sessions, laws, vote records and voters.

These tables are the local side of reconciliation. Vote counters on ``laws``
are the values the core maintains (or the ledger's values after a sync);
``vote_records`` keeps one row per (law, voter) for audit.

Column types are portable (``Uuid``, ``JSON``) so the same schema runs on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all record-store models."""
    pass


class SessionDB(Base):
    """A legislative session and its ledger registration."""

    __tablename__ = "sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    scheduled_date = Column(Date, nullable=False)
    state = Column(
        String(20), nullable=False, default="draft",
        comment="draft, active, finished, or cancelled",
    )

    # Ledger registration
    is_on_ledger = Column(Boolean, nullable=False, default=False)
    ledger_session_id = Column(
        Integer, nullable=True, unique=True,
        comment="Session id assigned by the ledger contract",
    )
    ledger_tx_ref = Column(String(66), nullable=True)

    law_order = Column(
        JSON, nullable=False, default=list,
        comment="Ordered law ids (as strings)",
    )
    quorum_percentage = Column(Integer, nullable=False, default=50)
    voting_type = Column(String(20), nullable=False, default="simple")

    created_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_session_state", "state"),
        Index("ix_session_created_at", "created_at"),
    )


class LawDB(Base):
    """A law, its lifecycle state and its vote counters."""

    __tablename__ = "laws"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(
        Uuid(as_uuid=True), ForeignKey("sessions.id"), nullable=False,
    )
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(20), nullable=False, default="other")
    state = Column(
        String(20), nullable=False, default="draft",
        comment="draft, voting, approved, rejected, or cancelled",
    )

    # Ledger registration
    is_on_ledger = Column(Boolean, nullable=False, default=False)
    ledger_law_id = Column(Integer, nullable=True)
    ledger_tx_ref = Column(String(66), nullable=True)

    # Counters (incrementally maintained, or overwritten by reconciliation)
    favor = Column(Integer, nullable=False, default=0)
    against = Column(Integer, nullable=False, default=0)
    abstain = Column(Integer, nullable=False, default=0)
    present = Column(Integer, nullable=False, default=0)
    absent = Column(Integer, nullable=False, default=0)
    counters_source = Column(
        String(10), nullable=False, default="local",
        comment="local or ledger",
    )

    created_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    voting_started_at = Column(DateTime(timezone=True), nullable=True)
    last_vote_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    votes = relationship(
        "VoteRecordDB",
        cascade="all, delete-orphan",
        order_by="VoteRecordDB.position",
    )

    __table_args__ = (
        Index("ix_law_session", "session_id"),
        Index("ix_law_state", "state"),
        UniqueConstraint("session_id", "ledger_law_id", name="uq_law_ledger_id"),
    )


class VoteRecordDB(Base):
    """One voter's current vote on one law."""

    __tablename__ = "vote_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    law_id = Column(
        Uuid(as_uuid=True), ForeignKey("laws.id", ondelete="CASCADE"), nullable=False,
    )
    voter_id = Column(Uuid(as_uuid=True), nullable=False)
    position = Column(
        Integer, nullable=False,
        comment="Order in which the voter first voted on this law",
    )
    value = Column(String(10), nullable=False)
    cast_at = Column(DateTime(timezone=True), nullable=False)
    tx_ref = Column(String(66), nullable=True)

    __table_args__ = (
        UniqueConstraint("law_id", "voter_id", name="uq_vote_per_voter"),
        Index("ix_vote_voter", "voter_id"),
    )


class VoterDB(Base):
    """Legislators known to the record store and their ledger registration flag."""

    __tablename__ = "voters"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, default="")
    address = Column(String(42), nullable=False, unique=True)
    is_registered_on_ledger = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
