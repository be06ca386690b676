"""
Legislative Schema — Pydantic models for sessions, laws, vote tallies and voters.

These models are the canonical data structures of the voting core. They carry
the lifecycle rules that can be checked without touching the ledger or the
repository; anything that needs a remote call lives in the governance layer.

Lifecycles:
    Session : draft → active → finished, draft|active → cancelled
    Law     : draft → voting → approved|rejected, any → cancelled

The vote-value numeric encoding is shared with the ledger contract and is a
fixed bijection: absent=0, present=1, favor=2, against=3, abstain=4.
"""

from __future__ import annotations

import enum
import logging
import re
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, ClassVar
from uuid import UUID, uuid4

import pydantic
from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from legis_ledger.errors import (
    InvalidStateError,
    PreconditionFailedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")
ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class SessionState(str, enum.Enum):
    """Lifecycle states of a legislative session."""

    DRAFT = "draft"
    ACTIVE = "active"
    FINISHED = "finished"
    CANCELLED = "cancelled"


TERMINAL_SESSION_STATES = frozenset({SessionState.FINISHED, SessionState.CANCELLED})


class LawState(str, enum.Enum):
    """Lifecycle states of a law inside a session."""

    DRAFT = "draft"
    VOTING = "voting"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class VotingType(str, enum.Enum):
    SIMPLE = "simple"
    QUALIFIED = "qualified"


class LawCategory(str, enum.Enum):
    ECONOMIC = "economic"
    SOCIAL = "social"
    EDUCATION = "education"
    HEALTH = "health"
    SECURITY = "security"
    ENVIRONMENTAL = "environmental"
    OTHER = "other"


class VoteValue(str, enum.Enum):
    """A legislator's position on a law. The value doubles as the counter name."""

    ABSENT = "absent"
    PRESENT = "present"
    FAVOR = "favor"
    AGAINST = "against"
    ABSTAIN = "abstain"


class CountersSource(str, enum.Enum):
    """Where the tally counters last came from."""

    LOCAL = "local"  # incrementally maintained from vote records
    LEDGER = "ledger"  # overwritten by reconciliation


# ════════════════════════════════════════════════════════════════
# Vote encoding and boundary validation
# ════════════════════════════════════════════════════════════════

VOTE_CODES: dict[VoteValue, int] = {
    VoteValue.ABSENT: 0,
    VoteValue.PRESENT: 1,
    VoteValue.FAVOR: 2,
    VoteValue.AGAINST: 3,
    VoteValue.ABSTAIN: 4,
}
_VOTES_BY_CODE: dict[int, VoteValue] = {code: value for value, code in VOTE_CODES.items()}


def encode_vote(value: VoteValue | str) -> int:
    """Encode a vote value into the ledger's numeric representation."""
    try:
        return VOTE_CODES[VoteValue(value)]
    except ValueError as exc:
        raise ValidationError(f"Unknown vote value: {value!r}") from exc


def decode_vote(code: int) -> VoteValue:
    """Decode the ledger's numeric representation back into a vote value."""
    if isinstance(code, bool) or code not in _VOTES_BY_CODE:
        raise ValidationError(f"Unknown vote code: {code!r}")
    return _VOTES_BY_CODE[code]


def validate_tx_ref(value: str) -> str:
    """Return ``value`` if it is a 32-byte hash rendered as 0x + 64 hex chars."""
    if not isinstance(value, str) or not TX_HASH_PATTERN.match(value):
        raise ValidationError(f"Invalid transaction reference: {value!r}")
    return value


def validate_address(value: str) -> str:
    """Return ``value`` if it is a 20-byte account address (0x + 40 hex chars)."""
    if not isinstance(value, str) or not ADDRESS_PATTERN.match(value):
        raise ValidationError(f"Invalid ledger address: {value!r}")
    return value


def _check_tx_ref(value: str | None) -> str | None:
    if value is not None and not TX_HASH_PATTERN.match(value):
        raise ValueError("transaction reference must be 0x followed by 64 hex characters")
    return value


def _apply_allowed(
    model: BaseModel,
    changes: dict[str, Any],
    allowed: frozenset[str],
) -> list[str]:
    """
    Apply the allow-listed subset of ``changes`` to ``model`` in place.

    Keys outside the allow-list are ignored. The merged result is validated
    as a whole before anything is assigned.

    Returns:
        Names of the fields that were applied.
    """
    accepted = {key: value for key, value in changes.items() if key in allowed}
    if not accepted:
        return []
    try:
        validated = type(model).model_validate({**model.model_dump(), **accepted})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid update: {exc.errors()[0]['msg']}", cause=exc) from exc
    for key in accepted:
        setattr(model, key, getattr(validated, key))
    return sorted(accepted)


# ════════════════════════════════════════════════════════════════
# Vote Tally
# ════════════════════════════════════════════════════════════════


class VoteRecord(BaseModel):
    """One legislator's current vote on one law."""

    voter_id: UUID
    value: VoteValue
    cast_at: datetime = Field(default_factory=utcnow)
    tx_ref: str | None = Field(
        default=None, description="Ledger transaction that carried this vote"
    )

    _validate_tx_ref = field_validator("tx_ref")(_check_tx_ref)


class VoteTally(BaseModel):
    """
    Aggregate counters and per-voter records for one law.

    At most one record exists per voter. While ``counters_source`` is LOCAL
    the counters equal the multiset count of the record values; after a
    reconciliation overwrite they mirror the ledger and the records are kept
    for audit only.
    """

    favor: int = Field(default=0, ge=0)
    against: int = Field(default=0, ge=0)
    abstain: int = Field(default=0, ge=0)
    present: int = Field(default=0, ge=0)
    absent: int = Field(default=0, ge=0)
    records: list[VoteRecord] = Field(default_factory=list)
    counters_source: CountersSource = CountersSource.LOCAL

    @computed_field
    @property
    def total_counted(self) -> int:
        """Votes that take part in approval math (present/absent excluded)."""
        return self.favor + self.against + self.abstain

    @property
    def has_votes(self) -> bool:
        return bool(self.records)

    def counters(self) -> dict[str, int]:
        return {value.value: getattr(self, value.value) for value in VoteValue}

    def recount(self) -> dict[str, int]:
        """Counters recomputed from the vote records."""
        counted = Counter(record.value.value for record in self.records)
        return {value.value: counted.get(value.value, 0) for value in VoteValue}

    def is_consistent(self) -> bool:
        return self.counters() == self.recount()

    def record_for(self, voter_id: UUID) -> VoteRecord | None:
        return next((r for r in self.records if r.voter_id == voter_id), None)

    def apply_vote(
        self,
        voter_id: UUID,
        value: VoteValue | str,
        cast_at: datetime | None = None,
        tx_ref: str | None = None,
    ) -> VoteValue | None:
        """
        Record ``voter_id``'s vote, replacing any earlier vote by the same voter.

        The previous vote's bucket is decremented and its record overwritten in
        place, then the new bucket is incremented. A voter never ends up with
        two records.

        Returns:
            The previous vote value, or None for a first vote.
        """
        replacement = VoteRecord(
            voter_id=voter_id,
            value=VoteValue(value),
            cast_at=cast_at or utcnow(),
            tx_ref=tx_ref,
        )

        previous: VoteValue | None = None
        for index, record in enumerate(self.records):
            if record.voter_id == voter_id:
                previous = record.value
                self._bump(previous, -1)
                self.records[index] = replacement
                break
        else:
            self.records.append(replacement)

        self._bump(replacement.value, +1)
        return previous

    def overwrite_counters(
        self,
        favor: int,
        against: int,
        abstain: int,
        absent: int,
    ) -> None:
        """Replace the ledger-tracked counters with authoritative values."""
        for name, count in (
            ("favor", favor),
            ("against", against),
            ("abstain", abstain),
            ("absent", absent),
        ):
            if count < 0:
                raise ValidationError(f"Negative {name} count from ledger: {count}")
            setattr(self, name, count)
        self.counters_source = CountersSource.LEDGER

    def _bump(self, value: VoteValue, delta: int) -> None:
        current = getattr(self, value.value)
        if current + delta < 0:
            # Only reachable after a ledger overwrite shrank the bucket.
            logger.warning(
                "Tally bucket %s already at zero; keeping ledger count", value.value
            )
            return
        setattr(self, value.value, current + delta)


# ════════════════════════════════════════════════════════════════
# Law
# ════════════════════════════════════════════════════════════════


class Law(BaseModel):
    """A voteable proposal inside exactly one session."""

    UPDATABLE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"title", "description", "category"}
    )

    id: UUID = Field(default_factory=uuid4)
    session_id: UUID
    title: str = Field(min_length=1, max_length=300)
    description: str = Field(min_length=1, max_length=2000)
    category: LawCategory = LawCategory.OTHER
    state: LawState = LawState.DRAFT

    # Ledger registration
    is_on_ledger: bool = False
    ledger_law_id: int | None = None
    ledger_tx_ref: str | None = None

    tally: VoteTally = Field(default_factory=VoteTally)

    created_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
    voting_started_at: datetime | None = None
    last_vote_at: datetime | None = None
    approved_at: datetime | None = None

    _validate_tx_ref = field_validator("ledger_tx_ref")(_check_tx_ref)

    @model_validator(mode="after")
    def _ledger_id_matches_flag(self) -> Law:
        if self.is_on_ledger != (self.ledger_law_id is not None):
            raise ValueError("ledger_law_id must be set exactly when is_on_ledger is true")
        return self

    @property
    def accepts_votes(self) -> bool:
        return self.state == LawState.VOTING

    def is_approved(self) -> bool:
        """Favor strictly greater than against; ties are not approved."""
        return self.tally.favor > self.tally.against

    def open_voting(
        self,
        ledger_law_id: int,
        tx_ref: str,
        at: datetime | None = None,
    ) -> None:
        """Record a successful ledger registration and open the law for votes."""
        if self.state != LawState.DRAFT:
            raise InvalidStateError(
                f"Law {self.id} is {self.state.value}; only draft laws can open voting"
            )
        self.ledger_tx_ref = validate_tx_ref(tx_ref)
        self.ledger_law_id = ledger_law_id
        self.is_on_ledger = True
        self.state = LawState.VOTING
        self.voting_started_at = at or utcnow()

    def record_vote(
        self,
        voter_id: UUID,
        value: VoteValue | str,
        tx_ref: str | None = None,
        at: datetime | None = None,
    ) -> VoteValue | None:
        """Apply a ledger-confirmed vote to the tally."""
        if self.state != LawState.VOTING:
            raise InvalidStateError(
                f"Law {self.id} is {self.state.value}; votes are only accepted while voting"
            )
        at = at or utcnow()
        previous = self.tally.apply_vote(voter_id, value, cast_at=at, tx_ref=tx_ref)
        self.last_vote_at = at
        return previous

    def resolve(self, at: datetime | None = None) -> LawState:
        """Freeze the law as approved or rejected from its current tally."""
        if self.state not in (LawState.DRAFT, LawState.VOTING):
            raise InvalidStateError(
                f"Law {self.id} is already {self.state.value} and cannot be resolved"
            )
        if self.is_approved():
            self.state = LawState.APPROVED
            self.approved_at = at or utcnow()
        else:
            self.state = LawState.REJECTED
        return self.state

    def cancel(self) -> None:
        self.state = LawState.CANCELLED

    def apply_updates(self, changes: dict[str, Any]) -> list[str]:
        return _apply_allowed(self, changes, self.UPDATABLE_FIELDS)


# ════════════════════════════════════════════════════════════════
# Session
# ════════════════════════════════════════════════════════════════


class Session(BaseModel):
    """
    A unit of legislative activity holding an ordered list of laws.

    The session stores law ids only; laws are loaded explicitly by the
    operations that need them.
    """

    UPDATABLE_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"title", "description", "scheduled_date", "voting_type", "quorum_percentage"}
    )

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=1000)
    scheduled_date: date
    state: SessionState = SessionState.DRAFT

    # Ledger registration
    is_on_ledger: bool = False
    ledger_session_id: int | None = None
    ledger_tx_ref: str | None = None

    law_ids: list[UUID] = Field(default_factory=list)
    quorum_percentage: int = Field(default=50, ge=1, le=100)
    voting_type: VotingType = VotingType.SIMPLE

    created_by: UUID | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    ended_at: datetime | None = None

    _validate_tx_ref = field_validator("ledger_tx_ref")(_check_tx_ref)

    @model_validator(mode="after")
    def _ledger_id_matches_flag(self) -> Session:
        if self.is_on_ledger != (self.ledger_session_id is not None):
            raise ValueError(
                "ledger_session_id must be set exactly when is_on_ledger is true"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SESSION_STATES

    @property
    def law_count(self) -> int:
        return len(self.law_ids)

    def ensure_can_activate(self) -> None:
        if self.state != SessionState.DRAFT:
            raise InvalidStateError(
                f"Session {self.id} is {self.state.value}; only draft sessions can be activated"
            )
        if not self.law_ids:
            raise PreconditionFailedError(
                f"Session {self.id} needs at least one law before activation"
            )

    def activate(
        self,
        ledger_session_id: int,
        tx_ref: str,
        at: datetime | None = None,
    ) -> None:
        self.ensure_can_activate()
        self.ledger_tx_ref = validate_tx_ref(tx_ref)
        self.ledger_session_id = ledger_session_id
        self.is_on_ledger = True
        self.state = SessionState.ACTIVE
        self.started_at = at or utcnow()

    def ensure_can_finish(self) -> None:
        if self.state != SessionState.ACTIVE:
            raise InvalidStateError(
                f"Session {self.id} is {self.state.value}; only active sessions can be finished"
            )

    def finish(self, at: datetime | None = None) -> None:
        self.ensure_can_finish()
        self.state = SessionState.FINISHED
        self.ended_at = at or utcnow()

    def cancel(self) -> None:
        if self.is_terminal:
            raise InvalidStateError(
                f"Session {self.id} is already {self.state.value} and cannot be cancelled"
            )
        self.state = SessionState.CANCELLED

    def ensure_deletable(self) -> None:
        if self.state != SessionState.DRAFT:
            raise InvalidStateError(
                f"Session {self.id} is {self.state.value}; only draft sessions can be deleted"
            )

    def ensure_accepts_laws(self) -> None:
        if self.is_terminal:
            raise InvalidStateError(
                f"Session {self.id} is {self.state.value}; laws can no longer be added"
            )

    def attach_law(self, law_id: UUID) -> None:
        if law_id not in self.law_ids:
            self.law_ids.append(law_id)

    def detach_law(self, law_id: UUID) -> None:
        self.law_ids = [existing for existing in self.law_ids if existing != law_id]

    def apply_updates(self, changes: dict[str, Any]) -> list[str]:
        if self.is_terminal:
            raise InvalidStateError(
                f"Session {self.id} is {self.state.value} and can no longer be edited"
            )
        return _apply_allowed(self, changes, self.UPDATABLE_FIELDS)


# ════════════════════════════════════════════════════════════════
# Voter
# ════════════════════════════════════════════════════════════════


class Voter(BaseModel):
    """A legislator as seen by the voting core: identity, address, registration flag."""

    id: UUID = Field(default_factory=uuid4)
    name: str = ""
    address: str = Field(description="Ledger account address (0x + 40 hex)")
    is_registered_on_ledger: bool = False
    is_active: bool = True

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not ADDRESS_PATTERN.match(value):
            raise ValueError("address must be 0x followed by 40 hex characters")
        return value
