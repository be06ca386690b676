"""
Operation results for the voting core.

Every operation that can partially succeed returns one of these records, so
callers can distinguish "fully succeeded", "succeeded with partial failures"
and "failed" from ``status`` rather than from message text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from legis_ledger.domain.schema import Law, Session, VoteRecord, VoteTally, VoteValue, Voter
from legis_ledger.errors import LedgerError, LegislatureError
from legis_ledger.ledger.client import LedgerTally


class OperationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


def fanout_status(succeeded: int, failed: int) -> OperationStatus:
    """Status of a best-effort fan-out given its per-item outcomes."""
    if failed == 0:
        return OperationStatus.SUCCEEDED
    if succeeded == 0:
        return OperationStatus.FAILED
    return OperationStatus.PARTIAL


# ── Registration ──────────────────────────────────────────────


@dataclass
class LawRegistrationOutcome:
    law_id: UUID
    title: str
    registered: bool
    ledger_law_id: int | None = None
    tx_ref: str | None = None
    error: LedgerError | None = None


@dataclass
class RegistrationReport:
    """
    Result of activating a session or retrying stranded law registrations.

    The session itself is registered once this report exists; per-law ledger
    failures leave those laws in draft and make the status PARTIAL.
    """

    session: Session
    outcomes: list[LawRegistrationOutcome] = field(default_factory=list)

    @property
    def registered_count(self) -> int:
        return sum(1 for o in self.outcomes if o.registered)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.registered)

    @property
    def status(self) -> OperationStatus:
        if self.failed_count:
            return OperationStatus.PARTIAL
        return OperationStatus.SUCCEEDED


# ── Lifecycle ─────────────────────────────────────────────────


@dataclass
class FinishReport:
    session: Session
    laws: list[Law]
    ledger_tx_ref: str | None = None
    ledger_error: LedgerError | None = None

    @property
    def approved(self) -> list[Law]:
        return [law for law in self.laws if law.is_approved()]

    @property
    def status(self) -> OperationStatus:
        if self.ledger_error is not None:
            return OperationStatus.PARTIAL
        return OperationStatus.SUCCEEDED


@dataclass
class CancellationReport:
    session: Session
    laws: list[Law]

    @property
    def status(self) -> OperationStatus:
        return OperationStatus.SUCCEEDED


# ── Voting ────────────────────────────────────────────────────


@dataclass
class VoteCastResult:
    law_id: UUID
    voter_id: UUID
    value: VoteValue
    previous_value: VoteValue | None
    tx_ref: str
    tally: VoteTally

    @property
    def is_update(self) -> bool:
        return self.previous_value is not None

    @property
    def status(self) -> OperationStatus:
        return OperationStatus.SUCCEEDED


@dataclass
class VoterVoteView:
    """A voter's own vote on one law and whether that law accepts votes."""

    law_id: UUID
    title: str
    record: VoteRecord | None
    can_vote: bool


@dataclass
class LawResults:
    law: Law
    counters: dict[str, int]
    total_counted: int
    approved: bool
    ledger_tally: LedgerTally | None = None
    ledger_error: LedgerError | None = None


# ── Reconciliation ────────────────────────────────────────────


@dataclass
class LawSyncResult:
    law_id: UUID
    updated: bool = False
    skipped: bool = False
    before: dict[str, int] | None = None
    after: dict[str, int] | None = None
    error: LegislatureError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SessionSyncResult:
    session_id: UUID
    results: list[LawSyncResult] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.results if r.updated)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def status(self) -> OperationStatus:
        return fanout_status(len(self.results) - self.failed_count, self.failed_count)


class VoterSyncState(str, Enum):
    SYNC = "sync"
    OUT_OF_SYNC = "out-of-sync"
    ERROR = "error"


@dataclass
class VoterSyncReport:
    voter_id: UUID
    address: str
    state: VoterSyncState
    local_registered: bool
    ledger_registered: bool | None = None
    can_vote: bool = False
    updated: bool = False
    error: LedgerError | None = None


@dataclass
class VoterRosterSyncResult:
    reports: list[VoterSyncReport] = field(default_factory=list)

    @property
    def updated_count(self) -> int:
        return sum(1 for r in self.reports if r.updated)

    @property
    def status(self) -> OperationStatus:
        failed = sum(1 for r in self.reports if r.state == VoterSyncState.ERROR)
        return fanout_status(len(self.reports) - failed, failed)


@dataclass
class VoterRegistrationResult:
    voter: Voter
    tx_ref: str

    @property
    def status(self) -> OperationStatus:
        return OperationStatus.SUCCEEDED
