"""
Ledger Client — capability contract between the voting core and the ledger.

The ledger is the external contract that holds the authoritative vote counts
and the set of registered voters. The core only ever talks to it through
``LedgerClient``; concrete adapters (the HTTP gateway client, the in-process
ledger) are injected where they are needed.

Every method may fail with ``LedgerError``. Retries, signing, and transport
concerns belong to the adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class LedgerReceipt:
    """Proof that a ledger transaction was included."""

    tx_ref: str


@dataclass(frozen=True)
class SessionReceipt:
    ledger_session_id: int
    tx_ref: str


@dataclass(frozen=True)
class LawReceipt:
    ledger_law_id: int
    tx_ref: str


@dataclass(frozen=True)
class LedgerTally:
    """Vote counts as reported by the ledger for one law."""

    favor: int
    against: int
    abstain: int
    absent: int

    def as_dict(self) -> dict[str, int]:
        return {
            "favor": self.favor,
            "against": self.against,
            "abstain": self.abstain,
            "absent": self.absent,
        }


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    block_number: int | None = None
    network_id: int | None = None
    error: str | None = None


class SigningMaterial:
    """
    Opaque credential that lets the ledger adapter sign one voter's transaction.

    Supplied per call by an external signing collaborator. The core passes it
    through untouched; it is never persisted and its repr never shows the secret.
    """

    __slots__ = ("voter_address", "_secret")

    def __init__(self, voter_address: str, secret: str) -> None:
        self.voter_address = voter_address
        self._secret = secret

    def reveal(self) -> str:
        """Hand the secret to a ledger adapter at the moment of signing."""
        return self._secret

    def __repr__(self) -> str:
        return f"SigningMaterial(voter_address={self.voter_address!r}, secret=<redacted>)"

    __str__ = __repr__


class LedgerClient(ABC):
    """Capabilities the voting core needs from the ledger."""

    @abstractmethod
    async def register_session(self, scheduled_date: date, description: str) -> SessionReceipt:
        """Create a session on the ledger."""

    @abstractmethod
    async def register_law(
        self, ledger_session_id: int, title: str, description: str
    ) -> LawReceipt:
        """Create a law under an existing ledger session."""

    @abstractmethod
    async def finalize_session(self, ledger_session_id: int) -> LedgerReceipt:
        """Close a ledger session to further votes."""

    @abstractmethod
    async def cast_vote(
        self,
        ledger_session_id: int,
        ledger_law_id: int,
        encoded_vote: int,
        signing_material: SigningMaterial,
    ) -> LedgerReceipt:
        """Submit one voter's signed vote."""

    @abstractmethod
    async def fetch_tally(self, ledger_session_id: int, ledger_law_id: int) -> LedgerTally:
        """Read the authoritative counts for one law."""

    @abstractmethod
    async def is_voter_registered(self, address: str) -> bool:
        """Whether ``address`` is an eligible voter on the ledger."""

    @abstractmethod
    async def register_voter(self, address: str) -> LedgerReceipt:
        """Add ``address`` to the ledger's voter set."""

    @abstractmethod
    async def unregister_voter(self, address: str) -> LedgerReceipt:
        """Remove ``address`` from the ledger's voter set."""

    @abstractmethod
    async def connection_status(self) -> ConnectionStatus:
        """Report reachability of the ledger. Never raises."""

    async def close(self) -> None:
        """Release transport resources, if any."""
