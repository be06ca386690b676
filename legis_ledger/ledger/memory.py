"""
In-process ledger — a LedgerClient that keeps the contract state in memory.

Mirrors the contract's observable behavior: sessions and laws get sequential
ids, each voter holds one vote per law, tallies are computed from those votes,
only registered voters may vote, and finalized sessions refuse votes. Every
transaction yields a deterministic 0x-prefixed SHA-256 reference.

Used when no ledger gateway is configured and as the ledger in tests, where
failures and latency can be injected and votes can be written straight to the
ledger to simulate divergence.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import date

from legis_ledger.domain.schema import VoteValue, decode_vote, encode_vote
from legis_ledger.errors import LedgerError, ValidationError
from legis_ledger.ledger.client import (
    ConnectionStatus,
    LawReceipt,
    LedgerClient,
    LedgerReceipt,
    LedgerTally,
    SessionReceipt,
    SigningMaterial,
)

logger = logging.getLogger(__name__)


@dataclass
class _LedgerLaw:
    title: str
    description: str
    votes: dict[str, int] = field(default_factory=dict)  # address -> vote code


@dataclass
class _LedgerSession:
    scheduled_date: str
    description: str
    finalized: bool = False
    laws: dict[int, _LedgerLaw] = field(default_factory=dict)


class InMemoryLedger(LedgerClient):
    """Ledger contract state held in process memory."""

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.sessions: dict[int, _LedgerSession] = {}
        self.voters: set[str] = set()
        self.calls: list[str] = []
        self._failures: dict[str, int] = {}
        self._rejected_titles: set[str] = set()
        self._tx_counter = 0

    # ── Failure injection ───────────────────────────────────────

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls to ``operation`` raise LedgerError."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    def reject_law_title(self, title: str) -> None:
        """Make every registration of a law with this title fail."""
        self._rejected_titles.add(title)

    def record_direct_vote(
        self,
        ledger_session_id: int,
        ledger_law_id: int,
        address: str,
        value: VoteValue,
    ) -> None:
        """Write a vote straight into ledger state, bypassing the local store."""
        self._law(ledger_session_id, ledger_law_id).votes[address.lower()] = encode_vote(value)

    # ── LedgerClient ────────────────────────────────────────────

    async def register_session(self, scheduled_date: date, description: str) -> SessionReceipt:
        await self._enter("register_session")
        session_id = len(self.sessions) + 1
        self.sessions[session_id] = _LedgerSession(
            scheduled_date=scheduled_date.isoformat(), description=description
        )
        return SessionReceipt(ledger_session_id=session_id, tx_ref=self._next_tx())

    async def register_law(
        self, ledger_session_id: int, title: str, description: str
    ) -> LawReceipt:
        await self._enter("register_law")
        if title in self._rejected_titles:
            raise LedgerError(f"Ledger rejected law registration: {title!r}")
        session = self._session(ledger_session_id)
        if session.finalized:
            raise LedgerError(f"Ledger session {ledger_session_id} is finalized")
        law_id = len(session.laws) + 1
        session.laws[law_id] = _LedgerLaw(title=title, description=description)
        return LawReceipt(ledger_law_id=law_id, tx_ref=self._next_tx())

    async def finalize_session(self, ledger_session_id: int) -> LedgerReceipt:
        await self._enter("finalize_session")
        session = self._session(ledger_session_id)
        if session.finalized:
            raise LedgerError(f"Ledger session {ledger_session_id} is already finalized")
        session.finalized = True
        return LedgerReceipt(tx_ref=self._next_tx())

    async def cast_vote(
        self,
        ledger_session_id: int,
        ledger_law_id: int,
        encoded_vote: int,
        signing_material: SigningMaterial,
    ) -> LedgerReceipt:
        await self._enter("cast_vote")
        try:
            decode_vote(encoded_vote)
        except ValidationError as exc:
            raise LedgerError(str(exc), cause=exc) from exc
        address = signing_material.voter_address.lower()
        if address not in self.voters:
            raise LedgerError(f"Address {address} is not a registered voter on the ledger")
        if self._session(ledger_session_id).finalized:
            raise LedgerError(f"Ledger session {ledger_session_id} is finalized")
        self._law(ledger_session_id, ledger_law_id).votes[address] = encoded_vote
        return LedgerReceipt(tx_ref=self._next_tx())

    async def fetch_tally(self, ledger_session_id: int, ledger_law_id: int) -> LedgerTally:
        await self._enter("fetch_tally")
        codes = list(self._law(ledger_session_id, ledger_law_id).votes.values())
        return LedgerTally(
            favor=codes.count(encode_vote(VoteValue.FAVOR)),
            against=codes.count(encode_vote(VoteValue.AGAINST)),
            abstain=codes.count(encode_vote(VoteValue.ABSTAIN)),
            absent=codes.count(encode_vote(VoteValue.ABSENT)),
        )

    async def is_voter_registered(self, address: str) -> bool:
        await self._enter("is_voter_registered")
        return address.lower() in self.voters

    async def register_voter(self, address: str) -> LedgerReceipt:
        await self._enter("register_voter")
        if address.lower() in self.voters:
            raise LedgerError(f"Address {address} is already registered on the ledger")
        self.voters.add(address.lower())
        return LedgerReceipt(tx_ref=self._next_tx())

    async def unregister_voter(self, address: str) -> LedgerReceipt:
        await self._enter("unregister_voter")
        if address.lower() not in self.voters:
            raise LedgerError(f"Address {address} is not registered on the ledger")
        self.voters.discard(address.lower())
        return LedgerReceipt(tx_ref=self._next_tx())

    async def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(connected=True, block_number=self._tx_counter, network_id=0)

    # ── Internal ────────────────────────────────────────────────

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        logger.debug("In-memory ledger call: %s", operation)
        if self.latency:
            await asyncio.sleep(self.latency)
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            raise LedgerError(f"Injected ledger failure in {operation}")

    def _session(self, ledger_session_id: int) -> _LedgerSession:
        session = self.sessions.get(ledger_session_id)
        if session is None:
            raise LedgerError(f"Ledger session {ledger_session_id} does not exist")
        return session

    def _law(self, ledger_session_id: int, ledger_law_id: int) -> _LedgerLaw:
        law = self._session(ledger_session_id).laws.get(ledger_law_id)
        if law is None:
            raise LedgerError(
                f"Ledger law {ledger_law_id} does not exist in session {ledger_session_id}"
            )
        return law

    def _next_tx(self) -> str:
        self._tx_counter += 1
        digest = hashlib.sha256(f"legis-ledger-tx-{self._tx_counter}".encode("utf-8"))
        return "0x" + digest.hexdigest()
