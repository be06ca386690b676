"""Shared wiring for the voting-core tests: in-memory store, in-process ledger."""

from __future__ import annotations

import asyncio
import secrets
from datetime import date

from legis_ledger.domain.schema import Law, Session, Voter
from legis_ledger.governance.reconciliation import ReconciliationEngine
from legis_ledger.governance.sessions import SessionManager
from legis_ledger.ledger.client import SigningMaterial
from legis_ledger.ledger.memory import InMemoryLedger
from legis_ledger.repository.base import Repository
from legis_ledger.repository.memory import InMemoryRepository

run = asyncio.run


class Harness:
    """A fully wired core over in-memory collaborators."""

    def __init__(
        self,
        repository: Repository | None = None,
        latency: float = 0.0,
        timeout: float | None = None,
    ) -> None:
        self.repository = repository or InMemoryRepository()
        self.ledger = InMemoryLedger(latency=latency)
        self.engine = ReconciliationEngine(self.ledger, self.repository, timeout=timeout)
        self.manager = SessionManager(self.engine)

    async def session_with_laws(self, *titles: str) -> tuple[Session, list[Law]]:
        session = await self.manager.create_session(
            title="Plenary", description="Ordinary session", scheduled_date=date(2025, 3, 1)
        )
        laws = [
            await self.manager.add_law(session.id, title, f"{title} description")
            for title in titles
        ]
        return await self.manager.get_session(session.id), laws

    async def active_session(self, *titles: str) -> tuple[Session, list[Law]]:
        session, laws = await self.session_with_laws(*titles)
        report = await self.manager.activate(session.id)
        return report.session, [await self.repository.load_law(law.id) for law in laws]

    async def voter(self, registered: bool = True, name: str = "Legislator") -> tuple[Voter, SigningMaterial]:
        """Store a voter and, when ``registered``, enrol the address on the ledger too."""
        address = "0x" + secrets.token_hex(20)
        voter = Voter(name=name, address=address, is_registered_on_ledger=registered)
        await self.repository.save_voter(voter)
        if registered:
            self.ledger.voters.add(address.lower())
        return voter, SigningMaterial(address, secrets.token_hex(32))

    async def voters(self, count: int) -> list[tuple[Voter, SigningMaterial]]:
        return [await self.voter(name=f"Legislator {i}") for i in range(count)]
