"""
In-memory repository.

Entities are deep-copied on the way in and on the way out, so callers never
share mutable state through the store; each operation works on its own copy
exactly as it would against a database.
"""

from __future__ import annotations

from uuid import UUID

from legis_ledger.domain.schema import Law, Session, Voter
from legis_ledger.errors import NotFoundError
from legis_ledger.repository.base import Repository


class InMemoryRepository(Repository):
    """Dictionary-backed implementation of the Repository boundary."""

    def __init__(self) -> None:
        self._sessions: dict[UUID, Session] = {}
        self._laws: dict[UUID, Law] = {}
        self._voters: dict[UUID, Voter] = {}

    async def load_session(self, session_id: UUID) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session.model_copy(deep=True)

    async def save_session(self, session: Session) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    async def delete_session(self, session_id: UUID) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise NotFoundError(f"Session {session_id} not found")

    async def load_law(self, law_id: UUID) -> Law:
        law = self._laws.get(law_id)
        if law is None:
            raise NotFoundError(f"Law {law_id} not found")
        return law.model_copy(deep=True)

    async def save_law(self, law: Law) -> None:
        self._laws[law.id] = law.model_copy(deep=True)

    async def delete_law(self, law_id: UUID) -> None:
        if self._laws.pop(law_id, None) is None:
            raise NotFoundError(f"Law {law_id} not found")

    async def list_laws_by_session(self, session_id: UUID) -> list[Law]:
        session = await self.load_session(session_id)
        order = {law_id: index for index, law_id in enumerate(session.law_ids)}
        laws = [law for law in self._laws.values() if law.session_id == session_id]
        laws.sort(key=lambda law: (order.get(law.id, len(order)), law.created_at))
        return [law.model_copy(deep=True) for law in laws]

    async def load_voter(self, voter_id: UUID) -> Voter:
        voter = self._voters.get(voter_id)
        if voter is None:
            raise NotFoundError(f"Voter {voter_id} not found")
        return voter.model_copy(deep=True)

    async def save_voter(self, voter: Voter) -> None:
        self._voters[voter.id] = voter.model_copy(deep=True)

    async def list_voters(self) -> list[Voter]:
        return [voter.model_copy(deep=True) for voter in self._voters.values()]
