"""
Repository boundary — persistence contract consumed by the voting core.

Each method loads or stores exactly one kind of entity. Nothing is attached
implicitly: a Session carries its ordered law ids, and callers that need the
laws ask for them with ``list_laws_by_session``.

Failures: ``NotFoundError`` when an entity is missing, ``StorageError`` for
anything the backing store cannot do.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

from legis_ledger.domain.schema import Law, Session, Voter


class Repository(ABC):
    """Abstract persistence for sessions, laws and voters."""

    @abstractmethod
    async def load_session(self, session_id: UUID) -> Session: ...

    @abstractmethod
    async def save_session(self, session: Session) -> None: ...

    @abstractmethod
    async def delete_session(self, session_id: UUID) -> None: ...

    @abstractmethod
    async def load_law(self, law_id: UUID) -> Law: ...

    @abstractmethod
    async def save_law(self, law: Law) -> None: ...

    @abstractmethod
    async def delete_law(self, law_id: UUID) -> None: ...

    @abstractmethod
    async def list_laws_by_session(self, session_id: UUID) -> list[Law]:
        """Laws owned by ``session_id`` in the session's law order."""

    @abstractmethod
    async def load_voter(self, voter_id: UUID) -> Voter: ...

    @abstractmethod
    async def save_voter(self, voter: Voter) -> None: ...

    @abstractmethod
    async def list_voters(self) -> list[Voter]: ...
