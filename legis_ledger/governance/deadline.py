"""
Caller deadlines for remote calls.

Every ledger and repository call the core makes is bounded by the operation
timeout. An expired deadline cancels the pending call and surfaces as the
error class of the collaborator that timed out: LedgerError for the ledger,
StorageError for the repository.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from legis_ledger.errors import LedgerError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def ledger_call(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await a ledger call, converting an expired deadline into LedgerError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Ledger call %s exceeded deadline of %.2fs", operation, timeout)
        raise LedgerError(
            f"Ledger call {operation} timed out after {timeout}s", cause=exc
        ) from exc


async def storage_call(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await a repository call, converting an expired deadline into StorageError."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Repository call %s exceeded deadline of %.2fs", operation, timeout)
        raise StorageError(
            f"Repository call {operation} timed out after {timeout}s", cause=exc
        ) from exc
