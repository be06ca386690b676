"""
Legis Ledger — Service wiring.

Builds the collaborators of the voting core from configuration:
1. Record store (SQL database, schema created on first use)
2. Ledger client (HTTP gateway when configured, in-process ledger otherwise)
3. Reconciliation engine and session manager sharing one lock registry

Nothing here is process-global: every call to ``build_services`` returns an
independent bundle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import structlog

from legis_ledger.config import LegisSettings, settings as default_settings
from legis_ledger.governance.locks import LockRegistry
from legis_ledger.governance.reconciliation import ReconciliationEngine
from legis_ledger.governance.sessions import SessionManager
from legis_ledger.ledger.client import LedgerClient
from legis_ledger.ledger.http_client import HttpLedgerClient
from legis_ledger.ledger.memory import InMemoryLedger
from legis_ledger.repository.base import Repository
from legis_ledger.repository.sql import SqlRepository

logger = logging.getLogger(__name__)


def configure_logging(settings: LegisSettings = default_settings) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")


@dataclass
class Services:
    """The wired voting core."""

    repository: Repository
    ledger: LedgerClient
    engine: ReconciliationEngine
    sessions: SessionManager

    async def close(self) -> None:
        await self.ledger.close()
        if isinstance(self.repository, SqlRepository):
            self.repository.dispose()


def build_ledger(settings: LegisSettings) -> LedgerClient:
    if settings.ledger_gateway_url:
        return HttpLedgerClient(
            settings.ledger_gateway_url,
            api_key=settings.ledger_api_key,
            timeout=settings.ledger_http_timeout_seconds,
        )
    logger.warning("No ledger gateway configured; using the in-process ledger")
    return InMemoryLedger()


def build_services(
    settings: LegisSettings = default_settings,
    repository: Repository | None = None,
    ledger: LedgerClient | None = None,
) -> Services:
    """
    Wire repository, ledger client, reconciliation engine and session manager.

    Args:
        settings: Configuration to build from.
        repository: Use this record store instead of the configured database.
        ledger: Use this ledger client instead of the configured gateway.
    """
    log = structlog.get_logger()

    if repository is None:
        sql = SqlRepository(settings.database_url)
        sql.initialize()
        repository = sql
    if ledger is None:
        ledger = build_ledger(settings)

    engine = ReconciliationEngine(
        ledger,
        repository,
        locks=LockRegistry(),
        timeout=settings.operation_timeout_seconds,
    )
    sessions = SessionManager(
        engine,
        default_quorum_percentage=settings.default_quorum_percentage,
        default_voting_type=settings.default_voting_type,
    )

    log.info("legis_ledger.bootstrap.ready", **engine.describe())
    return Services(repository=repository, ledger=ledger, engine=engine, sessions=sessions)
