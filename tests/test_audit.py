"""
Tests for service wiring and the reconciliation audit tool.
"""

from __future__ import annotations

from uuid import uuid4

from harness import Harness, run
from legis_ledger.audit import run_audit
from legis_ledger.bootstrap import Services, build_services
from legis_ledger.config import LegisSettings
from legis_ledger.domain.schema import VoteValue
from legis_ledger.ledger.http_client import HttpLedgerClient
from legis_ledger.ledger.memory import InMemoryLedger
from legis_ledger.repository.sql import SqlRepository


class TestBuildServices:
    def test_defaults_to_in_process_ledger(self):
        services = build_services(LegisSettings(database_url="sqlite://", ledger_gateway_url=""))
        try:
            assert isinstance(services.ledger, InMemoryLedger)
            assert isinstance(services.repository, SqlRepository)
            assert services.engine.timeout == 15.0
            assert services.sessions.engine is services.engine
            assert services.sessions.locks is services.engine.locks
        finally:
            run(services.close())

    def test_gateway_configured(self):
        settings = LegisSettings(
            database_url="sqlite://",
            ledger_gateway_url="https://gateway.test",
            ledger_api_key="k",
            operation_timeout_seconds=3,
            default_quorum_percentage=60,
        )
        services = build_services(settings)
        try:
            assert isinstance(services.ledger, HttpLedgerClient)
            assert services.ledger.base_url == "https://gateway.test"
            assert services.engine.timeout == 3
            assert services.sessions.default_quorum_percentage == 60
        finally:
            run(services.close())


class TestRunAudit:
    def setup_method(self):
        self.h = Harness()
        self.services = Services(
            repository=self.h.repository,
            ledger=self.h.ledger,
            engine=self.h.engine,
            sessions=self.h.manager,
        )

    def test_clean_session_passes(self):
        async def scenario():
            session, (law,) = await self.h.active_session("A")
            voter, signing = await self.h.voter()
            await self.h.engine.cast_vote(law.id, voter.id, VoteValue.FAVOR, signing)
            return await run_audit(self.services, session.id, voters=True, verbose=True)

        assert run(scenario()) is True

    def test_divergence_is_corrected(self):
        async def scenario():
            session, (law,) = await self.h.active_session("A")
            self.h.ledger.record_direct_vote(
                session.ledger_session_id, law.ledger_law_id, "0x" + "44" * 20, VoteValue.AGAINST
            )
            ok = await run_audit(self.services, session.id)
            return ok, await self.h.repository.load_law(law.id)

        ok, law = run(scenario())
        assert ok is True
        assert law.tally.against == 1

    def test_ledger_failure_fails_audit(self):
        async def scenario():
            session, _ = await self.h.active_session("A")
            self.h.ledger.fail_next("fetch_tally")
            return await run_audit(self.services, session.id)

        assert run(scenario()) is False

    def test_unknown_session_fails_audit(self):
        assert run(run_audit(self.services, uuid4())) is False
