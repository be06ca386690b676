"""
Tests for the SQL record store (SQLite in memory).

Validates:
- Session, law and voter round trips through the tables
- Vote rows updated in place, one per voter
- Law order, NotFound and StorageError translation
- The full voting flow running on the SQL store
"""

from __future__ import annotations

from datetime import date, timezone
from uuid import uuid4

import pytest

from harness import Harness, run
from legis_ledger.domain.schema import (
    CountersSource,
    Law,
    LawState,
    Session,
    SessionState,
    Voter,
    VoteValue,
)
from legis_ledger.errors import NotFoundError, StorageError
from legis_ledger.repository.sql import SqlRepository

TX = "0x" + "ef" * 32


class TestSqlRepository:
    def setup_method(self):
        self.repo = SqlRepository("sqlite://")
        self.repo.initialize()
        self.session = Session(
            title="Plenary", description="Ordinary session", scheduled_date=date(2025, 3, 1)
        )

    def teardown_method(self):
        self.repo.dispose()

    def test_session_round_trip(self):
        law_ids = [uuid4(), uuid4()]
        self.session.law_ids = list(law_ids)
        self.session.attach_law(uuid4())
        self.session.activate(9, TX)

        async def scenario():
            await self.repo.save_session(self.session)
            return await self.repo.load_session(self.session.id)

        loaded = run(scenario())
        assert loaded.state == SessionState.ACTIVE
        assert loaded.ledger_session_id == 9
        assert loaded.law_ids[:2] == law_ids
        assert loaded.scheduled_date == date(2025, 3, 1)
        assert loaded.started_at.tzinfo is not None
        assert loaded.created_at.astimezone(timezone.utc) == self.session.created_at

    def test_law_round_trip_with_votes(self):
        law = Law(session_id=self.session.id, title="Budget", description="Annual budget")
        law.open_voting(1, TX)
        first, second = uuid4(), uuid4()
        law.record_vote(first, VoteValue.FAVOR, tx_ref=TX)
        law.record_vote(second, VoteValue.ABSENT)

        async def scenario():
            await self.repo.save_session(self.session)
            await self.repo.save_law(law)
            return await self.repo.load_law(law.id)

        loaded = run(scenario())
        assert loaded.state == LawState.VOTING
        assert loaded.tally.counters() == law.tally.counters()
        assert [r.voter_id for r in loaded.tally.records] == [first, second]
        assert loaded.tally.records[0].tx_ref == TX
        assert loaded.tally.is_consistent()

    def test_changed_vote_keeps_one_row(self):
        law = Law(session_id=self.session.id, title="Budget", description="Annual budget")
        law.open_voting(1, TX)
        voter = uuid4()

        async def scenario():
            await self.repo.save_session(self.session)
            law.record_vote(voter, VoteValue.FAVOR)
            await self.repo.save_law(law)
            stored = await self.repo.load_law(law.id)
            stored.record_vote(voter, VoteValue.AGAINST)
            stored.tally.overwrite_counters(favor=0, against=2, abstain=0, absent=0)
            await self.repo.save_law(stored)
            return await self.repo.load_law(law.id)

        loaded = run(scenario())
        assert len(loaded.tally.records) == 1
        assert loaded.tally.records[0].value == VoteValue.AGAINST
        assert loaded.tally.against == 2
        assert loaded.tally.counters_source == CountersSource.LEDGER

    def test_list_laws_follows_session_order(self):
        laws = [
            Law(session_id=self.session.id, title=title, description="desc")
            for title in ("A", "B", "C")
        ]
        self.session.law_ids = [laws[2].id, laws[0].id, laws[1].id]

        async def scenario():
            await self.repo.save_session(self.session)
            for law in laws:
                await self.repo.save_law(law)
            return await self.repo.list_laws_by_session(self.session.id)

        assert [law.title for law in run(scenario())] == ["C", "A", "B"]

    def test_missing_entities(self):
        with pytest.raises(NotFoundError):
            run(self.repo.load_session(uuid4()))
        with pytest.raises(NotFoundError):
            run(self.repo.load_law(uuid4()))
        with pytest.raises(NotFoundError):
            run(self.repo.delete_law(uuid4()))
        with pytest.raises(NotFoundError):
            run(self.repo.list_laws_by_session(uuid4()))

    def test_delete_law_removes_votes(self):
        law = Law(session_id=self.session.id, title="Budget", description="Annual budget")
        law.open_voting(1, TX)
        law.record_vote(uuid4(), VoteValue.FAVOR)

        async def scenario():
            await self.repo.save_session(self.session)
            await self.repo.save_law(law)
            await self.repo.delete_law(law.id)
            await self.repo.load_law(law.id)

        with pytest.raises(NotFoundError):
            run(scenario())

    def test_voters(self):
        a = Voter(name="Ana", address="0x" + "01" * 20)
        b = Voter(name="Bruno", address="0x" + "02" * 20, is_registered_on_ledger=True)

        async def scenario():
            await self.repo.save_voter(b)
            await self.repo.save_voter(a)
            a.is_active = False
            await self.repo.save_voter(a)
            return await self.repo.list_voters(), await self.repo.load_voter(a.id)

        voters, loaded = run(scenario())
        assert [v.name for v in voters] == ["Ana", "Bruno"]
        assert not loaded.is_active
        assert voters[1].is_registered_on_ledger

    def test_integrity_error_becomes_storage_error(self):
        address = "0x" + "03" * 20

        async def scenario():
            await self.repo.save_voter(Voter(name="One", address=address))
            await self.repo.save_voter(Voter(name="Two", address=address))

        with pytest.raises(StorageError):
            run(scenario())


class TestVotingOnSql:
    def test_end_to_end(self):
        repo = SqlRepository("sqlite://")
        repo.initialize()
        h = Harness(repository=repo)

        async def scenario():
            session, laws = await h.active_session("Law 1", "Law 2")
            voters = await h.voters(3)
            for (voter, signing), value in zip(
                voters, [VoteValue.FAVOR, VoteValue.FAVOR, VoteValue.AGAINST]
            ):
                await h.engine.cast_vote(laws[0].id, voter.id, value, signing)
            sync = await h.engine.sync_session(session.id)
            report = await h.manager.finish(session.id)
            return sync, report

        try:
            sync, report = run(scenario())
        finally:
            repo.dispose()

        assert sync.updated_count == 0
        first = report.laws[0]
        assert first.state == LawState.APPROVED
        assert (first.tally.favor, first.tally.against) == (2, 1)
        assert report.laws[1].state == LawState.REJECTED
