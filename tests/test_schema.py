"""
Tests for the legislative schema models.

Validates:
- Vote value encoding (fixed bijection shared with the ledger)
- VoteTally counter/record bookkeeping and reconciliation overwrites
- Law and Session lifecycle rules that need no remote call
- Boundary validation of transaction references and addresses
"""

from __future__ import annotations

from datetime import date
from uuid import uuid4

import pydantic
import pytest

from legis_ledger.domain.schema import (
    VOTE_CODES,
    CountersSource,
    Law,
    LawState,
    Session,
    SessionState,
    Voter,
    VoteTally,
    VoteValue,
    decode_vote,
    encode_vote,
    validate_address,
    validate_tx_ref,
)
from legis_ledger.errors import InvalidStateError, PreconditionFailedError, ValidationError

TX = "0x" + "ab" * 32


class TestVoteCodec:
    """The numeric vote encoding must never drift from the ledger contract."""

    def test_round_trip_all_values(self):
        for value in VoteValue:
            assert decode_vote(encode_vote(value)) == value

    def test_fixed_codes(self):
        assert [encode_vote(v) for v in ("absent", "present", "favor", "against", "abstain")] == [
            0, 1, 2, 3, 4,
        ]
        assert sorted(VOTE_CODES.values()) == list(range(5))

    def test_decode_unknown_code(self):
        with pytest.raises(ValidationError):
            decode_vote(5)
        with pytest.raises(ValidationError):
            decode_vote(True)

    def test_encode_unknown_value(self):
        with pytest.raises(ValidationError):
            encode_vote("yes")


class TestBoundaryValidation:
    def test_tx_ref_shape(self):
        assert validate_tx_ref(TX) == TX
        for bad in ("0x1234", "ab" * 32, "0x" + "zz" * 32, None):
            with pytest.raises(ValidationError):
                validate_tx_ref(bad)

    def test_address_shape(self):
        address = "0x" + "1f" * 20
        assert validate_address(address) == address
        with pytest.raises(ValidationError):
            validate_address("0x1234")

    def test_voter_rejects_bad_address(self):
        with pytest.raises(pydantic.ValidationError):
            Voter(name="Ana", address="not-an-address")

    def test_vote_record_rejects_bad_tx_ref(self):
        tally = VoteTally()
        with pytest.raises(pydantic.ValidationError):
            tally.apply_vote(uuid4(), VoteValue.FAVOR, tx_ref="0xdead")


class TestVoteTally:
    """Counters always match the multiset of current vote records."""

    def setup_method(self):
        self.tally = VoteTally()
        self.voter = uuid4()

    def test_first_vote_appends_record(self):
        previous = self.tally.apply_vote(self.voter, VoteValue.FAVOR, tx_ref=TX)
        assert previous is None
        assert self.tally.favor == 1
        assert len(self.tally.records) == 1
        assert self.tally.is_consistent()

    def test_second_vote_replaces_record(self):
        """A changed vote moves exactly one unit from the old bucket to the new one."""
        self.tally.apply_vote(self.voter, VoteValue.FAVOR)
        before = self.tally.counters()

        previous = self.tally.apply_vote(self.voter, VoteValue.AGAINST)

        after = self.tally.counters()
        assert previous == VoteValue.FAVOR
        assert len(self.tally.records) == 1
        assert self.tally.records[0].value == VoteValue.AGAINST
        assert after["favor"] == before["favor"] - 1
        assert after["against"] == before["against"] + 1
        assert self.tally.is_consistent()

    def test_same_vote_twice_is_stable(self):
        self.tally.apply_vote(self.voter, VoteValue.ABSTAIN)
        self.tally.apply_vote(self.voter, VoteValue.ABSTAIN)
        assert self.tally.abstain == 1
        assert len(self.tally.records) == 1

    def test_total_counted_excludes_presence(self):
        values = [VoteValue.FAVOR, VoteValue.AGAINST, VoteValue.ABSTAIN, VoteValue.PRESENT, VoteValue.ABSENT]
        for value in values:
            self.tally.apply_vote(uuid4(), value)
        assert self.tally.total_counted == 3
        counted = sum(
            1 for r in self.tally.records
            if r.value in (VoteValue.FAVOR, VoteValue.AGAINST, VoteValue.ABSTAIN)
        )
        assert self.tally.favor + self.tally.against + self.tally.abstain == counted

    def test_many_voters_many_changes(self):
        voters = [uuid4() for _ in range(6)]
        cycle = [VoteValue.FAVOR, VoteValue.AGAINST, VoteValue.ABSTAIN]
        for round_number in range(3):
            for index, voter in enumerate(voters):
                self.tally.apply_vote(voter, cycle[(index + round_number) % 3])
        assert len(self.tally.records) == 6
        assert self.tally.is_consistent()
        assert self.tally.total_counted == 6

    def test_overwrite_marks_ledger_source(self):
        self.tally.apply_vote(self.voter, VoteValue.FAVOR)
        self.tally.overwrite_counters(favor=3, against=1, abstain=0, absent=0)
        assert self.tally.counters_source == CountersSource.LEDGER
        assert self.tally.favor == 3
        assert len(self.tally.records) == 1
        assert not self.tally.is_consistent()

    def test_overwrite_rejects_negative(self):
        with pytest.raises(ValidationError):
            self.tally.overwrite_counters(favor=-1, against=0, abstain=0, absent=0)

    def test_counter_never_goes_negative_after_overwrite(self):
        self.tally.apply_vote(self.voter, VoteValue.FAVOR)
        self.tally.overwrite_counters(favor=0, against=0, abstain=0, absent=0)
        self.tally.apply_vote(self.voter, VoteValue.AGAINST)
        assert self.tally.favor == 0
        assert self.tally.against == 1


class TestLaw:
    def setup_method(self):
        self.law = Law(session_id=uuid4(), title="Budget", description="Annual budget")

    def test_defaults(self):
        assert self.law.state == LawState.DRAFT
        assert self.law.category.value == "other"
        assert not self.law.is_on_ledger

    def test_ledger_id_requires_flag(self):
        with pytest.raises(pydantic.ValidationError):
            Law(session_id=uuid4(), title="X", description="Y", ledger_law_id=3)

    def test_title_limit(self):
        with pytest.raises(pydantic.ValidationError):
            Law(session_id=uuid4(), title="x" * 301, description="Y")

    def test_open_voting(self):
        self.law.open_voting(7, TX)
        assert self.law.state == LawState.VOTING
        assert self.law.ledger_law_id == 7
        assert self.law.voting_started_at is not None
        with pytest.raises(InvalidStateError):
            self.law.open_voting(8, TX)

    def test_open_voting_rejects_bad_tx_ref(self):
        with pytest.raises(ValidationError):
            self.law.open_voting(7, "0x12")
        assert self.law.state == LawState.DRAFT
        assert not self.law.is_on_ledger

    def test_votes_only_while_voting(self):
        with pytest.raises(InvalidStateError):
            self.law.record_vote(uuid4(), VoteValue.FAVOR)

    def _votes(self, favor: int, against: int) -> None:
        self.law.open_voting(1, TX)
        for _ in range(favor):
            self.law.record_vote(uuid4(), VoteValue.FAVOR)
        for _ in range(against):
            self.law.record_vote(uuid4(), VoteValue.AGAINST)

    def test_tie_is_rejected(self):
        self._votes(5, 5)
        assert self.law.resolve() == LawState.REJECTED
        assert self.law.approved_at is None

    def test_majority_is_approved(self):
        self._votes(6, 5)
        assert self.law.resolve() == LawState.APPROVED
        assert self.law.approved_at is not None

    def test_resolve_twice(self):
        self._votes(1, 0)
        self.law.resolve()
        with pytest.raises(InvalidStateError):
            self.law.resolve()

    def test_update_allow_list(self):
        applied = self.law.apply_updates(
            {"title": "Budget 2025", "state": "approved", "category": "economic"}
        )
        assert applied == ["category", "title"]
        assert self.law.title == "Budget 2025"
        assert self.law.state == LawState.DRAFT

    def test_update_invalid_value(self):
        with pytest.raises(ValidationError):
            self.law.apply_updates({"category": "sports"})
        assert self.law.category.value == "other"


class TestSession:
    def setup_method(self):
        self.session = Session(
            title="Plenary", description="Ordinary session", scheduled_date=date(2025, 3, 1)
        )

    def test_activation_requires_laws(self):
        with pytest.raises(PreconditionFailedError):
            self.session.activate(1, TX)
        assert self.session.state == SessionState.DRAFT
        assert not self.session.is_on_ledger

    def test_full_lifecycle(self):
        self.session.attach_law(uuid4())
        self.session.activate(1, TX)
        assert self.session.state == SessionState.ACTIVE
        assert self.session.started_at is not None
        self.session.finish()
        assert self.session.state == SessionState.FINISHED
        assert self.session.is_terminal
        with pytest.raises(InvalidStateError):
            self.session.cancel()

    def test_finish_requires_active(self):
        with pytest.raises(InvalidStateError):
            self.session.finish()

    def test_attach_is_idempotent(self):
        law_id = uuid4()
        self.session.attach_law(law_id)
        self.session.attach_law(law_id)
        assert self.session.law_ids == [law_id]
        self.session.detach_law(law_id)
        assert self.session.law_count == 0

    def test_quorum_bounds(self):
        with pytest.raises(ValidationError):
            self.session.apply_updates({"quorum_percentage": 0})
        self.session.apply_updates({"quorum_percentage": 66, "id": uuid4()})
        assert self.session.quorum_percentage == 66

    def test_no_updates_once_terminal(self):
        self.session.cancel()
        with pytest.raises(InvalidStateError):
            self.session.apply_updates({"title": "Other"})

    def test_delete_only_in_draft(self):
        self.session.ensure_deletable()
        self.session.cancel()
        with pytest.raises(InvalidStateError):
            self.session.ensure_deletable()
