"""Tests for tallying: accumulators, commitments and poll finalization."""

import pytest

from maci_replica.crypto.field import SaltGenerator
from maci_replica.engine.circuit_inputs import unpack_tally_votes_small_vals
from maci_replica.engine.tally import TallyEngine, compute_tally_commitments, verify_tally
from maci_replica.errors import (
    CheckpointMismatch,
    InvalidPollState,
    NoUntalliedBallots,
)
from maci_replica.models.ballot import Ballot
from maci_replica.models.poll import PollState, VotingMode

from conftest import SIGNUP_TIMESTAMP, make_keypair, make_vote


def _ballot(votes: list[int], nonce: int = 1) -> Ballot:
    return Ballot(votes=tuple(votes), nonce=nonce, vote_option_tree_depth=1)


def _processed_poll(deploy, voters, coordinator, voting_mode=VotingMode.QUADRATIC):
    poll = deploy(voting_mode=voting_mode)
    poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
    poll.publish_message(*make_vote(voters[1], coordinator, 2, 1, 3, 1))
    poll.close()
    poll.process_all_messages()
    return poll


class TestTallyEngine:
    def test_quadratic_batch(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        step = engine.compute_batch(
            [_ballot([3, 0, 2, 0, 0]), _ballot([1, 0, 0, 0, 4])], SaltGenerator(1)
        )
        assert step.results == [4, 0, 2, 0, 4]
        assert step.per_vo_spent == [10, 0, 4, 0, 16]
        assert step.total_spent == 30

    def test_linear_batch(self) -> None:
        engine = TallyEngine(1, VotingMode.NON_QUADRATIC)
        step = engine.compute_batch(
            [_ballot([3, 0, 2, 0, 0]), _ballot([1, 0, 0, 0, 4])], SaltGenerator(1)
        )
        assert step.per_vo_spent == [4, 0, 2, 0, 4]
        assert step.total_spent == 10

    def test_compute_does_not_mutate(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        engine.compute_batch([_ballot([3, 0, 0, 0, 0])], SaltGenerator(1))
        assert engine.results == [0] * 5
        assert engine.num_batches_tallied == 0
        assert engine.tally_commitment == 0

    def test_commit_accumulates(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        salts = SaltGenerator(1)
        engine.commit(engine.compute_batch([_ballot([3, 0, 0, 0, 0])], salts))
        engine.commit(engine.compute_batch([_ballot([2, 1, 0, 0, 0])], salts))
        assert engine.results == [5, 1, 0, 0, 0]
        assert engine.total_spent == 14
        assert engine.num_batches_tallied == 2
        assert engine.recompute_commitment() == engine.tally_commitment

    def test_three_salts_per_batch(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        salts = SaltGenerator(9)
        step = engine.compute_batch([_ballot([1, 0, 0, 0, 0])], salts)
        assert salts.position == 3
        assert len({step.results_salt, step.spent_salt, step.per_vo_salt}) == 3

    def test_recompute_before_any_batch(self) -> None:
        assert TallyEngine(1, VotingMode.QUADRATIC).recompute_commitment() == 0

    def test_json_round_trip(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        engine.commit(engine.compute_batch([_ballot([3, 0, 0, 0, 0])], SaltGenerator(1)))
        assert engine.copy() == engine

    def test_load_rejects_wrong_width(self) -> None:
        engine = TallyEngine(1, VotingMode.QUADRATIC)
        data = engine.to_json()
        data["results"] = ["0"] * 4
        with pytest.raises(ValueError):
            engine.load_json(data)


class TestVerifyTally:
    def test_accepts_matching_results(self) -> None:
        commitments = compute_tally_commitments([4, 1], 17, [16, 1], 11, 12, 13, 1)
        assert verify_tally([4, 1], 17, [16, 1], 11, 12, 13, 1, commitments.tally_commitment)

    def test_rejects_altered_results(self) -> None:
        commitments = compute_tally_commitments([4, 1], 17, [16, 1], 11, 12, 13, 1)
        expected = commitments.tally_commitment
        assert not verify_tally([4, 2], 17, [16, 1], 11, 12, 13, 1, expected)
        assert not verify_tally([4, 1], 18, [16, 1], 11, 12, 13, 1, expected)
        assert not verify_tally([4, 1], 17, [16, 1], 11, 12, 14, 1, expected)

    def test_rejects_oversized_vectors(self) -> None:
        assert not verify_tally([0] * 6, 0, [0] * 5, 1, 2, 3, 1, 0)


class TestPollTally:
    def test_tally_before_processing_complete(self, deploy) -> None:
        poll = deploy()
        with pytest.raises(InvalidPollState):
            poll.process_next_tally_batch()
        poll.close()
        with pytest.raises(InvalidPollState):
            poll.process_next_tally_batch()

    def test_quadratic_poll(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator)
        poll.tally_all()
        assert poll.state == PollState.FINALIZED
        assert poll.results == [5, 3, 0, 0, 0]
        assert poll.per_vo_spent_voice_credits == [25, 9, 0, 0, 0]
        assert poll.total_spent_voice_credits == 34
        assert poll.total_spent_voice_credits == sum(poll.per_vo_spent_voice_credits)

    def test_non_quadratic_poll(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator, VotingMode.NON_QUADRATIC)
        assert [leaf.voice_credit_balance for leaf in poll.state_leaves[1:]] == [95, 97]
        poll.tally_all()
        assert poll.results == [5, 3, 0, 0, 0]
        assert poll.per_vo_spent_voice_credits == [5, 3, 0, 0, 0]
        assert poll.total_spent_voice_credits == 8

    def test_published_results_verify(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator)
        poll.tally_all()
        results_salt, spent_salt, per_vo_salt = poll.tally_salts
        assert verify_tally(
            poll.results,
            poll.total_spent_voice_credits,
            poll.per_vo_spent_voice_credits,
            results_salt,
            spent_salt,
            per_vo_salt,
            1,
            poll.tally_commitment,
        )

    def test_finalized_poll_rejects_more_tallying(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator)
        poll.process_next_tally_batch()
        before = poll.to_json()
        with pytest.raises(NoUntalliedBallots):
            poll.process_next_tally_batch()
        assert poll.to_json() == before

    def test_multiple_tally_batches(self, deploy, maci_state, voters, coordinator) -> None:
        for seed in range(5):
            maci_state.sign_up(make_keypair(2000 + seed).pub_key, 100, SIGNUP_TIMESTAMP)
        poll = deploy()
        late = make_keypair(2004)
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 2, 1))
        poll.publish_message(*make_vote(late, coordinator, 7, 4, 6, 1))
        poll.close()
        poll.process_all_messages()

        first = poll.process_next_tally_batch()
        assert poll.state == PollState.TALLYING
        assert poll.results == [2, 0, 0, 0, 0]
        assert unpack_tally_votes_small_vals(int(first["packedVals"])) == (0, 8)

        second = poll.process_next_tally_batch()
        assert poll.state == PollState.FINALIZED
        assert poll.num_tally_batches == 2
        assert poll.results == [2, 0, 0, 0, 6]
        assert poll.total_spent_voice_credits == 40
        assert second["currentTallyCommitment"] == first["newTallyCommitment"]
        assert unpack_tally_votes_small_vals(int(second["packedVals"])) == (1, 8)

    def test_tally_inputs_shape(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator)
        inputs = poll.process_next_tally_batch()
        assert len(inputs["ballots"]) == 5
        assert len(inputs["votes"]) == 5
        # state depth 2 minus intermediate depth 1
        assert len(inputs["ballotPathElements"]) == 1
        assert inputs["sbCommitment"] == str(poll.sb_commitment.commitment)
        assert inputs["currentTallyCommitment"] == "0"
        assert inputs["newTallyCommitment"] == str(poll.tally_commitment)
        assert poll.tally_batch_inputs(0) == inputs

    def test_assert_tally_commitment(self, deploy, voters, coordinator) -> None:
        poll = _processed_poll(deploy, voters, coordinator)
        poll.tally_all()
        poll.assert_tally_commitment(poll.tally_commitment)
        with pytest.raises(CheckpointMismatch):
            poll.assert_tally_commitment(poll.tally_commitment + 1)
        assert poll.halted
