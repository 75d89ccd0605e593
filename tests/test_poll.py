"""Tests for the poll: message log, closing, and batch processing."""

import pytest

from maci_replica.crypto.field import NOTHING_UP_MY_SLEEVE
from maci_replica.crypto.keys import PubKey
from maci_replica.crypto.merkle import MerkleProof, tree_root
from maci_replica.crypto.poseidon import hash3, hash_left_right
from maci_replica.engine.circuit_inputs import pack_process_message_small_vals
from maci_replica.engine.poll import Poll
from maci_replica.errors import (
    CheckpointMismatch,
    IndexOutOfRange,
    InvalidPollState,
    MalformedMessage,
    MessageLimitReached,
    NoUnprocessedBatches,
    ReplicaHalted,
)
from maci_replica.models.ballot import Ballot
from maci_replica.models.constants import PAD_KEY
from maci_replica.models.message import Message
from maci_replica.models.poll import MaxValues, PollState
from maci_replica.models.state_leaf import StateLeaf

from conftest import END_TIMESTAMP, STATE_TREE_DEPTH, make_keypair, make_vote


class TestPublish:
    def test_chain_hash_is_left_fold(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        published = [
            make_vote(voters[0], coordinator, 1, 0, 1, 1),
            make_vote(voters[1], coordinator, 2, 1, 2, 1),
            make_vote(voters[0], coordinator, 1, 2, 3, 2),
        ]
        for message, enc_key in published:
            poll.publish_message(message, enc_key)

        expected = NOTHING_UP_MY_SLEEVE
        for message, enc_key in published:
            expected = hash_left_right(expected, message.hash(enc_key))
        assert poll.chain_hash == expected

    def test_publish_returns_log_index(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        assert poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 1, 1)) == 0
        assert poll.publish_message(*make_vote(voters[1], coordinator, 2, 0, 1, 1)) == 1

    def test_batch_hashes_recorded_at_boundaries(self, deploy) -> None:
        poll = deploy()
        assert poll.batch_hashes == [NOTHING_UP_MY_SLEEVE]
        for _ in range(4):
            poll.publish_message(Message.padding(), PAD_KEY)
        assert len(poll.batch_hashes) == 1
        poll.publish_message(Message.padding(), PAD_KEY)
        assert poll.batch_hashes == [NOTHING_UP_MY_SLEEVE, poll.chain_hash]

    def test_accepts_raw_element_list(self, deploy) -> None:
        poll = deploy()
        poll.publish_message([0] * 10, PAD_KEY)
        assert poll.messages[0][0] == Message.padding()

    def test_malformed_message_rejected(self, deploy) -> None:
        poll = deploy()
        with pytest.raises(MalformedMessage):
            poll.publish_message([1, 2, 3], PAD_KEY)
        with pytest.raises(MalformedMessage):
            poll.publish_message(Message.padding(), PubKey(1, 1))
        assert poll.messages == []
        assert poll.chain_hash == NOTHING_UP_MY_SLEEVE

    def test_message_limit(self, maci_state, coordinator, tree_depths, batch_sizes) -> None:
        poll_id = maci_state.deploy_poll(
            END_TIMESTAMP, tree_depths, batch_sizes, MaxValues(2, 5), coordinator
        )
        poll = maci_state.poll(poll_id)
        poll.publish_message(Message.padding(), PAD_KEY)
        poll.publish_message(Message.padding(), PAD_KEY)
        with pytest.raises(MessageLimitReached):
            poll.publish_message(Message.padding(), PAD_KEY)

    def test_publish_after_end_timestamp(self, deploy) -> None:
        poll = deploy()
        poll.publish_message(Message.padding(), PAD_KEY, timestamp=END_TIMESTAMP - 1)
        with pytest.raises(InvalidPollState, match="Voting period ended"):
            poll.publish_message(Message.padding(), PAD_KEY, timestamp=END_TIMESTAMP)

    def test_publish_after_close(self, deploy) -> None:
        poll = deploy()
        poll.close()
        with pytest.raises(InvalidPollState):
            poll.publish_message(Message.padding(), PAD_KEY)


class TestClose:
    def test_pads_to_batch_boundary(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 1, 1))
        poll.publish_message(*make_vote(voters[1], coordinator, 2, 0, 1, 1))
        poll.close()
        assert poll.state == PollState.CLOSED
        assert len(poll.messages) == 5
        assert all(
            m == Message.padding() and k == PAD_KEY for m, k in poll.messages[2:]
        )
        assert len(poll.batch_hashes) == 2
        assert poll.batch_hashes[-1] == poll.chain_hash

    def test_empty_log_gets_one_batch(self, deploy) -> None:
        poll = deploy()
        poll.close()
        assert len(poll.messages) == 5
        assert poll.num_message_batches == 1
        assert poll.has_unprocessed_messages()

    def test_full_batch_not_padded(self, deploy) -> None:
        poll = deploy()
        for _ in range(5):
            poll.publish_message(Message.padding(), PAD_KEY)
        poll.close()
        assert len(poll.messages) == 5

    def test_close_if_expired(self, deploy) -> None:
        poll = deploy()
        assert not poll.close_if_expired(END_TIMESTAMP - 1)
        assert poll.state == PollState.OPEN
        assert poll.close_if_expired(END_TIMESTAMP)
        assert poll.state == PollState.CLOSED
        assert not poll.close_if_expired(END_TIMESTAMP + 1)

    def test_close_twice_rejected(self, deploy) -> None:
        poll = deploy()
        poll.close()
        with pytest.raises(InvalidPollState):
            poll.close()


class TestProcessing:
    def test_process_before_close_rejected(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 1, 1))
        with pytest.raises(InvalidPollState):
            poll.process_next_batch()

    def test_end_to_end_scenario(self, deploy, maci_state, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.publish_message(*make_vote(voters[1], coordinator, 2, 0, 3, 1))
        poll.close()

        poll.process_next_batch()
        assert not poll.has_unprocessed_messages()
        assert poll.state == PollState.PROCESSING_COMPLETE
        assert poll.ballot(1).nonce == 1
        assert poll.ballot(2).nonce == 1
        assert {poll.ballot(1).votes[0], poll.ballot(2).votes[0]} == {5, 3}
        balances = [leaf.voice_credit_balance for leaf in poll.state_leaves[1:]]
        assert balances == [75, 91]
        # The registry itself is untouched
        assert [leaf.voice_credit_balance for leaf in maci_state.registry.leaves[1:]] == [100, 100]

        poll.process_next_tally_batch()
        assert poll.results[0] == 8
        assert poll.per_vo_spent_voice_credits[0] == 34
        assert poll.total_spent_voice_credits == 34
        assert poll.state == PollState.FINALIZED

    def test_nonce_mismatch_consumes_slot(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 2))
        poll.close()
        poll.process_next_batch()
        assert poll.num_batches_processed == 1
        assert poll.ballot(1) == Ballot.blank(1)
        assert poll.state_leaves[1].voice_credit_balance == 100

    def test_quadratic_marginal_charge(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        # Consumed last-to-first within the batch: weight 9 lands before weight 10
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 10, 2))
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 9, 1))
        poll.close()
        poll.process_next_batch()
        assert poll.ballot(1).nonce == 2
        assert poll.ballot(1).votes[0] == 10
        assert poll.state_leaves[1].voice_credit_balance == 100 - 81 - 19

    def test_batches_processed_tail_first(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 2, 2))
        for _ in range(4):
            poll.publish_message(Message.padding(), PAD_KEY)
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 1, 1))
        poll.close()
        assert poll.num_message_batches == 2

        inputs = poll.process_next_batch()
        assert poll.state == PollState.PROCESSING
        assert poll.ballot(1).nonce == 1
        assert inputs["packedVals"] == str(pack_process_message_small_vals(5, 3, 5, 10))
        assert inputs["inputBatchHash"] == str(poll.batch_hashes[1])
        assert inputs["outputBatchHash"] == str(poll.batch_hashes[2])

        poll.process_next_batch()
        assert poll.state == PollState.PROCESSING_COMPLETE
        assert poll.ballot(1).nonce == 2
        assert poll.ballot(1).votes[0] == 2
        assert poll.state_leaves[1].voice_credit_balance == 96

    def test_key_rotation(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        new_key = make_keypair(3000)
        rotate = make_vote(voters[0], coordinator, 1, 0, 1, 1, new_pub_key=new_key.pub_key)
        after = make_vote(new_key, coordinator, 1, 0, 2, 2)
        stale = make_vote(voters[0], coordinator, 1, 1, 1, 3)
        for message, enc_key in (stale, after, rotate):
            poll.publish_message(message, enc_key)
        poll.close()
        poll.process_next_batch()

        assert poll.state_leaves[1].pub_key == new_key.pub_key
        assert poll.ballot(1).nonce == 2
        assert poll.ballot(1).votes[:2] == (2, 0)
        assert poll.state_leaves[1].voice_credit_balance == 96

    def test_invalid_messages_do_not_abort_batch(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 4, 1))
        poll.publish_message(Message.from_list([5] * 10), voters[1].pub_key)
        poll.publish_message(*make_vote(voters[1], coordinator, 2, 7, 1, 1))
        poll.close()
        poll.process_next_batch()
        assert poll.ballot(1).votes[0] == 4
        assert poll.ballot(2) == Ballot.blank(1)

    def test_no_unprocessed_batches(self, deploy) -> None:
        poll = deploy()
        poll.close()
        poll.process_next_batch()
        before = poll.to_json()
        with pytest.raises(NoUnprocessedBatches):
            poll.process_next_batch()
        assert poll.to_json() == before

    def test_batch_is_atomic(self, deploy, voters, coordinator, monkeypatch) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.close()
        before = poll.to_json()

        def boom() -> int:
            raise RuntimeError("salt source failed")

        monkeypatch.setattr(poll, "_salt_source", boom)
        with pytest.raises(RuntimeError):
            poll.process_next_batch()
        assert poll.to_json() == before
        assert poll.ballot(1).nonce == 0

    def test_sb_commitment(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        assert poll.sb_commitment.commitment == hash3([poll.state_root, poll.ballot_root, 0])
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.close()
        poll.process_next_batch()
        sb = poll.sb_commitment
        assert sb.commitment == hash3([poll.state_root, poll.ballot_root, sb.salt])
        assert poll.sb_salts == [0, sb.salt]

    def test_blank_ballots_leave_root_unchanged(self, deploy) -> None:
        poll = deploy()
        blank_hash = Ballot.blank(1).hash()
        assert poll.ballot_root == tree_root([], STATE_TREE_DEPTH, blank_hash)

    def test_witness_paths_verify(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.publish_message(*make_vote(voters[1], coordinator, 2, 0, 3, 1))
        poll.close()
        inputs = poll.process_next_batch()

        # Slot 1 is processed before slot 0, against the pre-batch root
        leaf = [int(v) for v in inputs["currentStateLeaves"][1]]
        assert leaf[2] == 100
        proof = MerkleProof(
            leaf=StateLeaf(PubKey(leaf[0], leaf[1]), leaf[2], leaf[3]).hash(),
            index=2,
            path_elements=[
                [int(v) for v in level]
                for level in inputs["currentStateLeavesPathElements"][1]
            ],
            path_indices=[2, 0],
            root=int(inputs["currentStateRoot"]),
        )
        assert proof.verify()

    def test_message_batch_inputs_rederivable(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.close()
        inputs = poll.process_next_batch()
        assert poll.message_batch_inputs(0) == inputs
        with pytest.raises(IndexOutOfRange):
            poll.message_batch_inputs(1)

    def test_missing_coordinator_key(
        self, maci_state, coordinator, tree_depths, batch_sizes, max_values
    ) -> None:
        poll = Poll(
            poll_id=0,
            end_timestamp=END_TIMESTAMP,
            state_tree_depth=STATE_TREE_DEPTH,
            tree_depths=tree_depths,
            batch_sizes=batch_sizes,
            max_values=max_values,
            coordinator_keypair=None,
            state_leaves=maci_state.registry.leaves,
            coordinator_pub_key=coordinator.pub_key,
        )
        poll.close()
        with pytest.raises(InvalidPollState, match="coordinator keypair"):
            poll.process_next_batch()
        with pytest.raises(ValueError):
            poll.set_coordinator_keypair(make_keypair(1))
        poll.set_coordinator_keypair(coordinator)
        poll.process_next_batch()
        assert poll.state == PollState.PROCESSING_COMPLETE


class TestIntegrity:
    def test_assert_sb_commitment(self, deploy) -> None:
        poll = deploy()
        poll.close()
        poll.process_next_batch()
        poll.assert_sb_commitment(poll.sb_commitment.commitment)
        with pytest.raises(CheckpointMismatch):
            poll.assert_sb_commitment(poll.sb_commitment.commitment + 1)
        assert poll.halted
        with pytest.raises(ReplicaHalted):
            poll.process_next_tally_batch()


class TestRefreshSnapshot:
    def test_refresh_picks_up_late_signups(self, deploy, maci_state, voters, coordinator) -> None:
        poll = deploy()
        late = maci_state.sign_up(voters[2].pub_key, 100, 1)
        poll.publish_message(*make_vote(voters[2], coordinator, late, 0, 2, 1))
        poll.refresh_snapshot(maci_state.registry.leaves)
        poll.close()
        poll.process_next_batch()
        assert poll.ballot(late).votes[0] == 2

    def test_refresh_rejected_after_processing(self, deploy, maci_state) -> None:
        poll = deploy()
        poll.close()
        poll.process_next_batch()
        with pytest.raises(InvalidPollState):
            poll.refresh_snapshot(maci_state.registry.leaves)
