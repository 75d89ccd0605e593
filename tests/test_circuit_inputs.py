"""Tests for packed values and circuit input records."""

import pytest

from maci_replica.crypto.field import sha256_hash
from maci_replica.crypto.keys import PubKey
from maci_replica.engine.circuit_inputs import (
    pack_process_message_small_vals,
    pack_tally_votes_small_vals,
    unpack_process_message_small_vals,
    unpack_tally_votes_small_vals,
)
from maci_replica.models.state_leaf import StateLeaf

from conftest import END_TIMESTAMP, STATE_TREE_DEPTH, make_vote


class TestPackedVals:
    def test_process_layout(self) -> None:
        packed = pack_process_message_small_vals(25, 3, 5, 10)
        assert packed == 25 + (3 << 50) + (5 << 100) + (10 << 150)
        assert unpack_process_message_small_vals(packed) == (25, 3, 5, 10)

    def test_process_rejects_oversized(self) -> None:
        with pytest.raises(ValueError):
            pack_process_message_small_vals(1 << 50, 0, 0, 0)

    def test_tally_layout(self) -> None:
        packed = pack_tally_votes_small_vals(10, 5, 7)
        assert packed == 2 + (7 << 50)
        assert unpack_tally_votes_small_vals(packed) == (2, 7)

    def test_tally_requires_aligned_start(self) -> None:
        with pytest.raises(ValueError):
            pack_tally_votes_small_vals(3, 5, 7)


class TestProcessMessagesInputs:
    def _inputs(self, deploy, voters, coordinator) -> dict:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.publish_message(*make_vote(voters[1], coordinator, 2, 0, 3, 1))
        poll.close()
        return poll.process_next_batch()

    def test_values_are_decimal_strings(self, deploy, voters, coordinator) -> None:
        inputs = self._inputs(deploy, voters, coordinator)
        assert inputs["pollEndTimestamp"] == str(END_TIMESTAMP)
        assert inputs["actualStateTreeDepth"] == str(STATE_TREE_DEPTH)
        assert inputs["coordPubKey"] == [str(v) for v in coordinator.pub_key.as_list()]
        assert all(isinstance(v, str) for msg in inputs["msgs"] for v in msg)
        assert "coordPrivKey" not in inputs

    def test_slot_shapes(self, deploy, voters, coordinator) -> None:
        inputs = self._inputs(deploy, voters, coordinator)
        for key in (
            "msgs",
            "encPubKeys",
            "currentStateLeaves",
            "currentStateLeavesPathElements",
            "currentBallots",
            "currentBallotsPathElements",
            "currentVoteWeights",
            "currentVoteWeightsPathElements",
        ):
            assert len(inputs[key]) == 5, key
        assert all(len(msg) == 10 for msg in inputs["msgs"])
        path = inputs["currentStateLeavesPathElements"][0]
        assert len(path) == STATE_TREE_DEPTH
        assert all(len(level) == 4 for level in path)
        assert len(inputs["currentVoteWeightsPathElements"][0]) == 1

    def test_padding_slots_use_blank_leaf_witness(self, deploy, voters, coordinator) -> None:
        inputs = self._inputs(deploy, voters, coordinator)
        blank = [str(v) for v in StateLeaf.blank().as_circuit_inputs()]
        assert inputs["currentStateLeaves"][4] == blank
        padded = inputs["encPubKeys"][4]
        assert PubKey(int(padded[0]), int(padded[1])).is_valid()
        assert inputs["currentVoteWeights"][4] == "0"

    def test_input_hash_recomputes(self, deploy, voters, coordinator) -> None:
        inputs = self._inputs(deploy, voters, coordinator)
        coord_key = PubKey(*(int(v) for v in inputs["coordPubKey"]))
        expected = sha256_hash([
            int(inputs["packedVals"]),
            coord_key.hash(),
            int(inputs["inputBatchHash"]),
            int(inputs["outputBatchHash"]),
            int(inputs["currentSbCommitment"]),
            int(inputs["newSbCommitment"]),
            int(inputs["pollEndTimestamp"]),
            int(inputs["actualStateTreeDepth"]),
        ])
        assert inputs["inputHash"] == str(expected)

    def test_returned_inputs_are_copies(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.close()
        inputs = poll.process_next_batch()
        inputs["msgs"].clear()
        assert len(poll.message_batch_inputs(0)["msgs"]) == 5


class TestTallyInputs:
    def test_input_hash_recomputes(self, deploy, voters, coordinator) -> None:
        poll = deploy()
        poll.publish_message(*make_vote(voters[0], coordinator, 1, 0, 5, 1))
        poll.close()
        poll.process_all_messages()
        inputs = poll.process_next_tally_batch()
        expected = sha256_hash([
            int(inputs["packedVals"]),
            int(inputs["sbCommitment"]),
            int(inputs["currentTallyCommitment"]),
            int(inputs["newTallyCommitment"]),
        ])
        assert inputs["inputHash"] == str(expected)
        assert inputs["votes"][1][0] == "5"
        assert inputs["ballots"][1][0] == "1"
