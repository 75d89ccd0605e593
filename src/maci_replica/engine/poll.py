"""Poll: one vote's message log, ballots and processing pipeline.

Lifecycle (see engine.state_machine):
    OPEN → CLOSED → PROCESSING → PROCESSING_COMPLETE → TALLYING → FINALIZED

Messages are appended while OPEN and folded into a chain hash. Closing
pads the log to a whole number of batches. Batches are then processed
from the tail of the log towards the head, and within a batch from the
last message to the first, which is the order the message-processing
circuit consumes them. Each batch runs against a working copy of the
poll-local state and is committed only once it has fully succeeded.

Once every batch is processed the ballots are final and are tallied in
ascending index order.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Optional, Sequence, Union

from maci_replica.crypto.commitment_builder import gen_state_ballot_commitment
from maci_replica.crypto.field import NOTHING_UP_MY_SLEEVE, SaltSource, gen_random_salt
from maci_replica.crypto.keys import Keypair, PubKey
from maci_replica.crypto.merkle import IncrementalQuinTree
from maci_replica.crypto.poseidon import hash_left_right
from maci_replica.engine.circuit_inputs import (
    ProcessBatchCapture,
    SlotWitness,
    TallyBatchCapture,
    build_process_messages_inputs,
    build_tally_inputs,
)
from maci_replica.engine.codec import (
    DecodeFailed,
    Invalid,
    decode,
    validate,
)
from maci_replica.engine.state_machine import PollStateMachine
from maci_replica.engine.tally import TallyEngine
from maci_replica.errors import (
    CheckpointMismatch,
    IndexOutOfRange,
    InvalidPollState,
    MalformedMessage,
    MessageLimitReached,
    NoUnprocessedBatches,
    NoUntalliedBallots,
    ReplicaHalted,
)
from maci_replica.models.ballot import Ballot
from maci_replica.models.constants import PAD_KEY
from maci_replica.models.message import Message
from maci_replica.models.poll import (
    STATE_TREE_ARITY,
    BatchSizes,
    MaxValues,
    PollState,
    TreeDepths,
    VotingMode,
)
from maci_replica.models.state_leaf import StateLeaf


logger = logging.getLogger(__name__)


class _Workspace:
    """Copies of the poll-local state that one message batch mutates."""

    def __init__(self, poll: Poll) -> None:
        self.state_leaves = list(poll._state_leaves)
        self.state_tree = poll._state_tree.copy()
        self.ballots = dict(poll._ballots)
        self.ballot_tree = poll._ballot_tree.copy()
        self._blank_ballot = poll._blank_ballot

    def ballot(self, index: int) -> Ballot:
        return self.ballots.get(index, self._blank_ballot)

    def witness(self, index: int, vote_option_index: int) -> SlotWitness:
        ballot = self.ballot(index)
        return SlotWitness(
            state_leaf=self.state_leaves[index],
            state_leaf_path=self.state_tree.path_to(index).path_elements,
            ballot=ballot,
            ballot_path=self.ballot_tree.path_to(index).path_elements,
            vote_weight=ballot.votes[vote_option_index],
            vote_weight_path=(
                ballot.vote_option_tree().path_to(vote_option_index).path_elements
            ),
        )

    def apply(self, index: int, leaf: StateLeaf, ballot: Ballot) -> None:
        self.state_leaves[index] = leaf
        self.state_tree.update(index, leaf.hash())
        self.ballots[index] = ballot
        self.ballot_tree.update(index, ballot.hash())


class Poll:
    """A single poll, owned by a MaciState and addressed by its id.

    Usage:
        poll = Poll(poll_id, end_timestamp, state_tree_depth, tree_depths,
                    batch_sizes, max_values, coordinator_keypair,
                    state_leaves=registry.leaves)
        poll.publish_message(message, enc_pub_key)
        poll.close()
        poll.process_all_messages()
        poll.tally_all()
    """

    def __init__(
        self,
        poll_id: int,
        end_timestamp: int,
        state_tree_depth: int,
        tree_depths: TreeDepths,
        batch_sizes: BatchSizes,
        max_values: MaxValues,
        coordinator_keypair: Optional[Keypair],
        state_leaves: Sequence[StateLeaf],
        voting_mode: VotingMode = VotingMode.QUADRATIC,
        salt_source: SaltSource = gen_random_salt,
        coordinator_pub_key: Optional[PubKey] = None,
    ) -> None:
        if coordinator_keypair is None and coordinator_pub_key is None:
            raise ValueError("A coordinator keypair or public key is required")
        if tree_depths.int_state_tree_depth > state_tree_depth:
            raise ValueError("int_state_tree_depth cannot exceed state_tree_depth")

        self.poll_id = poll_id
        self.end_timestamp = end_timestamp
        self.state_tree_depth = state_tree_depth
        self.tree_depths = tree_depths
        self.batch_sizes = batch_sizes
        self.max_values = max_values
        self.voting_mode = VotingMode(voting_mode)
        self._coordinator_keypair = coordinator_keypair
        self.coordinator_pub_key = (
            coordinator_keypair.pub_key if coordinator_keypair else coordinator_pub_key
        )
        self._salt_source = salt_source

        self.state = PollState.OPEN
        self._halted = False

        self._messages: list[tuple[Message, PubKey]] = []
        self.chain_hash = NOTHING_UP_MY_SLEEVE
        self.batch_hashes: list[int] = [NOTHING_UP_MY_SLEEVE]
        self.num_batches_processed = 0

        self._blank_ballot = Ballot.blank(tree_depths.vote_option_tree_depth)
        self._tally = TallyEngine(tree_depths.vote_option_tree_depth, self.voting_mode)
        self._message_batch_inputs: list[dict[str, Any]] = []
        self._tally_batch_inputs: list[dict[str, Any]] = []

        self._load_state_leaves(state_leaves)

    # ------------------------------------------------------------------
    # Poll-local state
    # ------------------------------------------------------------------

    def _load_state_leaves(self, state_leaves: Sequence[StateLeaf]) -> None:
        leaves = list(state_leaves)
        if not leaves or leaves[0] != StateLeaf.blank():
            raise ValueError("State leaves must start with the blank leaf")

        state_tree = IncrementalQuinTree(
            self.state_tree_depth, StateLeaf.blank().hash(), STATE_TREE_ARITY
        )
        ballot_tree = IncrementalQuinTree(
            self.state_tree_depth, self._blank_ballot.hash(), STATE_TREE_ARITY
        )
        blank_ballot_hash = self._blank_ballot.hash()
        for leaf in leaves:
            state_tree.insert(leaf.hash())
            ballot_tree.insert(blank_ballot_hash)

        self._state_leaves = leaves
        self._state_tree = state_tree
        self._ballots: dict[int, Ballot] = {}
        self._ballot_tree = ballot_tree
        self.num_signups_at_open = len(leaves) - 1
        self.sb_salts: list[int] = [0]
        self.sb_commitment = gen_state_ballot_commitment(
            state_tree.root, ballot_tree.root, 0
        )

    def refresh_snapshot(self, state_leaves: Sequence[StateLeaf]) -> None:
        """Replace the registry copy with a newer one.

        Only allowed before any message batch has been processed.
        """
        self._require_live()
        PollStateMachine.require_state(
            self.state, PollState.OPEN, PollState.CLOSED, action="refresh snapshot"
        )
        if self.num_batches_processed:
            raise InvalidPollState("Cannot refresh snapshot once processing started")
        self._load_state_leaves(state_leaves)
        logger.info(
            "Poll %d snapshot refreshed with %d signups",
            self.poll_id, self.num_signups_at_open,
        )

    def set_coordinator_keypair(self, keypair: Keypair) -> None:
        if keypair.pub_key != self.coordinator_pub_key:
            raise ValueError("Keypair does not match the poll's coordinator key")
        self._coordinator_keypair = keypair

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def state_leaves(self) -> list[StateLeaf]:
        return list(self._state_leaves)

    @property
    def state_root(self) -> int:
        return self._state_tree.root

    @property
    def ballot_root(self) -> int:
        return self._ballot_tree.root

    def ballot(self, index: int) -> Ballot:
        if not 0 <= index < len(self._state_leaves):
            raise IndexOutOfRange(
                f"Ballot index {index} outside [0, {len(self._state_leaves)})"
            )
        return self._ballots.get(index, self._blank_ballot)

    @property
    def ballots(self) -> list[Ballot]:
        return [self.ballot(i) for i in range(len(self._state_leaves))]

    # ------------------------------------------------------------------
    # Message log
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[tuple[Message, PubKey]]:
        return list(self._messages)

    @property
    def num_message_batches(self) -> int:
        size = self.batch_sizes.message_batch_size
        return -(-len(self._messages) // size)

    def publish_message(
        self,
        message: Union[Message, Sequence[int]],
        enc_pub_key: PubKey,
        timestamp: Optional[int] = None,
    ) -> int:
        """Append a message to the log. Returns its log index."""
        self._require_live()
        PollStateMachine.require_state(
            self.state, PollState.OPEN, action="publish messages"
        )
        if timestamp is not None and timestamp >= self.end_timestamp:
            raise InvalidPollState(
                f"Voting period ended at {self.end_timestamp}, message at {timestamp}"
            )
        if not isinstance(message, Message):
            message = Message.from_list(message)
        if not isinstance(enc_pub_key, PubKey) or not enc_pub_key.is_valid():
            raise MalformedMessage("Encryption public key is not a curve point")
        if len(self._messages) >= self.max_values.max_messages:
            raise MessageLimitReached(
                f"Poll {self.poll_id} already holds {self.max_values.max_messages} messages"
            )
        return self._append_message(message, enc_pub_key)

    def _append_message(self, message: Message, enc_pub_key: PubKey) -> int:
        self._messages.append((message, enc_pub_key))
        self.chain_hash = hash_left_right(self.chain_hash, message.hash(enc_pub_key))
        if len(self._messages) % self.batch_sizes.message_batch_size == 0:
            self.batch_hashes.append(self.chain_hash)
        return len(self._messages) - 1

    def close(self) -> None:
        """Seal the message log and pad it to a batch boundary."""
        self._require_live()
        PollStateMachine.require_transition(self.state, PollState.CLOSED)
        self.state = PollState.CLOSED
        self.pad_to_batch_boundary()
        logger.info(
            "Poll %d closed with %d messages in %d batches",
            self.poll_id, len(self._messages), self.num_message_batches,
        )

    def close_if_expired(self, now: int) -> bool:
        """Close the poll if its end timestamp has passed."""
        if self.state != PollState.OPEN or now < self.end_timestamp:
            return False
        self.close()
        return True

    def pad_to_batch_boundary(self) -> int:
        """Append padding until the log is a non-empty whole number of batches.

        Returns the number of padding messages added.
        """
        self._require_live()
        PollStateMachine.require_state(
            self.state, PollState.CLOSED, action="pad the message log"
        )
        size = self.batch_sizes.message_batch_size
        added = 0
        while not self._messages or len(self._messages) % size:
            self._append_message(Message.padding(), PAD_KEY)
            added += 1
        return added

    # ------------------------------------------------------------------
    # Message processing
    # ------------------------------------------------------------------

    def has_unprocessed_messages(self) -> bool:
        return self.num_batches_processed < self.num_message_batches

    def process_next_batch(self) -> dict[str, Any]:
        """Apply the next unprocessed batch and return its circuit inputs."""
        self._require_live()
        if self.state != PollState.OPEN and not self.has_unprocessed_messages():
            raise NoUnprocessedBatches(
                f"Poll {self.poll_id} has no unprocessed message batches"
            )
        PollStateMachine.require_state(
            self.state, PollState.CLOSED, PollState.PROCESSING,
            action="process messages",
        )
        if self._coordinator_keypair is None:
            raise InvalidPollState(
                f"Poll {self.poll_id} has no coordinator keypair to decrypt with"
            )

        size = self.batch_sizes.message_batch_size
        batch_index = self.num_message_batches - 1 - self.num_batches_processed
        start = batch_index * size
        end = start + size

        work = _Workspace(self)
        slots: list[SlotWitness] = []
        for index in range(end - 1, start - 1, -1):
            slots.append(self._apply_message(index, work))
        slots.reverse()

        new_sb = gen_state_ballot_commitment(
            work.state_tree.root, work.ballot_tree.root, self._salt_source()
        )
        capture = ProcessBatchCapture(
            poll_end_timestamp=self.end_timestamp,
            max_vote_options=self.max_values.max_vote_options,
            num_signups=len(self._state_leaves),
            batch_start_index=start,
            batch_end_index=end,
            state_tree_depth=self.state_tree_depth,
            coordinator_pub_key=self.coordinator_pub_key,
            messages=[m for m, _ in self._messages[start:end]],
            enc_pub_keys=[k for _, k in self._messages[start:end]],
            input_batch_hash=self.batch_hashes[batch_index],
            output_batch_hash=self.batch_hashes[batch_index + 1],
            current_state_root=self._state_tree.root,
            current_ballot_root=self._ballot_tree.root,
            current_sb=self.sb_commitment,
            new_sb=new_sb,
            slots=slots,
        )
        inputs = build_process_messages_inputs(capture)

        done = self.num_batches_processed + 1 == self.num_message_batches
        target = PollState.PROCESSING_COMPLETE if done else PollState.PROCESSING
        if target != self.state:
            PollStateMachine.require_transition(self.state, target)

        # Commit
        self._state_leaves = work.state_leaves
        self._state_tree = work.state_tree
        self._ballots = work.ballots
        self._ballot_tree = work.ballot_tree
        self.sb_salts.append(new_sb.salt)
        self.sb_commitment = new_sb
        self._message_batch_inputs.append(inputs)
        self.num_batches_processed += 1
        self.state = target

        logger.info(
            "Poll %d processed message batch %d (messages %d-%d), %d remaining",
            self.poll_id, batch_index, start, end - 1,
            self.num_message_batches - self.num_batches_processed,
        )
        return copy.deepcopy(inputs)

    def _apply_message(self, index: int, work: _Workspace) -> SlotWitness:
        message, enc_pub_key = self._messages[index]
        decoded = decode(
            message, enc_pub_key, self._coordinator_keypair,
            work.state_leaves, self.poll_id,
        )
        if isinstance(decoded, DecodeFailed):
            logger.debug(
                "Poll %d message %d skipped: %s %s",
                self.poll_id, index, decoded.reason.value, decoded.detail,
            )
            return work.witness(0, 0)

        command = decoded.command
        state_index = command.state_index
        option = command.vote_option_index
        if not 0 <= option < self.max_values.max_vote_options:
            option = 0
        witness = work.witness(state_index, option)

        leaf = work.state_leaves[state_index]
        ballot = work.ballot(state_index)
        outcome = validate(
            command, ballot, leaf, self.max_values.max_vote_options, self.voting_mode
        )
        if isinstance(outcome, Invalid):
            logger.debug(
                "Poll %d message %d rejected: %s %s",
                self.poll_id, index, outcome.reason.value, outcome.detail,
            )
            return witness

        new_leaf = leaf.with_balance(
            leaf.voice_credit_balance - outcome.cost
        ).with_pub_key(command.new_pub_key)
        new_ballot = ballot.with_vote(command.vote_option_index, command.new_vote_weight)
        work.apply(state_index, new_leaf, new_ballot)
        return witness

    def process_all_messages(self) -> list[dict[str, Any]]:
        inputs: list[dict[str, Any]] = []
        while self.has_unprocessed_messages():
            inputs.append(self.process_next_batch())
        return inputs

    def message_batch_inputs(self, n: int) -> dict[str, Any]:
        """Circuit inputs of the n-th processed batch, in processing order."""
        if not 0 <= n < len(self._message_batch_inputs):
            raise IndexOutOfRange(
                f"Message batch {n} outside [0, {len(self._message_batch_inputs)})"
            )
        return copy.deepcopy(self._message_batch_inputs[n])

    def assert_sb_commitment(self, expected: int) -> None:
        """Cross-check the current state/ballot commitment. Halts on mismatch."""
        self._require_live()
        recomputed = gen_state_ballot_commitment(
            self._state_tree.compute_root_from_leaves(),
            self._ballot_tree.compute_root_from_leaves(),
            self.sb_commitment.salt,
        ).commitment
        if recomputed != self.sb_commitment.commitment:
            self._halt(
                f"Recomputed sb commitment {recomputed} differs from "
                f"recorded {self.sb_commitment.commitment}"
            )
        if expected != self.sb_commitment.commitment:
            self._halt(
                f"Sb commitment {self.sb_commitment.commitment} differs from "
                f"expected {expected}"
            )

    # ------------------------------------------------------------------
    # Tally
    # ------------------------------------------------------------------

    @property
    def results(self) -> list[int]:
        return list(self._tally.results)

    @property
    def per_vo_spent_voice_credits(self) -> list[int]:
        return list(self._tally.per_vo_spent)

    @property
    def total_spent_voice_credits(self) -> int:
        return self._tally.total_spent

    @property
    def tally_commitment(self) -> int:
        return self._tally.tally_commitment

    @property
    def tally_salts(self) -> tuple[int, int, int]:
        """(results_salt, spent_salt, per_vo_salt) of the latest tally batch."""
        return (
            self._tally.results_salt,
            self._tally.spent_salt,
            self._tally.per_vo_salt,
        )

    @property
    def num_tally_batches(self) -> int:
        return self._tally.num_batches_tallied

    def has_untallied_ballots(self) -> bool:
        size = self.batch_sizes.tally_batch_size
        return self._tally.num_batches_tallied * size < len(self._state_leaves)

    def process_next_tally_batch(self) -> dict[str, Any]:
        """Tally the next batch of ballots and return its circuit inputs."""
        self._require_live()
        if self.state == PollState.FINALIZED or not self.has_untallied_ballots():
            raise NoUntalliedBallots(f"Poll {self.poll_id} has no untallied ballots")
        PollStateMachine.require_state(
            self.state, PollState.PROCESSING_COMPLETE, PollState.TALLYING,
            action="tally ballots",
        )

        size = self.batch_sizes.tally_batch_size
        start = self._tally.num_batches_tallied * size
        num_leaves = len(self._state_leaves)
        ballots = [
            self._ballots.get(i, self._blank_ballot) if i < num_leaves
            else self._blank_ballot
            for i in range(start, start + size)
        ]
        step = self._tally.compute_batch(ballots, self._salt_source)

        int_depth = self.tree_depths.int_state_tree_depth
        capture = TallyBatchCapture(
            batch_start_index=start,
            tally_batch_size=size,
            num_signups=num_leaves,
            sb=self.sb_commitment,
            current_tally_commitment=self._tally.tally_commitment,
            new_tally=step.commitments,
            current_results=list(self._tally.results),
            current_results_salt=self._tally.results_salt,
            current_total_spent=self._tally.total_spent,
            current_spent_salt=self._tally.spent_salt,
            current_per_vo_spent=list(self._tally.per_vo_spent),
            current_per_vo_salt=self._tally.per_vo_salt,
            new_results_salt=step.results_salt,
            new_spent_salt=step.spent_salt,
            new_per_vo_salt=step.per_vo_salt,
            ballots=ballots,
            ballot_path_elements=(
                self._ballot_tree.path_to(start).path_elements[int_depth:]
            ),
        )
        inputs = build_tally_inputs(capture)

        done = (self._tally.num_batches_tallied + 1) * size >= num_leaves
        target = PollState.FINALIZED if done else PollState.TALLYING
        if target != self.state:
            PollStateMachine.require_transition(self.state, target)

        self._tally.commit(step)
        self._tally_batch_inputs.append(inputs)
        self.state = target

        logger.info(
            "Poll %d tallied ballots %d-%d, state %s",
            self.poll_id, start, start + size - 1, self.state.value,
        )
        return copy.deepcopy(inputs)

    def tally_all(self) -> list[dict[str, Any]]:
        inputs: list[dict[str, Any]] = []
        while self.has_untallied_ballots():
            inputs.append(self.process_next_tally_batch())
        return inputs

    def tally_batch_inputs(self, n: int) -> dict[str, Any]:
        if not 0 <= n < len(self._tally_batch_inputs):
            raise IndexOutOfRange(
                f"Tally batch {n} outside [0, {len(self._tally_batch_inputs)})"
            )
        return copy.deepcopy(self._tally_batch_inputs[n])

    def assert_tally_commitment(self, expected: int) -> None:
        """Cross-check the tally commitment. Halts on mismatch."""
        self._require_live()
        recomputed = self._tally.recompute_commitment()
        if recomputed != self._tally.tally_commitment:
            self._halt(
                f"Recomputed tally commitment {recomputed} differs from "
                f"recorded {self._tally.tally_commitment}"
            )
        if expected != self._tally.tally_commitment:
            self._halt(
                f"Tally commitment {self._tally.tally_commitment} differs from "
                f"expected {expected}"
            )

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def _require_live(self) -> None:
        if self._halted:
            raise ReplicaHalted(f"Poll {self.poll_id} halted after an integrity failure")

    def _halt(self, message: str) -> None:
        self._halted = True
        logger.error("Poll %d halted: %s", self.poll_id, message)
        raise CheckpointMismatch(message)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        return {
            "poll_id": self.poll_id,
            "end_timestamp": str(self.end_timestamp),
            "state_tree_depth": self.state_tree_depth,
            "tree_depths": self.tree_depths.to_json(),
            "batch_sizes": self.batch_sizes.to_json(),
            "max_values": self.max_values.to_json(),
            "coordinator_pub_key": self.coordinator_pub_key.serialize(),
            "voting_mode": self.voting_mode.value,
            "state": self.state.value,
            "messages": [
                {"data": m.to_json(), "enc_pub_key": k.serialize()}
                for m, k in self._messages
            ],
            "chain_hash": str(self.chain_hash),
            "batch_hashes": [str(h) for h in self.batch_hashes],
            "num_batches_processed": self.num_batches_processed,
            "num_signups_at_open": self.num_signups_at_open,
            "state_leaves": [leaf.to_json() for leaf in self._state_leaves],
            "ballots": {
                str(i): self._ballots[i].to_json() for i in sorted(self._ballots)
            },
            "sb_salts": [str(s) for s in self.sb_salts],
            "sb_commitment": str(self.sb_commitment.commitment),
            "tally": self._tally.to_json(),
            "message_batch_inputs": copy.deepcopy(self._message_batch_inputs),
            "tally_batch_inputs": copy.deepcopy(self._tally_batch_inputs),
        }

    @staticmethod
    def from_json(
        data: dict[str, Any],
        coordinator_keypair: Optional[Keypair] = None,
        salt_source: SaltSource = gen_random_salt,
    ) -> Poll:
        """Rebuild a poll and re-verify every recorded checkpoint.

        Raises CheckpointMismatch if the recomputed chain hash, batch
        hashes, sb commitment or tally commitment differ from the record.
        """
        coordinator_pub_key = PubKey.deserialize(data["coordinator_pub_key"])
        if coordinator_keypair is not None and coordinator_keypair.pub_key != coordinator_pub_key:
            raise ValueError("Keypair does not match the poll's coordinator key")

        poll = Poll(
            poll_id=int(data["poll_id"]),
            end_timestamp=int(data["end_timestamp"]),
            state_tree_depth=int(data["state_tree_depth"]),
            tree_depths=TreeDepths.from_json(data["tree_depths"]),
            batch_sizes=BatchSizes.from_json(data["batch_sizes"]),
            max_values=MaxValues.from_json(data["max_values"]),
            coordinator_keypair=coordinator_keypair,
            coordinator_pub_key=coordinator_pub_key,
            state_leaves=[StateLeaf.from_json(s) for s in data["state_leaves"]],
            voting_mode=VotingMode(data["voting_mode"]),
            salt_source=salt_source,
        )
        poll.num_signups_at_open = int(data["num_signups_at_open"])

        for index, ballot_data in data["ballots"].items():
            ballot = Ballot.from_json(ballot_data)
            poll._ballots[int(index)] = ballot
            poll._ballot_tree.update(int(index), ballot.hash())

        for record in data["messages"]:
            poll._append_message(
                Message.from_json(record["data"]),
                PubKey.deserialize(record["enc_pub_key"]),
            )
        if str(poll.chain_hash) != data["chain_hash"]:
            raise CheckpointMismatch(
                f"Poll {poll.poll_id} chain hash {poll.chain_hash} differs from "
                f"recorded {data['chain_hash']}"
            )
        if [str(h) for h in poll.batch_hashes] != data["batch_hashes"]:
            raise CheckpointMismatch(
                f"Poll {poll.poll_id} batch hashes differ from the record"
            )

        poll.sb_salts = [int(s) for s in data["sb_salts"]]
        poll.sb_commitment = gen_state_ballot_commitment(
            poll._state_tree.root, poll._ballot_tree.root, poll.sb_salts[-1]
        )
        if str(poll.sb_commitment.commitment) != data["sb_commitment"]:
            raise CheckpointMismatch(
                f"Poll {poll.poll_id} sb commitment {poll.sb_commitment.commitment} "
                f"differs from recorded {data['sb_commitment']}"
            )

        poll._tally.load_json(data["tally"])
        recomputed = poll._tally.recompute_commitment()
        if recomputed != poll._tally.tally_commitment:
            raise CheckpointMismatch(
                f"Poll {poll.poll_id} tally commitment {recomputed} differs from "
                f"recorded {poll._tally.tally_commitment}"
            )

        poll.num_batches_processed = int(data["num_batches_processed"])
        poll.state = PollState(data["state"])
        poll._message_batch_inputs = copy.deepcopy(data["message_batch_inputs"])
        poll._tally_batch_inputs = copy.deepcopy(data["tally_batch_inputs"])
        return poll

    def copy(self) -> Poll:
        clone = Poll.__new__(Poll)
        clone.__dict__.update(self.__dict__)
        clone._messages = list(self._messages)
        clone.batch_hashes = list(self.batch_hashes)
        clone._state_leaves = list(self._state_leaves)
        clone._state_tree = self._state_tree.copy()
        clone._ballots = dict(self._ballots)
        clone._ballot_tree = self._ballot_tree.copy()
        clone.sb_salts = list(self.sb_salts)
        clone._tally = self._tally.copy()
        clone._message_batch_inputs = copy.deepcopy(self._message_batch_inputs)
        clone._tally_batch_inputs = copy.deepcopy(self._tally_batch_inputs)
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Poll):
            return NotImplemented
        return self.to_json() == other.to_json()
