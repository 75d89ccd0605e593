"""MaciState: owner of the signup registry and every poll.

Polls never hold a reference back to their owner. They are created here,
stored by integer id and looked up by id, so a MaciState snapshot is a
flat list of polls next to the registry leaves.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from maci_replica.crypto.field import SaltSource, gen_random_salt
from maci_replica.crypto.keys import Keypair, PubKey
from maci_replica.engine.poll import Poll
from maci_replica.engine.registry import SignupRegistry
from maci_replica.errors import ReplicaHalted, UnknownPoll
from maci_replica.models.poll import (
    BatchSizes,
    MaxValues,
    TreeDepths,
    VotingMode,
    validate_poll_params,
)


logger = logging.getLogger(__name__)


class MaciState:
    """The replica's root object.

    Usage:
        state = MaciState(state_tree_depth=10)
        state.sign_up(pub_key, 100, timestamp)
        poll_id = state.deploy_poll(end, tree_depths, batch_sizes,
                                    max_values, coordinator_keypair)
        state.poll(poll_id).publish_message(message, enc_pub_key)
    """

    def __init__(self, state_tree_depth: int) -> None:
        self.state_tree_depth = state_tree_depth
        self.registry = SignupRegistry(state_tree_depth)
        self.polls: dict[int, Poll] = {}

    @property
    def num_signups(self) -> int:
        return self.registry.num_signups

    def sign_up(
        self,
        pub_key: PubKey,
        initial_voice_credits: int,
        timestamp: int,
        expected_root_before: Optional[int] = None,
    ) -> int:
        return self.registry.sign_up(
            pub_key, initial_voice_credits, timestamp, expected_root_before
        )

    def deploy_poll(
        self,
        end_timestamp: int,
        tree_depths: TreeDepths,
        batch_sizes: BatchSizes,
        max_values: MaxValues,
        coordinator_keypair: Optional[Keypair],
        voting_mode: VotingMode = VotingMode.QUADRATIC,
        salt_source: SaltSource = gen_random_salt,
        coordinator_pub_key: Optional[PubKey] = None,
    ) -> int:
        """Open a poll over a copy of the current registry. Returns its id.

        A poll replayed without the coordinator's private key is opened
        from `coordinator_pub_key`; it can record messages but cannot
        process them until set_coordinator_keypair is called.
        """
        if self.registry.halted:
            raise ReplicaHalted("Cannot deploy a poll over a halted registry")
        errors = validate_poll_params(tree_depths, batch_sizes, max_values)
        if tree_depths.int_state_tree_depth > self.state_tree_depth:
            errors.append("int_state_tree_depth cannot exceed state_tree_depth")
        if errors:
            raise ValueError("; ".join(errors))

        poll_id = len(self.polls)
        self.polls[poll_id] = Poll(
            poll_id=poll_id,
            end_timestamp=end_timestamp,
            state_tree_depth=self.state_tree_depth,
            tree_depths=tree_depths,
            batch_sizes=batch_sizes,
            max_values=max_values,
            coordinator_keypair=coordinator_keypair,
            state_leaves=self.registry.leaves,
            voting_mode=voting_mode,
            salt_source=salt_source,
            coordinator_pub_key=coordinator_pub_key,
        )
        logger.info(
            "Poll %d deployed over %d signups, ends at %d",
            poll_id, self.registry.num_signups, end_timestamp,
        )
        return poll_id

    def poll(self, poll_id: int) -> Poll:
        try:
            return self.polls[poll_id]
        except KeyError:
            raise UnknownPoll(f"No poll with id {poll_id}") from None

    def copy(self) -> MaciState:
        clone = MaciState.__new__(MaciState)
        clone.state_tree_depth = self.state_tree_depth
        clone.registry = self.registry.copy()
        clone.polls = {pid: poll.copy() for pid, poll in self.polls.items()}
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MaciState):
            return NotImplemented
        return (
            self.state_tree_depth == other.state_tree_depth
            and self.registry == other.registry
            and self.polls == other.polls
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        from maci_replica.persistence.snapshot import to_snapshot

        return to_snapshot(self)

    @staticmethod
    def from_snapshot(
        data: dict[str, Any],
        coordinator_keypairs: Optional[dict[int, Keypair]] = None,
        salt_source: SaltSource = gen_random_salt,
    ) -> MaciState:
        from maci_replica.persistence.snapshot import from_snapshot

        return from_snapshot(data, coordinator_keypairs, salt_source)
