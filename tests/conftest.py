"""Shared fixtures: small trees so pure-Python hashing stays quick."""

from __future__ import annotations

from typing import Optional

import pytest

from maci_replica.crypto.field import SaltGenerator
from maci_replica.crypto.keys import Keypair, PrivKey, PubKey
from maci_replica.engine.codec import encode_vote
from maci_replica.engine.maci_state import MaciState
from maci_replica.models.message import Message
from maci_replica.models.poll import BatchSizes, MaxValues, TreeDepths, VotingMode


STATE_TREE_DEPTH = 2
END_TIMESTAMP = 2_000_000_000
SIGNUP_TIMESTAMP = 1_700_000_000


def make_keypair(seed: int) -> Keypair:
    return Keypair.from_priv_key(PrivKey(seed))


def make_vote(
    voter: Keypair,
    coordinator: Keypair,
    state_index: int,
    vote_option_index: int,
    new_vote_weight: int,
    nonce: int,
    poll_id: int = 0,
    new_pub_key: Optional[PubKey] = None,
) -> tuple[Message, PubKey]:
    return encode_vote(
        voter_keypair=voter,
        coordinator_pub_key=coordinator.pub_key,
        state_index=state_index,
        vote_option_index=vote_option_index,
        new_vote_weight=new_vote_weight,
        nonce=nonce,
        poll_id=poll_id,
        new_pub_key=new_pub_key,
        ephemeral_keypair=make_keypair(10_000 + state_index * 100 + nonce),
        salt_source=SaltGenerator(state_index * 1_000 + nonce),
    )


@pytest.fixture(scope="session")
def coordinator() -> Keypair:
    return make_keypair(424242)


@pytest.fixture(scope="session")
def voters() -> list[Keypair]:
    return [make_keypair(1000 + i) for i in range(4)]


@pytest.fixture
def tree_depths() -> TreeDepths:
    return TreeDepths(int_state_tree_depth=1, vote_option_tree_depth=1)


@pytest.fixture
def batch_sizes() -> BatchSizes:
    return BatchSizes(message_batch_size=5, tally_batch_size=5)


@pytest.fixture
def max_values() -> MaxValues:
    return MaxValues(max_messages=25, max_vote_options=5)


@pytest.fixture
def maci_state(voters: list[Keypair]) -> MaciState:
    """Two voters signed up with 100 voice credits each (indices 1 and 2)."""
    state = MaciState(STATE_TREE_DEPTH)
    for voter in voters[:2]:
        state.sign_up(voter.pub_key, 100, SIGNUP_TIMESTAMP)
    return state


@pytest.fixture
def deploy(maci_state, coordinator, tree_depths, batch_sizes, max_values):
    """Factory: deploy a poll on the fixture state and return it."""
    def _deploy(voting_mode: VotingMode = VotingMode.QUADRATIC, seed: int = 7):
        poll_id = maci_state.deploy_poll(
            END_TIMESTAMP,
            tree_depths,
            batch_sizes,
            max_values,
            coordinator,
            voting_mode=voting_mode,
            salt_source=SaltGenerator(seed),
        )
        return maci_state.poll(poll_id)
    return _deploy
