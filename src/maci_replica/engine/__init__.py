"""Replica engine: signup registry, codec, poll state machine, tally."""

from maci_replica.engine.maci_state import MaciState
from maci_replica.engine.poll import Poll
from maci_replica.engine.registry import SignupRegistry
from maci_replica.engine.state_machine import PollStateMachine

__all__ = ["MaciState", "Poll", "SignupRegistry", "PollStateMachine"]
