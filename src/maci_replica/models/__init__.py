"""Core data models for the replica."""

from maci_replica.models.ballot import Ballot
from maci_replica.models.command import PCommand
from maci_replica.models.commitment import StateBallotCommitment, TallyCommitments
from maci_replica.models.constants import PAD_KEY
from maci_replica.models.message import Message
from maci_replica.models.poll import (
    BatchSizes,
    MaxValues,
    PollState,
    TreeDepths,
    VotingMode,
)
from maci_replica.models.state_leaf import StateLeaf

__all__ = [
    "Ballot",
    "PCommand",
    "StateBallotCommitment",
    "TallyCommitments",
    "PAD_KEY",
    "Message",
    "BatchSizes",
    "MaxValues",
    "PollState",
    "TreeDepths",
    "VotingMode",
    "StateLeaf",
]
