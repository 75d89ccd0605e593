"""Off-chain replica of MACI signup, poll, message-processing and tally state."""

__version__ = "0.1.0"
