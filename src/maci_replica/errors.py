"""Error taxonomy for the replica.

Three classes of failure, handled very differently:

1. Protocol no-ops (invalid votes). These are never raised: the codec
   returns tagged results and the batch processor absorbs them.
2. Caller misuse (CallerMisuseError). The orchestration asked for something
   the current state does not allow. Nothing is mutated.
3. Integrity failures (IntegrityError). The replica has diverged from the
   source of truth. The affected component halts and refuses further
   mutation until it is rebuilt.
"""

from __future__ import annotations


class ReplicaError(Exception):
    """Base class for every error raised by the replica."""


# ----------------------------------------------------------------------
# Caller misuse
# ----------------------------------------------------------------------

class CallerMisuseError(ReplicaError):
    """The operation is not valid in the current state."""


class TreeFull(CallerMisuseError):
    """Insert attempted on a tree at capacity."""


class RegistryFull(TreeFull):
    """Signup attempted on a registry at capacity."""


class IndexOutOfRange(CallerMisuseError):
    """Leaf or signup index outside the populated range."""


class InvalidPollState(CallerMisuseError):
    """Operation attempted in a poll state that does not allow it."""


class NoUnprocessedBatches(CallerMisuseError):
    """process_next_batch called with every message batch consumed."""


class NoUntalliedBallots(CallerMisuseError):
    """process_next_tally_batch called with every ballot tallied."""


class UnknownPoll(CallerMisuseError):
    """No poll is registered under the given id."""


class MessageLimitReached(CallerMisuseError):
    """The poll already holds max_messages messages."""


class MalformedMessage(CallerMisuseError):
    """A published message is not a well-formed field-element vector."""


# ----------------------------------------------------------------------
# Integrity failures
# ----------------------------------------------------------------------

class IntegrityError(ReplicaError):
    """The replica diverged from ground truth or a recorded checkpoint."""


class RootMismatch(IntegrityError):
    """Registry root differs from the externally supplied root."""


class CheckpointMismatch(IntegrityError):
    """A recomputed root or commitment differs from a recorded checkpoint."""


class SchemaVersionMismatch(IntegrityError):
    """A snapshot carries an unsupported schema version."""


class EventOrderError(IntegrityError):
    """Chain events arrived out of order or with gaps."""


class ReplicaHalted(IntegrityError):
    """Mutation attempted after an integrity failure halted the component."""
