"""Poll state machine: enforces the lifecycle transition rules.

Poll lifecycle:
    OPEN → CLOSED → PROCESSING → PROCESSING_COMPLETE → TALLYING → FINALIZED

State semantics:
- OPEN: accepting published messages.
- CLOSED: message log sealed and padded to a batch boundary.
- PROCESSING: at least one message batch applied, more remain.
- PROCESSING_COMPLETE: every message batch applied; ballots are final.
- TALLYING: at least one tally batch applied, more remain.
- FINALIZED: terminal. Results and tally commitment are final.

Shortcuts skip an intermediate state when one batch covers everything
(CLOSED → PROCESSING_COMPLETE, PROCESSING_COMPLETE → FINALIZED).

Fail-closed: any transition not listed here raises InvalidPollState.
No state is ever revisited.
"""

from __future__ import annotations

from maci_replica.errors import InvalidPollState
from maci_replica.models.poll import PollState


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[PollState, set[PollState]] = {
    PollState.OPEN: {PollState.CLOSED},
    PollState.CLOSED: {PollState.PROCESSING, PollState.PROCESSING_COMPLETE},
    PollState.PROCESSING: {PollState.PROCESSING_COMPLETE},
    PollState.PROCESSING_COMPLETE: {PollState.TALLYING, PollState.FINALIZED},
    PollState.TALLYING: {PollState.FINALIZED},
    # Terminal
    PollState.FINALIZED: set(),
}


class PollStateMachine:
    """Validates poll state transitions and state preconditions.

    Pure computation: the poll applies the new state itself once the
    check passes.
    """

    @staticmethod
    def validate_transition(current: PollState, target: PollState) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        allowed = _TRANSITIONS.get(current, set())
        if target not in allowed:
            allowed_str = ", ".join(
                s.value for s in sorted(allowed, key=lambda x: x.value)
            )
            return [
                f"Invalid poll transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def require_transition(current: PollState, target: PollState) -> None:
        errors = PollStateMachine.validate_transition(current, target)
        if errors:
            raise InvalidPollState(errors[0])

    @staticmethod
    def require_state(current: PollState, *allowed: PollState, action: str) -> None:
        if current not in allowed:
            allowed_str = ", ".join(s.value for s in allowed)
            raise InvalidPollState(
                f"Cannot {action} in state {current.value}; "
                f"requires one of [{allowed_str}]"
            )
