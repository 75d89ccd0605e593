"""Append-only log of chain events, and replay into a MaciState.

The chain is the source of truth for signups, poll deployments and
published messages. Events are ordered by (block_number, log_index) and
must be applied in exactly that order; a gap or reordering changes every
derived root.

The log can be persisted to a JSONL file (one JSON object per line).
Each record carries a SHA-256 over its canonical JSON, checked on load.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional

from maci_replica.crypto.field import SaltSource, gen_random_salt
from maci_replica.crypto.keys import Keypair, PubKey
from maci_replica.engine.maci_state import MaciState
from maci_replica.errors import EventOrderError
from maci_replica.models.message import Message
from maci_replica.models.poll import BatchSizes, MaxValues, TreeDepths, VotingMode


logger = logging.getLogger(__name__)


class ChainEventKind(str, enum.Enum):
    SIGN_UP = "sign_up"
    DEPLOY_POLL = "deploy_poll"
    PUBLISH_MESSAGE = "publish_message"


def _canonical_hash(
    block_number: int, log_index: int, kind: str, payload: dict[str, Any]
) -> str:
    canonical = json.dumps(
        {
            "block_number": block_number,
            "log_index": log_index,
            "kind": kind,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class ChainEvent:
    """A single immutable chain event.

    Field elements in the payload are decimal strings and keys use their
    serialized form, so the canonical JSON is stable.
    """
    block_number: int
    log_index: int
    kind: ChainEventKind
    payload: dict[str, Any]
    event_hash: str

    @property
    def position(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def event_id(self) -> str:
        return f"{self.block_number}:{self.log_index}"

    @staticmethod
    def create(
        block_number: int,
        log_index: int,
        kind: ChainEventKind,
        payload: dict[str, Any],
    ) -> ChainEvent:
        return ChainEvent(
            block_number=block_number,
            log_index=log_index,
            kind=kind,
            payload=payload,
            event_hash=_canonical_hash(block_number, log_index, kind.value, payload),
        )

    @staticmethod
    def sign_up(
        block_number: int,
        log_index: int,
        state_index: int,
        pub_key: PubKey,
        voice_credits: int,
        timestamp: int,
    ) -> ChainEvent:
        return ChainEvent.create(block_number, log_index, ChainEventKind.SIGN_UP, {
            "state_index": state_index,
            "pub_key": pub_key.serialize(),
            "voice_credits": str(voice_credits),
            "timestamp": str(timestamp),
        })

    @staticmethod
    def deploy_poll(
        block_number: int,
        log_index: int,
        poll_id: int,
        end_timestamp: int,
        coordinator_pub_key: PubKey,
        tree_depths: TreeDepths,
        batch_sizes: BatchSizes,
        max_values: MaxValues,
        voting_mode: VotingMode = VotingMode.QUADRATIC,
    ) -> ChainEvent:
        return ChainEvent.create(block_number, log_index, ChainEventKind.DEPLOY_POLL, {
            "poll_id": poll_id,
            "end_timestamp": str(end_timestamp),
            "coordinator_pub_key": coordinator_pub_key.serialize(),
            "tree_depths": tree_depths.to_json(),
            "batch_sizes": batch_sizes.to_json(),
            "max_values": max_values.to_json(),
            "voting_mode": VotingMode(voting_mode).value,
        })

    @staticmethod
    def publish_message(
        block_number: int,
        log_index: int,
        poll_id: int,
        message: Message,
        enc_pub_key: PubKey,
        timestamp: Optional[int] = None,
    ) -> ChainEvent:
        return ChainEvent.create(block_number, log_index, ChainEventKind.PUBLISH_MESSAGE, {
            "poll_id": poll_id,
            "message": message.to_json(),
            "enc_pub_key": enc_pub_key.serialize(),
            "timestamp": None if timestamp is None else str(timestamp),
        })

    def to_json(self) -> dict[str, Any]:
        return {
            "block_number": self.block_number,
            "log_index": self.log_index,
            "kind": self.kind.value,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


def sort_events(events: Iterable[ChainEvent]) -> list[ChainEvent]:
    """Order events as the chain finalized them."""
    return sorted(events, key=lambda e: e.position)


class ChainEventLog:
    """Append-only chain event log with optional file persistence.

    Events must arrive in strictly increasing (block_number, log_index)
    order; anything else is an ordering failure, not a retryable error.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[ChainEvent] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: ChainEvent) -> None:
        """Append an event to the log.

        Raises ValueError on a duplicate event (replay protection) and
        EventOrderError if the event precedes the last one appended.
        """
        self.check_append(event)
        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def check_append(self, event: ChainEvent) -> None:
        """Raise exactly as append would, without recording the event."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate chain event: {event.event_id}")
        if self._events and event.position <= self._events[-1].position:
            raise EventOrderError(
                f"Event {event.event_id} arrived after {self._events[-1].event_id}"
            )

    def events(self, kind: Optional[ChainEventKind] = None) -> list[ChainEvent]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    def events_since(self, block_number: int) -> list[ChainEvent]:
        """Events at or after a block."""
        return [e for e in self._events if e.block_number >= block_number]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[ChainEvent]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: ChainEvent) -> None:
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_json(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch), duplicate
        events and out-of-order events.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                expected_hash = _canonical_hash(
                    data["block_number"], data["log_index"],
                    data["kind"], data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): stored hash "
                        f"{data['event_hash']} != computed {expected_hash}"
                    )

                event = ChainEvent(
                    block_number=data["block_number"],
                    log_index=data["log_index"],
                    kind=ChainEventKind(data["kind"]),
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                if event.event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate chain event on recovery (line {line_num}): "
                        f"{event.event_id}"
                    )
                if self._events and event.position <= self._events[-1].position:
                    raise EventOrderError(
                        f"Out-of-order chain event on recovery (line {line_num}): "
                        f"{event.event_id}"
                    )
                self._events.append(event)
                self._event_ids.add(event.event_id)


# ----------------------------------------------------------------------
# Replay
# ----------------------------------------------------------------------

def replay_events(
    events: Iterable[ChainEvent],
    state_tree_depth: int,
    coordinator_keypairs: Optional[dict[int, Keypair]] = None,
    salt_source: SaltSource = gen_random_salt,
    state: Optional[MaciState] = None,
) -> MaciState:
    """Apply chain events in order to a (new or given) MaciState.

    Raises EventOrderError if events are out of order or if an event
    announces an index the replica did not assign (a gap).
    """
    keypairs = coordinator_keypairs or {}
    state = state if state is not None else MaciState(state_tree_depth)
    last: Optional[ChainEvent] = None
    applied = 0

    for event in events:
        if last is not None and event.position <= last.position:
            raise EventOrderError(
                f"Event {event.event_id} replayed after {last.event_id}"
            )
        apply_event(state, event, keypairs, salt_source)
        last = event
        applied += 1

    logger.info(
        "Replayed %d chain events, %d signups, %d polls",
        applied, state.num_signups, len(state.polls),
    )
    return state


def apply_event(
    state: MaciState,
    event: ChainEvent,
    keypairs: dict[int, Keypair],
    salt_source: SaltSource,
) -> None:
    """Apply one chain event. Raises EventOrderError on an index gap."""
    payload = event.payload
    if event.kind == ChainEventKind.SIGN_UP:
        index = state.sign_up(
            PubKey.deserialize(payload["pub_key"]),
            int(payload["voice_credits"]),
            int(payload["timestamp"]),
        )
        if index != int(payload["state_index"]):
            raise EventOrderError(
                f"Signup at {event.event_id} announced state index "
                f"{payload['state_index']}, replica assigned {index}"
            )

    elif event.kind == ChainEventKind.DEPLOY_POLL:
        announced = int(payload["poll_id"])
        coordinator_pub_key = PubKey.deserialize(payload["coordinator_pub_key"])
        keypair = keypairs.get(announced)
        if keypair is not None and keypair.pub_key != coordinator_pub_key:
            raise ValueError(f"Keypair for poll {announced} does not match the chain")
        poll_id = state.deploy_poll(
            end_timestamp=int(payload["end_timestamp"]),
            tree_depths=TreeDepths.from_json(payload["tree_depths"]),
            batch_sizes=BatchSizes.from_json(payload["batch_sizes"]),
            max_values=MaxValues.from_json(payload["max_values"]),
            coordinator_keypair=keypair,
            voting_mode=VotingMode(payload["voting_mode"]),
            salt_source=salt_source,
            coordinator_pub_key=coordinator_pub_key,
        )
        if poll_id != announced:
            raise EventOrderError(
                f"Poll deployment at {event.event_id} announced id {announced}, "
                f"replica assigned {poll_id}"
            )

    elif event.kind == ChainEventKind.PUBLISH_MESSAGE:
        timestamp = payload.get("timestamp")
        state.poll(int(payload["poll_id"])).publish_message(
            Message.from_json(payload["message"]),
            PubKey.deserialize(payload["enc_pub_key"]),
            None if timestamp is None else int(timestamp),
        )
