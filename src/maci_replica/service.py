"""Replica service: thread-safe facade over a MaciState.

This is the interface a coordinator process drives. It:
- ingests chain events (signups, poll deployments, published messages)
- closes polls when their voting period ends
- processes message batches and tally batches, returning circuit inputs
- cross-checks roots and commitments against the chain
- saves and restores snapshots

Mutating calls on one poll are serialized with a per-poll lock; signups
and poll deployment share the registry lock. Reads take the same locks
so they never observe a half-applied batch.

Caller mistakes come back as a failed ServiceResult. Integrity failures
(IntegrityError) are never converted: they propagate, and the affected
component stays halted until the replica is rebuilt.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from maci_replica.config import ReplicaConfig
from maci_replica.crypto.field import SaltSource
from maci_replica.crypto.keys import Keypair, PubKey
from maci_replica.engine.maci_state import MaciState
from maci_replica.engine.poll import Poll
from maci_replica.errors import CallerMisuseError
from maci_replica.models.message import Message
from maci_replica.models.poll import VotingMode
from maci_replica.persistence.event_log import ChainEvent, ChainEventLog, apply_event
from maci_replica.persistence.snapshot import load_snapshot, write_snapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class ReplicaService:
    """Replica facade.

    Usage:
        config = ReplicaConfig.from_config_dir(Path("config"))
        service = ReplicaService(config)
        service.sign_up(pub_key, 100, timestamp)
        result = service.deploy_poll(end_timestamp, coordinator_keypair)
        poll_id = result.data["poll_id"]
        service.publish_message(poll_id, message, enc_pub_key)
        service.close_poll(poll_id)
        service.process_all_messages(poll_id)
        service.tally_all(poll_id)
    """

    def __init__(
        self,
        config: ReplicaConfig,
        state: Optional[MaciState] = None,
        event_log: Optional[ChainEventLog] = None,
    ) -> None:
        self._config = config
        self._salt_source: SaltSource = config.salt_source()
        self._state = state if state is not None else MaciState(config.state_tree_depth)
        self._event_log = event_log
        self._coordinator_keypairs: dict[int, Keypair] = {}
        self._registry_lock = threading.RLock()
        self._poll_locks: dict[int, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def config(self) -> ReplicaConfig:
        return self._config

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _poll_lock(self, poll_id: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._poll_locks.get(poll_id)
            if lock is None:
                lock = threading.RLock()
                self._poll_locks[poll_id] = lock
            return lock

    def _with_poll(
        self, poll_id: int, op: Callable[[Poll], dict[str, Any]]
    ) -> ServiceResult:
        with self._poll_lock(poll_id):
            try:
                poll = self._state.poll(poll_id)
                return ServiceResult(success=True, data=op(poll))
            except (CallerMisuseError, ValueError) as e:
                return ServiceResult(success=False, errors=[str(e)])

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def sign_up(
        self,
        pub_key: PubKey,
        voice_credits: int,
        timestamp: int,
        expected_root_before: Optional[int] = None,
    ) -> ServiceResult:
        with self._registry_lock:
            try:
                index = self._state.sign_up(
                    pub_key, voice_credits, timestamp, expected_root_before
                )
            except (CallerMisuseError, ValueError) as e:
                return ServiceResult(success=False, errors=[str(e)])
            return ServiceResult(success=True, data={
                "state_index": index,
                "state_root": str(self._state.registry.root),
            })

    def registry_root(self) -> int:
        with self._registry_lock:
            return self._state.registry.root

    def verify_registry_root(self, expected: int) -> None:
        """Raises RootMismatch (and halts the registry) on divergence."""
        with self._registry_lock:
            self._state.registry.verify_root(expected)

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    def deploy_poll(
        self,
        end_timestamp: int,
        coordinator_keypair: Keypair,
        voting_mode: Optional[VotingMode] = None,
    ) -> ServiceResult:
        """Open a poll with the configured tree depths, batch sizes and limits."""
        with self._registry_lock:
            try:
                poll_id = self._state.deploy_poll(
                    end_timestamp=end_timestamp,
                    tree_depths=self._config.tree_depths,
                    batch_sizes=self._config.batch_sizes,
                    max_values=self._config.max_values,
                    coordinator_keypair=coordinator_keypair,
                    voting_mode=voting_mode or self._config.voting_mode,
                    salt_source=self._salt_source,
                )
            except (CallerMisuseError, ValueError) as e:
                return ServiceResult(success=False, errors=[str(e)])
            self._coordinator_keypairs[poll_id] = coordinator_keypair
            return ServiceResult(success=True, data={"poll_id": poll_id})

    def register_coordinator_keypair(self, poll_id: int, keypair: Keypair) -> ServiceResult:
        """Attach the coordinator key to a poll restored without it."""
        def op(poll: Poll) -> dict[str, Any]:
            poll.set_coordinator_keypair(keypair)
            self._coordinator_keypairs[poll_id] = keypair
            return {"poll_id": poll_id}
        return self._with_poll(poll_id, op)

    def publish_message(
        self,
        poll_id: int,
        message: Message,
        enc_pub_key: PubKey,
        timestamp: Optional[int] = None,
    ) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            index = poll.publish_message(message, enc_pub_key, timestamp)
            return {"message_index": index, "chain_hash": str(poll.chain_hash)}
        return self._with_poll(poll_id, op)

    def close_poll(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            poll.close()
            return {
                "num_messages": len(poll.messages),
                "num_batches": poll.num_message_batches,
                "chain_hash": str(poll.chain_hash),
            }
        return self._with_poll(poll_id, op)

    def close_expired_polls(self, now: int) -> list[int]:
        """Close every open poll whose end timestamp has passed."""
        with self._registry_lock:
            poll_ids = sorted(self._state.polls)
        closed: list[int] = []
        for poll_id in poll_ids:
            with self._poll_lock(poll_id):
                if self._state.poll(poll_id).close_if_expired(now):
                    closed.append(poll_id)
        return closed

    def refresh_poll_snapshot(self, poll_id: int) -> ServiceResult:
        """Copy the current registry into a poll that has not started processing."""
        with self._registry_lock:
            leaves = self._state.registry.leaves

        def op(poll: Poll) -> dict[str, Any]:
            poll.refresh_snapshot(leaves)
            return {"num_signups": poll.num_signups_at_open}
        return self._with_poll(poll_id, op)

    def poll_status(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            return {
                "state": poll.state.value,
                "num_messages": len(poll.messages),
                "num_batches": poll.num_message_batches,
                "num_batches_processed": poll.num_batches_processed,
                "num_tally_batches": poll.num_tally_batches,
                "has_unprocessed_messages": poll.has_unprocessed_messages(),
                "has_untallied_ballots": poll.has_untallied_ballots(),
                "chain_hash": str(poll.chain_hash),
                "sb_commitment": str(poll.sb_commitment.commitment),
                "tally_commitment": str(poll.tally_commitment),
            }
        return self._with_poll(poll_id, op)

    # ------------------------------------------------------------------
    # Processing and tally
    # ------------------------------------------------------------------

    def process_next_batch(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            inputs = poll.process_next_batch()
            return {"circuit_inputs": inputs, "state": poll.state.value}
        return self._with_poll(poll_id, op)

    def process_all_messages(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            return {"circuit_inputs": poll.process_all_messages(), "state": poll.state.value}
        return self._with_poll(poll_id, op)

    def process_next_tally_batch(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            inputs = poll.process_next_tally_batch()
            return {"circuit_inputs": inputs, "state": poll.state.value}
        return self._with_poll(poll_id, op)

    def tally_all(self, poll_id: int) -> ServiceResult:
        def op(poll: Poll) -> dict[str, Any]:
            inputs = poll.tally_all()
            results_salt, spent_salt, per_vo_salt = poll.tally_salts
            return {
                "circuit_inputs": inputs,
                "state": poll.state.value,
                "results": poll.results,
                "results_salt": results_salt,
                "total_spent_voice_credits": poll.total_spent_voice_credits,
                "spent_voice_credits_salt": spent_salt,
                "per_vo_spent_voice_credits": poll.per_vo_spent_voice_credits,
                "per_vo_spent_voice_credits_salt": per_vo_salt,
                "tally_commitment": poll.tally_commitment,
            }
        return self._with_poll(poll_id, op)

    def message_batch_inputs(self, poll_id: int, n: int) -> ServiceResult:
        return self._with_poll(
            poll_id, lambda poll: {"circuit_inputs": poll.message_batch_inputs(n)}
        )

    def tally_batch_inputs(self, poll_id: int, n: int) -> ServiceResult:
        return self._with_poll(
            poll_id, lambda poll: {"circuit_inputs": poll.tally_batch_inputs(n)}
        )

    def assert_sb_commitment(self, poll_id: int, expected: int) -> None:
        """Raises CheckpointMismatch (and halts the poll) on divergence."""
        with self._poll_lock(poll_id):
            self._state.poll(poll_id).assert_sb_commitment(expected)

    def assert_tally_commitment(self, poll_id: int, expected: int) -> None:
        with self._poll_lock(poll_id):
            self._state.poll(poll_id).assert_tally_commitment(expected)

    # ------------------------------------------------------------------
    # Chain events
    # ------------------------------------------------------------------

    def apply_chain_event(self, event: ChainEvent) -> ServiceResult:
        """Apply an event and, once it has applied, record it in the log (if any).

        A rejected event is never logged, so the log always replays.
        """
        with self._registry_lock:
            if self._event_log is not None:
                try:
                    self._event_log.check_append(event)
                except ValueError as e:
                    return ServiceResult(success=False, errors=[str(e)])
            poll_id = event.payload.get("poll_id")
            lock = self._poll_lock(int(poll_id)) if poll_id is not None else self._registry_lock
            with lock:
                try:
                    apply_event(
                        self._state, event, self._coordinator_keypairs, self._salt_source
                    )
                except (CallerMisuseError, ValueError) as e:
                    logger.warning("Chain event %s rejected: %s", event.event_id, e)
                    return ServiceResult(success=False, errors=[str(e)])
            if self._event_log is not None:
                self._event_log.append(event)
        return ServiceResult(success=True, data={"event_id": event.event_id})

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self._registry_lock:
            locks = [self._poll_lock(pid) for pid in sorted(self._state.polls)]
            for lock in locks:
                lock.acquire()
            try:
                return self._state.to_snapshot()
            finally:
                for lock in reversed(locks):
                    lock.release()

    def save_snapshot(self, path: Path) -> ServiceResult:
        write_snapshot(path, self.snapshot())
        logger.info("Snapshot saved to %s", path)
        return ServiceResult(success=True, data={"path": str(path)})

    @classmethod
    def from_snapshot_file(
        cls,
        config: ReplicaConfig,
        path: Path,
        coordinator_keypairs: Optional[dict[int, Keypair]] = None,
        event_log: Optional[ChainEventLog] = None,
    ) -> ReplicaService:
        service = cls(config, event_log=event_log)
        keypairs = dict(coordinator_keypairs or {})
        service._state = load_snapshot(path, keypairs, service._salt_source)
        service._coordinator_keypairs = keypairs
        logger.info("Replica restored from %s", path)
        return service
