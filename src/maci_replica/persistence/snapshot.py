"""Versioned snapshots of a MaciState.

A snapshot is plain JSON: registry leaves plus one record per poll with
everything needed to resume processing. Loading rebuilds every tree and
re-derives every recorded root, chain hash and commitment; any
disagreement fails closed with CheckpointMismatch.

The coordinator's private key is never written. Pass it back in on load
(or via Poll.set_coordinator_keypair) before processing resumes.

A halted registry or poll is never written, so a reload cannot clear an
integrity failure.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from maci_replica.crypto.field import SaltSource, gen_random_salt
from maci_replica.crypto.keys import Keypair
from maci_replica.engine.poll import Poll
from maci_replica.engine.registry import SignupRegistry
from maci_replica.errors import (
    CheckpointMismatch,
    ReplicaHalted,
    SchemaVersionMismatch,
)
from maci_replica.models.state_leaf import StateLeaf

if TYPE_CHECKING:
    from maci_replica.engine.maci_state import MaciState


SCHEMA_VERSION = 1


def to_snapshot(state: MaciState) -> dict[str, Any]:
    """Serialize a MaciState. Raises ReplicaHalted if any component is halted."""
    if state.registry.halted:
        raise ReplicaHalted("Cannot snapshot a halted signup registry")
    halted = [pid for pid in sorted(state.polls) if state.polls[pid].halted]
    if halted:
        raise ReplicaHalted(f"Cannot snapshot halted polls {halted}")
    return {
        "schema_version": SCHEMA_VERSION,
        "state_tree_depth": state.state_tree_depth,
        "state_root": str(state.registry.root),
        "state_leaves": [leaf.to_json() for leaf in state.registry.leaves],
        "polls": [state.polls[pid].to_json() for pid in sorted(state.polls)],
    }


def from_snapshot(
    data: dict[str, Any],
    coordinator_keypairs: Optional[dict[int, Keypair]] = None,
    salt_source: SaltSource = gen_random_salt,
) -> MaciState:
    """Rebuild a MaciState, verifying every recorded checkpoint."""
    from maci_replica.engine.maci_state import MaciState

    version = data.get("schema_version")
    if version != SCHEMA_VERSION:
        raise SchemaVersionMismatch(
            f"Unsupported snapshot schema version {version!r}, "
            f"expected {SCHEMA_VERSION}"
        )

    keypairs = coordinator_keypairs or {}
    depth = int(data["state_tree_depth"])
    state = MaciState(depth)
    state.registry = SignupRegistry.from_leaves(
        depth, [StateLeaf.from_json(s) for s in data["state_leaves"]]
    )
    if str(state.registry.root) != data["state_root"]:
        raise CheckpointMismatch(
            f"Registry root {state.registry.root} differs from recorded "
            f"{data['state_root']}"
        )

    for record in data["polls"]:
        poll_id = int(record["poll_id"])
        if poll_id in state.polls:
            raise CheckpointMismatch(f"Duplicate poll id {poll_id} in snapshot")
        state.polls[poll_id] = Poll.from_json(
            record, keypairs.get(poll_id), salt_source
        )
    return state


def save_snapshot(path: Path, state: MaciState) -> None:
    write_snapshot(path, to_snapshot(state))


def write_snapshot(path: Path, snapshot: dict[str, Any]) -> None:
    """Write a snapshot atomically: temp file in the same directory, then replace."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(snapshot, sort_keys=True, indent=1)
    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_snapshot(
    path: Path,
    coordinator_keypairs: Optional[dict[int, Keypair]] = None,
    salt_source: SaltSource = gen_random_salt,
) -> MaciState:
    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)
    return from_snapshot(data, coordinator_keypairs, salt_source)
