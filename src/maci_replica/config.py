"""Replica configuration: default poll parameters and tree sizes.

Defaults live in config/replica_params.json. Environment variables
(optionally read from a .env file) override individual values:

    MACI_STATE_TREE_DEPTH
    MACI_INT_STATE_TREE_DEPTH
    MACI_VOTE_OPTION_TREE_DEPTH
    MACI_MESSAGE_BATCH_SIZE
    MACI_MAX_MESSAGES
    MACI_MAX_VOTE_OPTIONS
    MACI_VOTING_MODE          ("qv" or "non_qv")
    MACI_SALT_SEED            (integer; enables deterministic salts)

The tally batch size is always derived as 5 ** int_state_tree_depth.

Usage:
    config = ReplicaConfig.from_config_dir(Path("config"))
    config = ReplicaConfig.from_env(Path(".env"), base=config)
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import dotenv_values

from maci_replica.crypto.field import SaltGenerator, SaltSource, gen_random_salt
from maci_replica.models.poll import (
    STATE_TREE_ARITY,
    BatchSizes,
    MaxValues,
    TreeDepths,
    VotingMode,
    validate_poll_params,
)


_ENV_PREFIX = "MACI_"


@dataclass(frozen=True)
class ReplicaConfig:
    """Validated replica parameters."""
    state_tree_depth: int
    tree_depths: TreeDepths
    batch_sizes: BatchSizes
    max_values: MaxValues
    voting_mode: VotingMode = VotingMode.QUADRATIC
    salt_seed: Optional[int] = None

    PARAMS_FILENAME = "replica_params.json"

    def __post_init__(self) -> None:
        errors = validate_poll_params(self.tree_depths, self.batch_sizes, self.max_values)
        if self.state_tree_depth < 1:
            errors.append("state_tree_depth must be at least 1")
        if self.tree_depths.int_state_tree_depth > self.state_tree_depth:
            errors.append("int_state_tree_depth cannot exceed state_tree_depth")
        if errors:
            raise ValueError("Invalid replica config: " + "; ".join(errors))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplicaConfig:
        if "version" not in data:
            raise ValueError("Replica config missing 'version' field")
        for key in ("state_tree_depth", "tree_depths", "batch_sizes", "max_values"):
            if key not in data:
                raise ValueError(f"Replica config missing '{key}' field")
        seed = data.get("salt_seed")
        return cls(
            state_tree_depth=int(data["state_tree_depth"]),
            tree_depths=TreeDepths.from_json(data["tree_depths"]),
            batch_sizes=BatchSizes.from_json(data["batch_sizes"]),
            max_values=MaxValues.from_json(data["max_values"]),
            voting_mode=VotingMode(data.get("voting_mode", VotingMode.QUADRATIC.value)),
            salt_seed=None if seed is None else int(seed),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ReplicaConfig:
        """Load parameters from the canonical config directory.

        Raises:
            FileNotFoundError: If replica_params.json does not exist.
            ValueError: If the parameters are structurally invalid.
        """
        path = config_dir / cls.PARAMS_FILENAME
        if not path.exists():
            raise FileNotFoundError(f"Replica params not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        base: Optional[ReplicaConfig] = None,
        environ: Optional[dict[str, str]] = None,
    ) -> ReplicaConfig:
        """Apply MACI_* overrides on top of `base`.

        Values from `env_file` are read with python-dotenv; the process
        environment (or `environ`, if given) takes precedence over them.
        """
        if base is None:
            raise ValueError("from_env needs a base config to override")
        values: dict[str, Optional[str]] = {}
        if env_file is not None and env_file.exists():
            values.update(dotenv_values(env_file))
        source = os.environ if environ is None else environ
        values.update({k: v for k, v in source.items() if k.startswith(_ENV_PREFIX)})

        def get_int(name: str, default: int) -> int:
            raw = values.get(_ENV_PREFIX + name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{_ENV_PREFIX}{name} must be an integer, got {raw!r}") from None

        state_tree_depth = get_int("STATE_TREE_DEPTH", base.state_tree_depth)
        int_depth = get_int("INT_STATE_TREE_DEPTH", base.tree_depths.int_state_tree_depth)
        vo_depth = get_int("VOTE_OPTION_TREE_DEPTH", base.tree_depths.vote_option_tree_depth)
        mode_raw = values.get(_ENV_PREFIX + "VOTING_MODE")
        seed_raw = values.get(_ENV_PREFIX + "SALT_SEED")

        return replace(
            base,
            state_tree_depth=state_tree_depth,
            tree_depths=TreeDepths(int_depth, vo_depth),
            batch_sizes=BatchSizes(
                message_batch_size=get_int(
                    "MESSAGE_BATCH_SIZE", base.batch_sizes.message_batch_size
                ),
                tally_batch_size=STATE_TREE_ARITY ** int_depth,
            ),
            max_values=MaxValues(
                max_messages=get_int("MAX_MESSAGES", base.max_values.max_messages),
                max_vote_options=get_int(
                    "MAX_VOTE_OPTIONS", base.max_values.max_vote_options
                ),
            ),
            voting_mode=VotingMode(mode_raw) if mode_raw else base.voting_mode,
            salt_seed=int(seed_raw) if seed_raw else base.salt_seed,
        )

    def salt_source(self) -> SaltSource:
        """A fresh salt source: deterministic when a seed is configured."""
        if self.salt_seed is None:
            return gen_random_salt
        return SaltGenerator(self.salt_seed)
