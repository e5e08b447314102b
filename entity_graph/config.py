"""Configuration for the entity graph.

Loads from environment variables with sensible defaults.
Optionally reads a config.json file.

Note:
    Environment variables use the ``ENTITY_GRAPH_*`` prefix.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Config:
    """Central configuration for the resolution core and its batch job."""

    # Storage
    db_path: str = ""  # resolved in load_config()

    # Name resolution: size of the substring candidate pool that gets scored
    resolver_pool_size: int = 20

    # Batch sync: unprocessed records pulled per source type per run
    sync_batch_size: int = 5

    # Entity context: recent mentions returned alongside an entity
    mention_context_limit: int = 10

    log_level: str = "INFO"

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty == OK)."""
        errors: list[str] = []
        if not self.db_path:
            errors.append("ENTITY_GRAPH_DB must not be empty")
        if self.resolver_pool_size < 1:
            errors.append("ENTITY_GRAPH_RESOLVER_POOL must be >= 1")
        if self.sync_batch_size < 1:
            errors.append("ENTITY_GRAPH_BATCH_SIZE must be >= 1")
        if self.mention_context_limit < 0:
            errors.append("ENTITY_GRAPH_CONTEXT_MENTIONS must be >= 0")
        if self.log_level.upper() not in _LOG_LEVELS:
            errors.append(f"ENTITY_GRAPH_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        return errors


def load_config(config_path: Optional[str] = None) -> Config:
    """Build a Config from environment variables, optionally overlaid with a JSON file.

    Environment variables (all optional):
        ENTITY_GRAPH_CONFIG
        ENTITY_GRAPH_DB
        ENTITY_GRAPH_RESOLVER_POOL
        ENTITY_GRAPH_BATCH_SIZE
        ENTITY_GRAPH_CONTEXT_MENTIONS
        ENTITY_GRAPH_LOG_LEVEL
    """
    cfg = Config()

    # --- JSON file overlay ------------------------------------------------
    json_path = config_path or os.environ.get("ENTITY_GRAPH_CONFIG")
    if json_path and Path(json_path).is_file():
        with open(json_path, "r") as fh:
            data = json.load(fh)
        for key, val in data.items():
            if hasattr(cfg, key):
                expected_type = type(getattr(cfg, key))
                try:
                    setattr(cfg, key, expected_type(val))
                except (ValueError, TypeError):
                    logger.warning("Ignoring bad config value %s=%r in %s", key, val, json_path)

    # --- Environment variable overlay -------------------------------------
    env_map: dict[str, tuple[str, type]] = {
        "ENTITY_GRAPH_DB": ("db_path", str),
        "ENTITY_GRAPH_RESOLVER_POOL": ("resolver_pool_size", int),
        "ENTITY_GRAPH_BATCH_SIZE": ("sync_batch_size", int),
        "ENTITY_GRAPH_CONTEXT_MENTIONS": ("mention_context_limit", int),
        "ENTITY_GRAPH_LOG_LEVEL": ("log_level", str),
    }

    for env_key, (attr, cast) in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            try:
                setattr(cfg, attr, cast(val))
            except (ValueError, TypeError):
                logger.warning("Ignoring bad value for %s: %r", env_key, val)

    # --- Default db_path resolution ---------------------------------------
    if not cfg.db_path:
        cfg.db_path = str(Path.home() / ".entity-graph" / "graph.sqlite")

    cfg.log_level = cfg.log_level.upper()

    return cfg
