"""stackmemory configuration — load [stackmemory] from config.toml + env.

Pure stdlib.  Missing file or section means defaults; STACKMEMORY_DB
overrides the database path.
"""

from __future__ import annotations

import os
import pathlib
import tomllib
from typing import NamedTuple

from stackmemory.sqlite_store import RetryPolicy


class StackConfig(NamedTuple):
    db_path: pathlib.Path
    max_stack_depth: int = 20
    digest_max_length: int = 2000
    busy_timeout_sec: float = 5.0
    retry_attempts: int = 3
    retry_base_delay: float = 0.05
    default_query_limit: int = 10
    attention_prefix_len: int = 50

    def retry_policy(self) -> RetryPolicy:
        """Build the bounded busy-retry policy described by this config."""
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
        )


_DEFAULT_DB_PATH = ".stackmemory/context.db"


def _load_toml(project_root: pathlib.Path) -> dict:
    cfg_path = project_root / "config" / "config.toml"
    if not cfg_path.is_file():
        return {}
    with open(cfg_path, "rb") as f:
        return tomllib.load(f)


def load_config(project_root: pathlib.Path) -> StackConfig:
    """Load stackmemory config from config.toml + environment variables."""
    project_root = pathlib.Path(project_root)
    sm = _load_toml(project_root).get("stackmemory", {})
    storage = sm.get("storage", {})
    retrieval = sm.get("retrieval", {})

    db_path = pathlib.Path(
        os.environ.get("STACKMEMORY_DB") or storage.get("db_path", _DEFAULT_DB_PATH)
    )
    if not db_path.is_absolute():
        db_path = project_root / db_path

    return StackConfig(
        db_path=db_path,
        max_stack_depth=sm.get("max_stack_depth", 20),
        digest_max_length=sm.get("digest_max_length", 2000),
        busy_timeout_sec=storage.get("busy_timeout_sec", 5.0),
        retry_attempts=storage.get("retry_attempts", 3),
        retry_base_delay=storage.get("retry_base_delay", 0.05),
        default_query_limit=retrieval.get("default_limit", 10),
        attention_prefix_len=retrieval.get("attention_prefix_len", 50),
    )
