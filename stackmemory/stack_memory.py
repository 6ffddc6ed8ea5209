"""StackMemory — one handle over every store sharing a database file.

Callers pass run_id / project_id explicitly on each call; nothing here
holds a "current frame".
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from stackmemory.attention import AttentionTracker
from stackmemory.config import StackConfig
from stackmemory.event_log import EventLog
from stackmemory.frame_stack import FrameStack
from stackmemory.retrieval import Retriever

log = logging.getLogger("stackmemory.stack_memory")


class StackMemory:
    """Frame stack, anchor/event log, retrieval and attention on one db."""

    def __init__(self, config: StackConfig, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        common = {
            "timeout": config.busy_timeout_sec,
            "retry": config.retry_policy(),
            "clock": clock,
        }
        self.frames = FrameStack(
            config.db_path,
            max_depth=config.max_stack_depth,
            digest_max_length=config.digest_max_length,
            **common,
        )
        self.log = EventLog(config.db_path, **common)
        self.attention = AttentionTracker(
            config.db_path, prefix_len=config.attention_prefix_len, **common,
        )
        self.retriever = Retriever(
            config.db_path,
            tracker=self.attention,
            default_limit=config.default_query_limit,
            **common,
        )
        log.debug("StackMemory ready  db=%s", config.db_path)

    def get_hot_stack_context(self, run_id: str, max_events: int = 20) -> list[dict]:
        """Working set for each frame on the run's active path, root first."""
        contexts = []
        for frame in self.frames.get_active_path(run_id):
            frame_id = frame["frame_id"]
            anchors = self.log.get_anchors(frame_id)
            constraints = list(frame["inputs"].get("constraints") or [])
            constraints += [a["text"] for a in anchors if a["type"] == "CONSTRAINT"]
            recent = list(self.log.list_events(frame_id, limit=max_events, order="desc"))
            artifacts: list[str] = []
            for event in reversed(recent):
                path = event["payload"].get("path")
                if event["event_type"] == "artifact" and path and path not in artifacts:
                    artifacts.append(path)
            contexts.append({
                "frame_id": frame_id,
                "goal": frame["name"],
                "constraints": constraints,
                "anchors": anchors,
                "recent_events": recent,
                "artifacts": artifacts,
            })
        return contexts

    def get_stats(self) -> dict:
        stats = self.frames.get_stats()
        stats["total_contexts"] = self.retriever.count()
        stats["total_queries"] = self.attention.count()
        return stats
