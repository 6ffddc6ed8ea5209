"""Status report — read-only snapshot of the context store."""

from __future__ import annotations

import logging
import pathlib

from stackmemory.config import StackConfig, load_config
from stackmemory.stack_memory import StackMemory

log = logging.getLogger("stackmemory.status")

_STALE_DAYS = 7
_PATTERN_WINDOW_SEC = 86400


def render_status(memory: StackMemory, project_id: str | None = None) -> str:
    """Build the human-readable status report."""
    stats = memory.get_stats()
    lines = [
        "StackMemory status",
        f"  frames:   {stats['total_frames']} ({stats['active_frames']} active)",
        f"  anchors:  {stats['total_anchors']}",
        f"  events:   {stats['total_events']}",
        f"  contexts: {stats['total_contexts']}",
        f"  queries:  {stats['total_queries']}",
    ]

    if project_id is not None:
        active = memory.frames.list_active_frames(project_id, limit=3)
        if active:
            lines.append("")
            lines.append("Active frames:")
            for frame in active:
                lines.append(f"  - {frame['name']} ({frame['type']}, depth {frame['depth']})")

    patterns = memory.attention.recent_patterns(_PATTERN_WINDOW_SEC, limit=3)
    if patterns:
        lines.append("")
        lines.append("Recent query patterns:")
        for prefix, count in patterns:
            lines.append(f'  ? "{prefix}" ({count}x)')

    stale = memory.retriever.count_stale(_STALE_DAYS)
    if stale:
        lines.append("")
        lines.append(f"{stale} contexts haven't been accessed in {_STALE_DAYS}+ days")
    return "\n".join(lines)


def run(config: StackConfig, project_id: str | None = None) -> str:
    memory = StackMemory(config)
    report = render_status(memory, project_id)
    print(report)
    return report


def main(project_id: str | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    project_root = pathlib.Path(__file__).resolve().parent.parent
    config = load_config(project_root)
    log.info("Reading %s", config.db_path)
    run(config, project_id)
