"""Frame digest — compact summary of a frame's anchors and events.

Computed once, when a frame closes, and stored on the frame as
``digest_text`` / ``digest_json`` for the parent frame to consume.

generate_digest() is a pure function: no clock, no I/O, no set iteration,
so identical inputs always give byte-identical text.
"""

from __future__ import annotations

import json
from typing import NamedTuple

from stackmemory.event_log import ANCHOR_TYPES, EVENT_TYPES

_GROUP_TITLES: dict[str, str] = {
    "DECISION": "Decisions",
    "CONSTRAINT": "Constraints",
    "INTERFACE_CONTRACT": "Interface contracts",
    "FACT": "Facts",
    "RISK": "Risks",
    "TODO": "Todos",
}

_VALUE_PREVIEW = 100
_ELLIPSIS = "..."


class DigestResult(NamedTuple):
    text: str
    structured: dict


def _format_value(value) -> str:
    if isinstance(value, str):
        text = value
    else:
        text = json.dumps(value, sort_keys=True, default=str)
    if len(text) > _VALUE_PREVIEW:
        return text[:_VALUE_PREVIEW] + _ELLIPSIS
    return text


def _dedupe(anchors: list[dict]) -> list[dict]:
    """Drop repeated (type, text) anchors, keeping the highest priority one.

    Input order is creation order; the result is sorted by descending
    priority with creation order as the stable tie-break.
    """
    ordered = sorted(anchors, key=lambda a: -a["priority"])
    seen: set[tuple[str, str]] = set()
    unique: list[dict] = []
    for anchor in ordered:
        key = (anchor["type"], anchor["text"].strip())
        if key in seen:
            continue
        seen.add(key)
        unique.append(anchor)
    return unique


def _group(anchors: list[dict]) -> list[tuple[str, list[dict]]]:
    groups: list[tuple[str, list[dict]]] = []
    for anchor_type in ANCHOR_TYPES:
        members = [a for a in anchors if a["type"] == anchor_type]
        if members:
            groups.append((anchor_type, members))
    return groups


def _summarize_events(events: list[dict]) -> tuple[dict, dict, list[str]]:
    by_type = {t: 0 for t in EVENT_TYPES}
    tool_calls: dict[str, int] = {}
    artifacts: list[str] = []
    for event in sorted(events, key=lambda e: e["seq"]):
        etype = event["event_type"]
        by_type[etype] = by_type.get(etype, 0) + 1
        payload = event.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        if etype == "tool_call":
            name = str(payload.get("tool_name") or "unknown")
            tool_calls[name] = tool_calls.get(name, 0) + 1
        elif etype == "artifact":
            path = payload.get("path") or payload.get("ref")
            if path and str(path) not in artifacts:
                artifacts.append(str(path))
    by_type = {k: v for k, v in by_type.items() if v}
    tool_calls = dict(sorted(tool_calls.items()))
    return by_type, tool_calls, artifacts


def _render(
    frame: dict,
    groups: list[tuple[str, list[dict]]],
    kept: set[str],
    event_count: int,
    tool_calls: dict,
    artifacts: list[str],
    outputs: dict,
) -> str:
    lines = [f"Completed: {frame['name']} ({frame['type']})"]
    for anchor_type, members in groups:
        shown = [a for a in members if a["anchor_id"] in kept]
        if not shown:
            continue
        lines.append("")
        lines.append(f"{_GROUP_TITLES[anchor_type]}:")
        for anchor in shown:
            lines.append(f"- [p{anchor['priority']}] {anchor['text']}")

    lines.append("")
    activity = f"Activity: {event_count} events, {sum(tool_calls.values())} tool calls"
    if tool_calls:
        activity += " (" + ", ".join(f"{k} x{v}" for k, v in tool_calls.items()) + ")"
    lines.append(activity)
    if artifacts:
        lines.append("Artifacts: " + ", ".join(artifacts))

    if outputs:
        lines.append("")
        lines.append("Outputs:")
        for key in sorted(outputs):
            lines.append(f"- {key}: {_format_value(outputs[key])}")
    return "\n".join(lines)


def generate_digest(
    frame: dict,
    anchors: list[dict],
    events: list[dict],
    max_length: int = 2000,
) -> DigestResult:
    """Summarize *frame* from its anchors (creation order) and events.

    When the rendered text exceeds *max_length*, anchor lines are dropped
    lowest priority first (latest created first on ties).  If the text is
    still too long it is hard-cut and ends with "...".
    """
    unique = _dedupe(anchors)
    groups = _group(unique)
    by_type, tool_calls, artifacts = _summarize_events(events)
    outputs = frame.get("outputs") or {}
    event_count = len(events)

    kept = {a["anchor_id"] for a in unique}
    # unique is priority-desc, creation-asc: the tail is what goes first.
    drop_order = list(reversed(unique))
    text = _render(frame, groups, kept, event_count, tool_calls, artifacts, outputs)
    dropped = 0
    while len(text) > max_length and drop_order:
        kept.discard(drop_order.pop(0)["anchor_id"])
        dropped += 1
        text = _render(frame, groups, kept, event_count, tool_calls, artifacts, outputs)

    truncated = dropped > 0
    if len(text) > max_length:
        if max_length <= len(_ELLIPSIS):
            text = _ELLIPSIS[:max(max_length, 0)]
        else:
            text = text[:max_length - len(_ELLIPSIS)] + _ELLIPSIS
        truncated = True

    structured = {
        "frame_id": frame["frame_id"],
        "name": frame["name"],
        "type": frame["type"],
        "depth": frame["depth"],
        "anchors": {
            anchor_type: [
                {"anchor_id": a["anchor_id"], "text": a["text"], "priority": a["priority"]}
                for a in members
            ]
            for anchor_type, members in groups
        },
        "event_count": event_count,
        "events_by_type": by_type,
        "tool_calls": tool_calls,
        "artifacts": artifacts,
        "outputs": outputs,
        "truncated": truncated,
        "dropped_anchors": dropped,
    }
    return DigestResult(text=text, structured=structured)
