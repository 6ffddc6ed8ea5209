"""Tests for stackmemory.digest — generate_digest."""

from __future__ import annotations

from stackmemory.digest import generate_digest


def _frame(**overrides):
    frame = {
        "frame_id": "f1",
        "name": "Implement cache",
        "type": "subtask",
        "depth": 1,
        "outputs": {},
    }
    frame.update(overrides)
    return frame


def _anchor(aid, atype, text, priority=5):
    return {"anchor_id": aid, "type": atype, "text": text, "priority": priority}


def _event(seq, etype, payload=None):
    return {"seq": seq, "event_type": etype, "payload": payload or {}}


class TestGenerateDigest:
    def test_deterministic(self):
        anchors = [
            _anchor("a1", "FACT", "Cache is LRU", 4),
            _anchor("a2", "DECISION", "Use dict", 6),
        ]
        events = [_event(1, "tool_call", {"tool_name": "edit"}), _event(2, "observation")]
        first = generate_digest(_frame(), anchors, events)
        second = generate_digest(_frame(), list(anchors), list(events))
        assert first.text == second.text
        assert first.structured == second.structured

    def test_header_and_empty_frame(self):
        digest = generate_digest(_frame(), [], [])
        assert digest.text.splitlines()[0] == "Completed: Implement cache (subtask)"
        assert "Activity: 0 events, 0 tool calls" in digest.text
        assert digest.structured["anchors"] == {}
        assert digest.structured["truncated"] is False

    def test_groups_follow_type_order(self):
        anchors = [
            _anchor("a1", "TODO", "write docs"),
            _anchor("a2", "RISK", "cold start"),
            _anchor("a3", "DECISION", "use dict"),
            _anchor("a4", "CONSTRAINT", "no threads"),
        ]
        text = generate_digest(_frame(), anchors, []).text
        positions = [text.index(t) for t in ("Decisions:", "Constraints:", "Risks:", "Todos:")]
        assert positions == sorted(positions)
        assert "Facts:" not in text

    def test_priority_desc_with_stable_ties(self):
        anchors = [
            _anchor("a1", "FACT", "alpha", 3),
            _anchor("a2", "FACT", "beta", 8),
            _anchor("a3", "FACT", "gamma", 3),
        ]
        digest = generate_digest(_frame(), anchors, [])
        facts = [a["text"] for a in digest.structured["anchors"]["FACT"]]
        assert facts == ["beta", "alpha", "gamma"]
        assert "- [p8] beta" in digest.text

    def test_dedupes_type_and_text(self):
        anchors = [
            _anchor("a1", "FACT", "same", 2),
            _anchor("a2", "FACT", "same", 6),
            _anchor("a3", "RISK", "same", 1),
        ]
        digest = generate_digest(_frame(), anchors, [])
        assert [a["anchor_id"] for a in digest.structured["anchors"]["FACT"]] == ["a2"]
        assert len(digest.structured["anchors"]["RISK"]) == 1

    def test_event_summary(self):
        events = [
            _event(1, "tool_call", {"tool_name": "read"}),
            _event(2, "tool_result"),
            _event(3, "tool_call", {"tool_name": "edit"}),
            _event(4, "tool_call", {"tool_name": "read"}),
            _event(5, "artifact", {"path": "src/cache.py"}),
            _event(6, "artifact", {"path": "src/cache.py"}),
        ]
        digest = generate_digest(_frame(), [], events)
        assert "Activity: 6 events, 3 tool calls (edit x1, read x2)" in digest.text
        assert "Artifacts: src/cache.py" in digest.text
        assert digest.structured["events_by_type"] == {
            "tool_call": 3, "tool_result": 1, "artifact": 2,
        }
        assert digest.structured["tool_calls"] == {"edit": 1, "read": 2}

    def test_outputs_rendered_sorted(self):
        digest = generate_digest(_frame(outputs={"zeta": 1, "alpha": "ok"}), [], [])
        lines = digest.text.splitlines()
        assert lines.index("- alpha: ok") < lines.index("- zeta: 1")

    def test_truncation_drops_lowest_priority_first(self):
        anchors = [
            _anchor("keep", "DECISION", "important " + "x" * 40, 9),
            _anchor("drop", "FACT", "trivia " + "y" * 40, 1),
        ]
        full = generate_digest(_frame(), anchors, [])
        limit = len(full.text) - 10
        digest = generate_digest(_frame(), anchors, [], max_length=limit)
        assert len(digest.text) <= limit
        assert "important" in digest.text
        assert "trivia" not in digest.text
        assert digest.structured["truncated"] is True
        assert digest.structured["dropped_anchors"] == 1

    def test_hard_cut_ends_with_ellipsis(self):
        anchors = [_anchor("a1", "FACT", "z" * 500, 5)]
        digest = generate_digest(_frame(outputs={"log": "w" * 90}), anchors, [], max_length=40)
        assert len(digest.text) == 40
        assert digest.text.endswith("...")
        assert digest.structured["truncated"] is True

    def test_non_mapping_payload_ignored(self):
        events = [_event(1, "tool_call"), _event(2, "artifact")]
        events[0]["payload"] = ["read", "edit"]
        events[1]["payload"] = "src/cache.py"
        digest = generate_digest(_frame(), [], events)
        assert "Activity: 2 events, 1 tool calls (unknown x1)" in digest.text
        assert digest.structured["artifacts"] == []

    def test_tiny_max_length_never_exceeded(self):
        for limit in (0, 1, 2, 3):
            digest = generate_digest(_frame(), [], [], max_length=limit)
            assert len(digest.text) == limit
            assert digest.text == "..."[:limit]
            assert digest.structured["truncated"] is True

    def test_fits_without_truncation(self):
        digest = generate_digest(_frame(), [_anchor("a1", "FACT", "short")], [], max_length=2000)
        assert digest.structured["truncated"] is False
        assert digest.structured["dropped_anchors"] == 0
