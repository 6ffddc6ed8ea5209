"""Tests for stackmemory.stack_memory and stackmemory.status."""

from __future__ import annotations

import pytest

from stackmemory.errors import OpenChildren
from stackmemory.status import render_status, run


class TestEndToEnd:
    """A task with one subtask, walked from open to close."""

    def test_scenario(self, memory):
        root = memory.frames.open_frame("r1", "p1", "task", "Ship release")
        child = memory.frames.open_frame(
            "r1", "p1", "subtask", "Fix flaky test", parent_frame_id=root,
        )
        assert memory.frames.get_frame(child)["depth"] == 1

        memory.log.add_anchor(child, "DECISION", "Retry the network call twice", priority=5)
        memory.log.append_event("r1", child, "tool_call", {"tool_name": "pytest"})
        memory.log.append_event("r1", child, "tool_result", {"ok": False})
        memory.log.append_event("r1", child, "observation", {"note": "timeout"})
        assert [e["seq"] for e in memory.log.get_run_events("r1")] == [1, 2, 3]

        with pytest.raises(OpenChildren):
            memory.frames.close_frame(root)

        digest = memory.frames.close_frame(child)
        assert "Retry the network call twice" in digest.text
        assert "Activity: 3 events, 1 tool calls (pytest x1)" in digest.text

        memory.frames.close_frame(root)
        assert memory.frames.get_active_path("r1") == []

        results = memory.retriever.query("retry the network call")
        assert results
        assert all("retry the network call" in c.content.lower() for c in results)
        assert memory.attention.count() == 1


class TestHotStackContext:
    def test_one_entry_per_active_frame(self, memory):
        root = memory.frames.open_frame(
            "r1", "p1", "task", "Refactor", inputs={"constraints": ["keep API"]},
        )
        child = memory.frames.open_frame(
            "r1", "p1", "subtask", "Extract module", parent_frame_id=root,
        )
        memory.log.add_anchor(child, "CONSTRAINT", "No new deps", priority=7)
        memory.log.append_event("r1", child, "artifact", {"path": "src/a.py"})
        memory.log.append_event("r1", child, "artifact", {"path": "src/b.py"})
        memory.log.append_event("r1", child, "observation")

        hot = memory.get_hot_stack_context("r1", max_events=2)
        assert [h["frame_id"] for h in hot] == [root, child]
        assert hot[0]["goal"] == "Refactor"
        assert hot[0]["constraints"] == ["keep API"]
        assert hot[1]["constraints"] == ["No new deps"]
        assert [e["seq"] for e in hot[1]["recent_events"]] == [3, 2]
        assert hot[1]["artifacts"] == ["src/b.py"]

    def test_empty_for_idle_run(self, memory):
        assert memory.get_hot_stack_context("nobody") == []


class TestStats:
    def test_counts_every_table(self, memory):
        fid = memory.frames.open_frame("r1", "p1", "task", "t")
        memory.log.add_anchor(fid, "FACT", "fact one")
        memory.log.append_event("r1", fid, "observation")
        memory.retriever.query("fact one")
        stats = memory.get_stats()
        assert stats["total_frames"] == 1
        assert stats["active_frames"] == 1
        assert stats["total_anchors"] == 1
        assert stats["total_events"] == 1
        assert stats["total_contexts"] == 1
        assert stats["total_queries"] == 1


class TestStatus:
    def test_render_lists_frames_and_patterns(self, memory):
        memory.frames.open_frame("r1", "p1", "task", "Write docs")
        memory.retriever.query("where are the docs")
        memory.retriever.query("where are the docs")
        report = render_status(memory, project_id="p1")
        assert report.startswith("StackMemory status")
        assert "frames:   1 (1 active)" in report
        assert "- Write docs (task, depth 0)" in report
        assert '? "where are the docs" (2x)' in report

    def test_run_prints_report(self, config, capsys):
        report = run(config)
        assert capsys.readouterr().out.strip() == report
        assert "contexts: 0" in report
