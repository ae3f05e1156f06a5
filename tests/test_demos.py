"""Tests for trace grouping and demo persistence."""

from __future__ import annotations

import json

from sigstream.schemas import Trace
from sigstream.services.demos import ProgramDemos, group_traces, load_demos, save_demos


class TestGroupTraces:
    """Grouping traces by program key."""

    def test_groups_in_first_seen_order(self):
        """Keys keep the order they first appeared in."""
        traces = [
            Trace(key="b", trace={"n": 1}),
            Trace(key="a", trace={"n": 2}),
            Trace(key="b", trace={"n": 3}),
        ]

        demos = group_traces(traces)

        assert [d.key for d in demos] == ["b", "a"]
        assert demos[0].traces == [{"n": 1}, {"n": 3}]

    def test_empty(self):
        assert group_traces([]) == []


class TestSaveAndLoad:
    """JSON file persistence."""

    def test_written_file_is_indented_json(self, tmp_path):
        """The file holds a list of ``{key, traces}`` objects."""
        path = tmp_path / "demos.json"
        save_demos([ProgramDemos(key="q->a", traces=[{"q": "hi", "a": "yo"}])], path)

        raw = path.read_text()
        assert raw.startswith("[\n  {")
        assert json.loads(raw) == [{"key": "q->a", "traces": [{"q": "hi", "a": "yo"}]}]

    def test_load_returns_models(self, tmp_path):
        """Saved demos load back as ``ProgramDemos``."""
        path = tmp_path / "demos.json"
        demos = group_traces([Trace(key="q->a", trace={"q": "hi", "a": "yo"})])
        save_demos(demos, str(path))

        loaded = load_demos(path)

        assert loaded == demos
        assert isinstance(loaded[0], ProgramDemos)
