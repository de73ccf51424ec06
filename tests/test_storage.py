"""
Storage Tests
=============

Atomic JSON writes, status files and compact save/restore of a graph.
"""

import json

import pytest

from conceptgraph.models import ProgressEvent, to_jsonable
from conceptgraph.pipeline import run_analysis
from conceptgraph.storage import (
    StatusFileSink,
    compact_result,
    read_json,
    read_status,
    restore_graph,
    save_result,
    write_json,
    write_status,
)


class TestJsonFiles:
    def test_write_then_read(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        write_json(path, {"a": [1, 2], "b": "ü"})
        assert read_json(path) == {"a": [1, 2], "b": "ü"}
        assert not (tmp_path / "nested" / "data.json.tmp").exists()

    def test_save_result(self, tmp_path, juror_blocks):
        result = run_analysis(juror_blocks, {"k": 2})
        save_result(tmp_path / "result.json", result)
        assert read_json(tmp_path / "result.json")["analysis_build_id"] == result.analysis_build_id


class TestStatus:
    def test_missing_status_reads_as_queued(self, tmp_path):
        assert read_status(tmp_path)["status"] == "queued"

    def test_pct_is_clamped(self, tmp_path):
        write_status(tmp_path, "run-1", "processing", "clustering", 140)
        status = read_status(tmp_path)
        assert status["progress"] == {"stage": "clustering", "pct": 100}
        assert status["error"] is None

    def test_sink_marks_failures(self, tmp_path):
        StatusFileSink(tmp_path)(ProgressEvent(run_id="run-2", stage="failed", pct=100, message="ValueError: boom"))
        status = read_status(tmp_path)
        assert status["status"] == "failed"
        assert status["error"] == "ValueError: boom"


class TestCompactRoundTrip:
    @pytest.fixture
    def result(self, raw_feedback):
        return run_analysis(raw_feedback, {"k": 2, "similarity_threshold": 0.1})

    def test_payload_drops_derived_data(self, result):
        payload = compact_result(result)
        assert all("x" not in n for n in payload["nodes"])
        assert all(l["kind"] == "jurorConcept" for l in payload["membership_links"])

    def test_restore_reproduces_positions_and_links(self, result):
        payload = json.loads(json.dumps(compact_result(result)))
        nodes, links = restore_graph(payload)
        assert [(n.id, n.x, n.y, n.z) for n in nodes] == [(n.id, n.x, n.y, n.z) for n in result.nodes]
        assert [to_jsonable(l) for l in links] == [to_jsonable(l) for l in result.links]

    def test_unknown_version_is_rejected(self, result):
        payload = compact_result(result)
        payload["format_version"] = 99
        with pytest.raises(ValueError):
            restore_graph(payload)
