"""
Pipeline Tests
==============

End-to-end runs: determinism, result invariants, progress, cancellation
and input/parameter rejection.
"""

import json

import pytest

from conceptgraph.errors import AnalysisCancelled, InputError, ParameterError
from conceptgraph.models import AnalysisParameters, Comment, JurorBlock, UNATTRIBUTED
from conceptgraph.pipeline import JobContext, analysis_build_id, run_analysis
from conceptgraph.storage import StatusFileSink, read_status

STAGES = ["segmenting", "vectorizing", "clustering", "labeling", "projecting", "graph", "completed"]


def link_set(result):
    return sorted((l.source, l.target, l.kind, l.weight) for l in result.links)


class TestDeterminism:
    def test_three_jurors_six_sentences_repeat_identically(self, juror_blocks):
        params = {"k": 2, "seed": 13}
        runs = [run_analysis(juror_blocks, params) for _ in range(10)]
        first = runs[0]
        assert len(first.sentences) == 6
        for other in runs[1:]:
            assert [s.concept_id for s in other.sentences] == [s.concept_id for s in first.sentences]
            assert len(other.concepts) == len(first.concepts)
            assert [(n.id, n.x, n.y, n.z) for n in other.nodes] == [(n.id, n.x, n.y, n.z) for n in first.nodes]
            assert [n.pc_values for n in other.nodes] == [n.pc_values for n in first.nodes]
            assert link_set(other) == link_set(first)
            assert [c.label for c in other.concepts] == [c.label for c in first.concepts]
            assert other.analysis_build_id == first.analysis_build_id
        assert len({r.run_id for r in runs}) == 10

    def test_build_id_tracks_parameters(self, juror_blocks):
        a = analysis_build_id(juror_blocks, AnalysisParameters(seed=1))
        b = analysis_build_id(juror_blocks, AnalysisParameters(seed=2))
        assert a != b


class TestResultInvariants:
    @pytest.fixture
    def result(self, raw_feedback):
        return run_analysis(raw_feedback, {"k": 2, "soft_membership": True, "similarity_threshold": 0.1})

    def test_unattributed_preamble_is_dropped(self, result):
        assert UNATTRIBUTED not in result.jurors
        assert result.jurors == ["Anna Berg", "Tomas Reyes", "Lina Okafor"]

    def test_every_sentence_has_a_concept(self, result):
        ids = {c.id for c in result.concepts}
        for s in result.sentences:
            assert s.concept_id in ids
            assert s.concept_membership[0].concept_id == s.concept_id
            assert sum(m.weight for m in s.concept_membership) == pytest.approx(1.0)

    def test_no_link_without_evidence(self, result):
        assert result.links
        assert all(l.evidence_ids and l.evidence_count == len(l.evidence_ids) for l in result.links)
        assert all(l.structural_role in {"bridge", "cluster-internal"} for l in result.links)

    def test_node_ids_are_unique_and_links_resolve(self, result):
        ids = [n.id for n in result.nodes]
        assert len(ids) == len(set(ids))
        assert all(l.source in ids and l.target in ids for l in result.links)

    def test_positions_fit_the_scene(self, result):
        bound = 2 * result.parameters.scale
        assert all(abs(v) <= bound for n in result.nodes for v in (n.x, n.y, n.z))
        assert all(len(n.pc_values) == result.applied_num_dimensions for n in result.nodes)

    def test_juror_vectors_cover_every_concept(self, result):
        assert set(result.juror_vectors) == set(result.jurors)
        assert all(len(v) == len(result.concepts) for v in result.juror_vectors.values())
        assert set(result.juror_top_terms) == set(result.jurors)

    def test_labels_are_unique_and_gated(self, result):
        labels = [c.label for c in result.concepts]
        assert len(labels) == len(set(labels))
        assert all(c.label_quality >= 0.6 for c in result.concepts)

    def test_result_serializes(self, result):
        payload = json.loads(json.dumps(result.to_dict()))
        assert payload["run_id"] == result.run_id
        assert payload["parameters"]["k"] == 2


class TestDetailLayer:
    def test_children_point_back_to_parents(self, themed_blocks):
        result = run_analysis(themed_blocks, {"k": 1, "detail_layer": True})
        assert result.detail_concepts
        parents = {c.id: c for c in result.concepts}
        for detail in result.detail_concepts:
            assert detail.layer == "detail"
            assert detail.id in parents[detail.parent_concept_id].child_concept_ids
        assert all(s.detail_concept_id for s in result.sentences)

    def test_detail_labels_differ_from_primary_labels(self, themed_blocks):
        result = run_analysis(themed_blocks, {"k": 1, "detail_layer": True})
        primary = {c.label.lower() for c in result.concepts}
        assert result.detail_concepts
        assert all(d.label.lower() not in primary for d in result.detail_concepts)


class TestEmptyInput:
    def test_empty_text(self):
        result = run_analysis("")
        assert result.concepts == []
        assert result.applied_num_dimensions == 0
        assert result.diagnostics["input_error"] == "no sentences found in input"

    def test_no_ngrams(self):
        block = JurorBlock("Anna Berg", (Comment("a", "Supercalifragilisticexpialidocious!"),))
        result = run_analysis([block])
        assert result.concepts == []
        assert result.diagnostics["input_error"] == "empty n-gram vocabulary"


class TestProgressAndCancellation:
    def test_stages_in_order(self, juror_blocks):
        events = []
        run_analysis(juror_blocks, {"k": 2}, JobContext(sink=events.append))
        assert [e.stage for e in events] == STAGES
        pcts = [e.pct for e in events]
        assert pcts == sorted(pcts) and pcts[-1] == 100

    def test_cancel_before_start(self, juror_blocks):
        events = []
        ctx = JobContext(sink=events.append)
        ctx.cancel()
        with pytest.raises(AnalysisCancelled) as excinfo:
            run_analysis(juror_blocks, {"k": 2}, ctx)
        assert excinfo.value.stage == "vectorizing"
        assert [e.stage for e in events] == ["segmenting", "cancelled"]

    def test_cancel_from_progress_sink(self, juror_blocks):
        ctx = JobContext()

        def sink(event):
            if event.stage == "vectorizing":
                ctx.cancel()

        ctx.sink = sink
        with pytest.raises(AnalysisCancelled) as excinfo:
            run_analysis(juror_blocks, {"k": 2}, ctx)
        assert excinfo.value.stage == "clustering"

    def test_status_file_follows_run(self, juror_blocks, tmp_path):
        ctx = JobContext(sink=StatusFileSink(tmp_path))
        run_analysis(juror_blocks, {"k": 2}, ctx)
        status = read_status(tmp_path)
        assert status["run_id"] == ctx.run_id
        assert status["status"] == "completed"
        assert status["progress"] == {"stage": "completed", "pct": 100}


class TestRejection:
    def test_bad_parameters(self, juror_blocks):
        with pytest.raises(ParameterError):
            run_analysis(juror_blocks, {"k": 0})

    def test_inverted_k_range(self, juror_blocks):
        with pytest.raises(ParameterError):
            run_analysis(juror_blocks, {"k_min": 5, "k_max": 3})

    def test_unknown_parameter(self, juror_blocks):
        with pytest.raises(ParameterError):
            run_analysis(juror_blocks, {"clusters": 3})

    def test_non_text_source(self):
        with pytest.raises(InputError):
            run_analysis(123)

    def test_mixed_block_sequence(self):
        with pytest.raises(InputError):
            run_analysis(["just a string"])
