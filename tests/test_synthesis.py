"""
Synthesis Tests
===============

Optional title/axis enrichment with a fake text model: gating, fallbacks,
budget, circuit breaker and cache.
"""

import json

import pytest

from conceptgraph.config import SynthesizerConfig
from conceptgraph.pipeline import run_analysis
from conceptgraph.synthesis import (
    LabelSynthesisRequest,
    Synthesizer,
    enrich_result,
    normalize_title,
    parse_response,
    sanitize_text_for_llm,
)

REQUEST = LabelSynthesisRequest(
    request_id="concept:0",
    seed_label="Natural Light and Reading Rooms",
    top_terms=("natural light", "reading rooms"),
    evidence=("The natural light in the reading rooms is beautiful.",),
)
OTHER_REQUEST = LabelSynthesisRequest(
    request_id="concept:1",
    seed_label="Facade Materials",
    top_terms=("facade materials",),
    evidence=("The facade materials feel heavy at street level.",),
)
GOOD = '{"title": "Daylit Reading Rooms", "one_liner": "Light is the main material of the rooms."}'


def answer(text):
    calls = []

    def generate(prompt, timeout):
        calls.append(prompt)
        return text

    generate.calls = calls
    return generate


def failing(exc):
    def generate(prompt, timeout):
        raise exc

    return generate


class TestParsing:
    def test_json_is_found_inside_chatter(self):
        assert parse_response('Sure! {"title": "Quiet Courtyard Light"} done') == ("Quiet Courtyard Light", None)

    def test_non_json_raises(self):
        with pytest.raises(ValueError):
            parse_response("no json here")

    def test_title_is_truncated(self):
        assert normalize_title("One Two Three Four Five Six Seven Eight") == "One Two Three Four Five Six Seven"

    def test_contact_details_are_scrubbed(self):
        assert sanitize_text_for_llm("mail jo@example.com or see https://x.org now") == "mail or see now"


class TestSynthesizer:
    def test_accepted_title(self):
        out = Synthesizer(SynthesizerConfig(), generate=answer(GOOD)).synthesize(REQUEST)
        assert not out.is_fallback
        assert out.title == "Daylit Reading Rooms"
        assert out.one_liner == "Light is the main material of the rooms."

    def test_gate_rejects_bad_title(self):
        out = Synthesizer(SynthesizerConfig(), generate=answer('{"title": "Light"}')).synthesize(REQUEST)
        assert out.is_fallback
        assert out.fallback_reason == "quality-gate"
        assert out.title == REQUEST.seed_label

    def test_malformed_answer(self):
        out = Synthesizer(SynthesizerConfig(), generate=answer("not json")).synthesize(REQUEST)
        assert out.fallback_reason == "malformed"

    def test_disabled(self):
        generate = answer(GOOD)
        out = Synthesizer(SynthesizerConfig(enabled=False), generate=generate).synthesize(REQUEST)
        assert out.fallback_reason == "disabled"
        assert generate.calls == []

    def test_budget_runs_out(self):
        synth = Synthesizer(SynthesizerConfig(call_budget=1), generate=answer(GOOD))
        assert not synth.synthesize(REQUEST).is_fallback
        assert synth.synthesize(OTHER_REQUEST).fallback_reason == "budget-exhausted"

    def test_transport_failure_opens_circuit(self):
        synth = Synthesizer(SynthesizerConfig(), generate=failing(ConnectionError("refused")))
        assert synth.synthesize(REQUEST).fallback_reason == "unavailable"
        assert synth.synthesize(OTHER_REQUEST).fallback_reason == "circuit-open"

    def test_cache_answers_without_calling(self, tmp_path):
        config = SynthesizerConfig(cache_path=tmp_path / "cache.json")
        Synthesizer(config, generate=answer(GOOD)).synthesize(REQUEST)
        out = Synthesizer(config, generate=failing(ConnectionError("offline"))).synthesize(REQUEST)
        assert not out.is_fallback
        assert out.title == "Daylit Reading Rooms"

    def test_cache_file_is_replaced_whole(self, tmp_path):
        cache_path = tmp_path / "cache" / "synthesis.json"
        Synthesizer(SynthesizerConfig(cache_path=cache_path), generate=answer(GOOD)).synthesize(REQUEST)
        stored = json.loads(cache_path.read_text(encoding="utf-8"))
        assert len(stored) == 1
        assert [p.name for p in cache_path.parent.iterdir()] == ["synthesis.json"]


class TestEnrichResult:
    def test_titles_change_but_geometry_does_not(self, juror_blocks):
        result = run_analysis(juror_blocks, {"k": 2, "seed": 13})
        enriched = enrich_result(result, Synthesizer(SynthesizerConfig(), generate=answer(GOOD)))
        assert all(c.title == "Daylit Reading Rooms" for c in enriched.concepts)
        assert all(c.title is None for c in result.concepts)
        assert [c.id for c in enriched.concepts] == [c.id for c in result.concepts]
        assert enriched.links == result.links
        assert [(n.id, n.x, n.y, n.z) for n in enriched.nodes] == [(n.id, n.x, n.y, n.z) for n in result.nodes]
        assert enriched.axis_labels["pc1"]["name"] == "Daylit Reading Rooms"
        assert enriched.diagnostics["enrichment"]["fallbacks"] == 0

    def test_unavailable_model_keeps_labels(self, juror_blocks):
        result = run_analysis(juror_blocks, {"k": 2, "seed": 13})
        enriched = enrich_result(result, Synthesizer(SynthesizerConfig(), generate=failing(TimeoutError())))
        assert [c.title for c in enriched.concepts] == [c.label for c in result.concepts]
        assert enriched.axis_labels == result.axis_labels
