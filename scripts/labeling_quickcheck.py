from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
import logging
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conceptgraph.config import SynthesizerConfig
from conceptgraph.logging_utils import setup_logger
from conceptgraph.synthesis import LabelSynthesisRequest, Synthesizer

REQUEST = LabelSynthesisRequest(
    request_id="concept:0",
    seed_label="Natural Light and Rotating Doors",
    top_terms=("natural light", "rotating doors", "light conditions"),
    evidence=(
        "The rotating doors are a brilliant touch and a way to physically interact with light.",
        "A clever approach to the roof creates unique light conditions.",
    ),
)


def _assert_valid_title_accepted() -> None:
    with TemporaryDirectory() as td:
        config = SynthesizerConfig(cache_path=Path(td) / "cache.json", call_budget=2)
        synth = Synthesizer(
            config,
            generate=lambda _prompt, _timeout: '{"title":"Choreographed Daylight","one_liner":"Light is staged by moving parts."}',
        )
        out = synth.synthesize(REQUEST)
    assert not out.is_fallback, f"Expected accepted title, got fallback {out.fallback_reason}"
    assert out.title == "Choreographed Daylight", f"Expected Choreographed Daylight, got {out.title}"


def _assert_invalid_json_fallback() -> None:
    with TemporaryDirectory() as td:
        config = SynthesizerConfig(cache_path=Path(td) / "cache.json", call_budget=2)
        synth = Synthesizer(config, generate=lambda _prompt, _timeout: "this is not json")
        out = synth.synthesize(REQUEST)
    assert out.is_fallback and out.fallback_reason == "malformed", f"Expected malformed fallback, got {out}"
    assert out.title == REQUEST.seed_label, f"Expected seed label, got {out.title}"


def _assert_gate_rejects_single_word() -> None:
    with TemporaryDirectory() as td:
        config = SynthesizerConfig(cache_path=Path(td) / "cache.json", call_budget=2)
        synth = Synthesizer(config, generate=lambda _prompt, _timeout: '{"title":"Light","one_liner":"x"}')
        out = synth.synthesize(REQUEST)
    assert out.is_fallback and out.fallback_reason == "quality-gate", f"Expected gate fallback, got {out}"


def main() -> None:
    setup_logger("conceptgraph", logging.WARNING)
    _assert_valid_title_accepted()
    _assert_invalid_json_fallback()
    _assert_gate_rejects_single_word()
    print("labeling_quickcheck: ok")


if __name__ == "__main__":
    main()
