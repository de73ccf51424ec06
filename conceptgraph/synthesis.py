from __future__ import annotations

import hashlib
import json
import re
import socket
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Literal, Union
from urllib import error, request

from conceptgraph.config import SynthesizerConfig
from conceptgraph.errors import EnrichmentFailure
from conceptgraph.labeling import LabelQuality, evaluate_label_quality
from conceptgraph.logging_utils import get_logger
from conceptgraph.models import AnalysisResult
from conceptgraph.storage import write_json

logger = get_logger(__name__)

CIRCUIT_BREAK_KEY = "llm_disabled"
PROMPT_VERSION = 1
MAX_TITLE_WORDS = 7
MAX_ONE_LINER_CHARS = 200
MAX_EVIDENCE_ITEMS = 4
WORD_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'-]*")
EMAIL_RE = re.compile(r"\b[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+\b")
URL_RE = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)


@dataclass(frozen=True)
class LabelSynthesisRequest:
    request_id: str
    seed_label: str
    top_terms: tuple[str, ...]
    evidence: tuple[str, ...]
    kind: Literal["label"] = "label"


@dataclass(frozen=True)
class AxisSynthesisRequest:
    request_id: str
    seed_label: str
    negative_label: str
    positive_label: str
    negative_terms: tuple[str, ...] = ()
    positive_terms: tuple[str, ...] = ()
    kind: Literal["axis"] = "axis"


SynthesisRequest = Union[LabelSynthesisRequest, AxisSynthesisRequest]


@dataclass(frozen=True)
class SynthesisResult:
    request_id: str
    kind: Literal["label", "axis"]
    title: str
    one_liner: str | None
    is_fallback: bool
    fallback_reason: str | None
    quality: float


def sanitize_text_for_llm(text: str) -> str:
    clean = EMAIL_RE.sub(" ", str(text or ""))
    clean = URL_RE.sub(" ", clean)
    return re.sub(r"\s+", " ", clean).strip()


def normalize_title(raw: str) -> str:
    words = WORD_RE.findall(str(raw or ""))
    return " ".join(words[:MAX_TITLE_WORDS])


def _load_cache(path: Path | None) -> dict[str, str]:
    if path is None or not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable synthesis cache %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items()}


def _save_cache(path: Path | None, cache: dict[str, str]) -> None:
    if path is None:
        return
    write_json(path, cache)


def build_prompt(req: SynthesisRequest) -> str:
    schema = '{"title":"<2-6 word noun phrase>","one_liner":"<one sentence>"}'
    if isinstance(req, LabelSynthesisRequest):
        evidence = "\n".join(f"- {sanitize_text_for_llm(e)[:240]}" for e in req.evidence[:MAX_EVIDENCE_ITEMS])
        return (
            "You are naming a theme found in jury feedback on architecture proposals.\n"
            "Return valid JSON only with this exact schema:\n"
            f"{schema}\n"
            "Rules:\n"
            "- title must be a noun phrase in Title Case, 2 to 6 words.\n"
            "- do not start with a verb; do not repeat words.\n"
            "- stay close to the seed label and terms.\n\n"
            f"Seed Label: {json.dumps(req.seed_label, ensure_ascii=False)}\n"
            f"Top Terms: {json.dumps(list(req.top_terms[:8]), ensure_ascii=False)}\n"
            "Evidence:\n"
            f"{evidence}\n\nJSON:"
        )
    return (
        "You are naming an axis of a concept map built from jury feedback.\n"
        "Return valid JSON only with this exact schema:\n"
        f"{schema}\n"
        "The title names the contrast between the two poles as a noun phrase, 2 to 6 words.\n\n"
        f"Negative Pole: {json.dumps(req.negative_label, ensure_ascii=False)} "
        f"terms {json.dumps(list(req.negative_terms[:5]), ensure_ascii=False)}\n"
        f"Positive Pole: {json.dumps(req.positive_label, ensure_ascii=False)} "
        f"terms {json.dumps(list(req.positive_terms[:5]), ensure_ascii=False)}\n\nJSON:"
    )


def parse_response(raw_text: str) -> tuple[str, str | None]:
    body = str(raw_text or "").strip()
    if not body:
        raise ValueError("empty response")
    if not body.startswith("{"):
        left = body.find("{")
        right = body.rfind("}")
        if left >= 0 and right > left:
            body = body[left : right + 1]
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ValueError("response is not a JSON object")
    title = normalize_title(str(parsed.get("title", "") or ""))
    one_liner_raw = parsed.get("one_liner")
    one_liner = " ".join(str(one_liner_raw).split())[:MAX_ONE_LINER_CHARS] if one_liner_raw else None
    return title, one_liner or None


class Synthesizer:
    """Optional label/axis enrichment through an Ollama-compatible endpoint.

    Every answer goes through the label quality gate. Anything that goes
    wrong (transport, malformed JSON, a rejected title, an exhausted call
    budget) produces a fallback result carrying the deterministic seed label.
    """

    def __init__(
        self,
        config: SynthesizerConfig | None = None,
        generate: Callable[[str, int], str] | None = None,
    ):
        self.config = config or SynthesizerConfig.from_env()
        self._generate = generate or self._ollama_generate
        self.budget: dict[str, int] = {"remaining": int(self.config.call_budget)}
        self._cache = _load_cache(self.config.cache_path)

    def _ollama_generate(self, prompt: str, timeout_sec: int = 20) -> str:
        payload = {
            "model": self.config.model,
            "prompt": prompt.strip(),
            "stream": False,
            "options": {"temperature": 0.0, "num_predict": 96},
        }
        data = json.dumps(payload).encode("utf-8")
        req = request.Request(self.config.url, method="POST", data=data, headers={"Content-Type": "application/json"})
        with request.urlopen(req, timeout=timeout_sec) as resp:
            raw = resp.read().decode("utf-8")
        parsed = json.loads(raw)
        return str(parsed.get("response", "") or "")

    def _cache_key(self, req: SynthesisRequest, prompt: str) -> str:
        key_payload = {
            "model": self.config.model,
            "prompt_version": PROMPT_VERSION,
            "kind": req.kind,
            "prompt": prompt,
        }
        return hashlib.sha256(json.dumps(key_payload, sort_keys=True).encode("utf-8")).hexdigest()

    def _call(self, prompt: str) -> str:
        if not self.config.enabled:
            raise EnrichmentFailure("disabled")
        if self.budget.get(CIRCUIT_BREAK_KEY):
            raise EnrichmentFailure("circuit-open")
        if self.budget.get("remaining", 0) <= 0:
            raise EnrichmentFailure("budget-exhausted")
        self.budget["remaining"] = max(0, self.budget["remaining"] - 1)
        try:
            return self._generate(prompt, self.config.timeout_sec)
        except (TimeoutError, socket.timeout, error.HTTPError, error.URLError, ConnectionError) as exc:
            # One transport failure disables further calls for this synthesizer.
            self.budget["remaining"] = 0
            self.budget[CIRCUIT_BREAK_KEY] = 1
            raise EnrichmentFailure("unavailable", str(exc)) from exc
        except (json.JSONDecodeError, ValueError, KeyError, TypeError) as exc:
            raise EnrichmentFailure("malformed", str(exc)) from exc

    def _attempt(self, req: SynthesisRequest) -> tuple[str, str | None, LabelQuality]:
        prompt = build_prompt(req)
        key = self._cache_key(req, prompt)
        raw = self._cache.get(key)
        if raw is None:
            raw = self._call(prompt)
        try:
            title, one_liner = parse_response(raw)
        except (json.JSONDecodeError, ValueError) as exc:
            raise EnrichmentFailure("malformed", str(exc)) from exc
        quality = evaluate_label_quality(title)
        if not quality.passed:
            raise EnrichmentFailure("quality-gate", f"{title!r}: {', '.join(quality.violations)}")
        self._cache[key] = raw
        _save_cache(self.config.cache_path, self._cache)
        return title, one_liner, quality

    def synthesize(self, req: SynthesisRequest) -> SynthesisResult:
        try:
            title, one_liner, quality = self._attempt(req)
        except EnrichmentFailure as exc:
            if exc.reason in {"disabled", "budget-exhausted", "circuit-open"}:
                logger.debug("Synthesis skipped for %s: %s", req.request_id, exc)
            else:
                logger.warning("Synthesis failed for %s: %s", req.request_id, exc)
            return SynthesisResult(
                request_id=req.request_id,
                kind=req.kind,
                title=req.seed_label,
                one_liner=None,
                is_fallback=True,
                fallback_reason=exc.reason,
                quality=evaluate_label_quality(req.seed_label).score,
            )
        return SynthesisResult(
            request_id=req.request_id,
            kind=req.kind,
            title=title,
            one_liner=one_liner,
            is_fallback=False,
            fallback_reason=None,
            quality=quality.score,
        )


def concept_requests(result: AnalysisResult) -> list[LabelSynthesisRequest]:
    return [
        LabelSynthesisRequest(
            request_id=c.id,
            seed_label=c.label,
            top_terms=tuple(c.top_terms),
            evidence=tuple(c.representative_sentences),
        )
        for c in result.concepts
    ]


def axis_requests(result: AnalysisResult) -> list[AxisSynthesisRequest]:
    terms = {c.id: tuple(c.top_terms) for c in result.concepts}
    out: list[AxisSynthesisRequest] = []
    for key, axis in result.axis_labels.items():
        if not key.startswith("pc"):
            continue
        out.append(
            AxisSynthesisRequest(
                request_id=key,
                seed_label=axis["name"],
                negative_label=axis["negative"],
                positive_label=axis["positive"],
                negative_terms=terms.get(axis["negative_id"], ()),
                positive_terms=terms.get(axis["positive_id"], ()),
            )
        )
    return out


def enrich_result(result: AnalysisResult, synthesizer: Synthesizer) -> AnalysisResult:
    """Return a copy of ``result`` with synthesized concept titles and axis names.

    Ids, links and coordinates are untouched; concepts whose synthesis falls
    back keep their deterministic label as the title.
    """
    label_results = {r.request_id: r for r in map(synthesizer.synthesize, concept_requests(result))}
    axis_results = {r.request_id: r for r in map(synthesizer.synthesize, axis_requests(result))}

    concepts = []
    for concept in result.concepts:
        res = label_results[concept.id]
        concepts.append(replace(concept, title=res.title, one_liner=res.one_liner))
    titles = {c.id: c.title for c in concepts}
    nodes = [replace(n, label=titles[n.id]) if n.id in titles else n for n in result.nodes]

    axis_labels: dict[str, dict[str, str]] = {}
    for key, axis in result.axis_labels.items():
        pc_key = key if key.startswith("pc") else f"pc{'xyz'.index(key) + 1}"
        res = axis_results.get(pc_key)
        entry = dict(axis)
        if res is not None and not res.is_fallback:
            entry["name"] = res.title
        axis_labels[key] = entry

    fallbacks = [r for r in list(label_results.values()) + list(axis_results.values()) if r.is_fallback]
    diagnostics: dict[str, Any] = dict(result.diagnostics)
    diagnostics["enrichment"] = {
        "requests": len(label_results) + len(axis_results),
        "fallbacks": len(fallbacks),
        "fallback_reasons": {r.request_id: r.fallback_reason for r in fallbacks},
    }
    return replace(result, concepts=concepts, nodes=nodes, axis_labels=axis_labels, diagnostics=diagnostics)
