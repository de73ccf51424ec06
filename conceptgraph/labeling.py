from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal

import numpy as np

from conceptgraph.errors import LabelQualityFailure
from conceptgraph.logging_utils import get_logger
from conceptgraph.text import STOPWORDS, extract_keyphrases

logger = get_logger(__name__)

LabelSource = Literal["keyphrase", "contrastive", "centroid", "template"]

STEM_SUFFIXES = ("ation", "ition", "tion", "sion", "ingly", "edly", "ing", "ed", "est", "er", "ly", "es", "s")
MIN_STEM_LENGTH = 3
LABEL_PASS_THRESHOLD = 0.6
MAX_LABEL_WORDS = 7
STOPWORD_RATIO_LIMIT = 0.4
NON_NOUN_STARTS = frozenset({"addressing", "shows", "move", "goes", "tells", "appearing", "seems", "is", "are", "about"})
FILLER_WORDS = frozenset({"areas", "project", "design", "spaces", "brief", "proposal"})

LABEL_TEMPLATES = (
    "Core Feedback Themes",
    "Key Design Observations",
    "Juror Consensus Points",
    "Critical Project Insights",
    "Major Synthesis Categories",
    "Primary Feedback Clusters",
    "Thematic Design Principles",
    "Fundamental Proposal Aspects",
    "Essential Feedback Areas",
    "Key Narrative Elements",
)

TOP_TERM_COUNT = 8
REPRESENTATIVE_COUNT = 3
EVIDENCE_SIMILARITY_WEIGHT = 0.7
EVIDENCE_SALIENCE_WEIGHT = 0.3


@dataclass
class LabelQuality:
    score: float
    passed: bool
    violations: list[str] = field(default_factory=list)


@dataclass
class TermScore:
    term: str
    score: float
    df: int


@dataclass
class ConceptLabel:
    label: str
    top_terms: list[str]
    quality: LabelQuality
    source: LabelSource
    rejected_label: str | None = None


def evaluate_label_quality(label: str) -> LabelQuality:
    """Score a label in [0, 1]; it passes at 0.6 or above.

    >>> evaluate_label_quality("move").violations
    ['single-word', 'too-short', 'non-noun-start']
    """
    if not label or not label.strip():
        return LabelQuality(score=0.0, passed=False, violations=["empty"])

    words = label.strip().split()
    lower = [w.lower() for w in words]
    violations: list[str] = []
    score = 1.0

    if len(words) == 1:
        score -= 0.4
        violations.append("single-word")
    if len(words) < 2:
        violations.append("too-short")
    if len(words) > MAX_LABEL_WORDS:
        score -= 0.1
        violations.append("too-long")
    if sum(1 for w in lower if w in STOPWORDS) / len(words) > STOPWORD_RATIO_LIMIT:
        score -= 0.3
        violations.append("stopword-heavy")
    if lower[0] in STOPWORDS or lower[0] in NON_NOUN_STARTS:
        score -= 0.45
        violations.append("non-noun-start")
    if len(set(lower)) != len(lower):
        score -= 0.45
        violations.append("repetition")
    if any(w in FILLER_WORDS for w in lower):
        score -= 0.1
        violations.append("filler-words")

    final = max(0.0, min(1.0, round(score, 6)))
    return LabelQuality(score=final, passed=final >= LABEL_PASS_THRESHOLD, violations=violations)


def require_label_quality(label: str) -> LabelQuality:
    quality = evaluate_label_quality(label)
    if not quality.passed:
        raise LabelQualityFailure(label, quality.score, quality.violations)
    return quality


def template_label(ordinal: int) -> str:
    base = LABEL_TEMPLATES[ordinal % len(LABEL_TEMPLATES)]
    cycle = ordinal // len(LABEL_TEMPLATES)
    return base if cycle == 0 else f"{base} {cycle + 1}"


def stem_token(token: str) -> str:
    cleaned = token.lower().strip()
    for suffix in STEM_SUFFIXES:
        if cleaned.endswith(suffix) and len(cleaned) - len(suffix) >= MIN_STEM_LENGTH:
            return cleaned[: -len(suffix)]
    return cleaned


def head_stem(phrase: str) -> str:
    """Stem of the phrase's first word; phrases sharing it count as duplicates."""
    words = phrase.split()
    return stem_token(words[0]) if words else ""


def dedupe_candidates(phrases: list[str], limit: int | None = None) -> list[str]:
    """Drop phrases whose head stem was already seen or that contain / are contained by a kept phrase."""
    seen_stems: set[str] = set()
    kept: list[str] = []
    for phrase in phrases:
        stem = head_stem(phrase)
        if not stem or stem in seen_stems:
            continue
        lowered = phrase.lower()
        if any(lowered in k.lower() or k.lower() in lowered for k in kept):
            continue
        seen_stems.add(stem)
        kept.append(phrase)
        if limit is not None and len(kept) >= limit:
            break
    return kept


def contrastive_term_scores(
    vectors: np.ndarray,
    member_indices: list[int],
    vocab: list[str],
    min_df: int = 2,
    max_df_percent: float = 0.8,
) -> list[TermScore]:
    """Rank terms that are heavier inside the group than in the rest of the corpus.

    score = (mean weight inside - mean weight outside) * (group df / group size),
    kept when ``min_df <= df <= ceil(size * max_df_percent)`` and score > 0.
    Ties keep vocabulary order.
    """
    n = vectors.shape[0]
    size = len(member_indices)
    if size == 0 or not vocab:
        return []
    mask = np.zeros(n, dtype=bool)
    mask[member_indices] = True
    local = vectors[mask]
    local_avg = local.mean(axis=0)
    local_df = (local > 0).sum(axis=0)
    other_avg = vectors[~mask].mean(axis=0) if n > size else np.zeros(len(vocab))

    max_df = math.ceil(size * max_df_percent)
    scores = (local_avg - other_avg) * (local_df / size)
    keep = (local_df >= min_df) & (local_df <= max_df) & (scores > 0)
    out = [TermScore(term=vocab[i], score=float(scores[i]), df=int(local_df[i])) for i in np.where(keep)[0]]
    out.sort(key=lambda t: -t.score)
    return out


def cluster_keyphrases(
    texts: list[str],
    member_indices: list[int],
    min_df: int = 2,
    limit: int = TOP_TERM_COUNT,
) -> list[str]:
    """Keyphrases that recur inside the group and are rarer outside it.

    Each phrase is counted once per sentence. A phrase is kept when it occurs
    in at least ``min_df`` member sentences and its member rate beats its rate
    in the remaining sentences; the score is that rate gap times the member
    count. Ties keep first-seen order.
    """
    members = set(member_indices)
    inside: dict[str, int] = {}
    outside: dict[str, int] = {}
    for idx, text in enumerate(texts):
        bucket = inside if idx in members else outside
        for phrase in dict.fromkeys(extract_keyphrases(text)):
            bucket[phrase] = bucket.get(phrase, 0) + 1
    size = len(members)
    others = len(texts) - size
    if size == 0:
        return []

    scored: list[tuple[float, str]] = []
    for phrase, df in inside.items():
        if df < min_df:
            continue
        gap = df / size - (outside.get(phrase, 0) / others if others else 0.0)
        if gap > 0:
            scored.append((gap * df, phrase))
    scored.sort(key=lambda item: -item[0])
    return [phrase for _, phrase in scored[:limit]]


def centroid_terms(centroid: np.ndarray, vocab: list[str], top_n: int = TOP_TERM_COUNT) -> list[str]:
    if not vocab or centroid.size == 0:
        return []
    order = sorted(range(len(vocab)), key=lambda i: (-centroid[i], i))
    return [vocab[i] for i in order[:top_n] if centroid[i] > 0]


def _title(phrase: str) -> str:
    words = phrase.split()
    out = []
    for i, word in enumerate(words):
        if i > 0 and word.lower() in STOPWORDS:
            out.append(word.lower())
        else:
            out.append(word[:1].upper() + word[1:])
    return " ".join(out)


def compose_label(candidates: list[str]) -> str:
    """Join up to two candidates with " and " when no word would repeat."""
    if not candidates:
        return ""
    first = _title(candidates[0])
    for other in candidates[1:]:
        combined = f"{first} and {_title(other)}"
        lowered = combined.lower().split()
        if len(set(lowered)) == len(lowered):
            return combined
    return first


def label_cluster(
    vectors: np.ndarray,
    member_indices: list[int],
    centroid: np.ndarray,
    vocab: list[str],
    ordinal: int,
    min_df: int = 2,
    max_df_percent: float = 0.8,
    texts: list[str] | None = None,
) -> ConceptLabel:
    """Label one cluster from its keyphrases, then its contrastive terms.

    ``texts`` holds every sentence of the corpus, indexed like ``vectors``;
    without it only the n-gram terms are used. A label the gate rejects is
    replaced by a template.
    """
    ranked = contrastive_term_scores(vectors, member_indices, vocab, min_df, max_df_percent)
    source: LabelSource = "contrastive"
    top_terms = [t.term for t in ranked[:TOP_TERM_COUNT]]
    if not top_terms:
        top_terms = centroid_terms(centroid, vocab)
        source = "centroid"

    keyphrases = cluster_keyphrases(texts, member_indices, min_df) if texts else []
    candidates = dedupe_candidates(keyphrases + top_terms, limit=4)
    if candidates and candidates[0] in keyphrases:
        source = "keyphrase"
    label = compose_label(candidates)
    try:
        quality = require_label_quality(label)
        return ConceptLabel(label=label, top_terms=top_terms, quality=quality, source=source)
    except LabelQualityFailure as exc:
        fallback = template_label(ordinal)
        logger.warning("Concept %d: %s; using template %r", ordinal, exc, fallback)
        return ConceptLabel(
            label=fallback,
            top_terms=top_terms,
            quality=evaluate_label_quality(fallback),
            source="template",
            rejected_label=label or None,
        )


def rank_evidence(
    vectors: np.ndarray,
    member_indices: list[int],
    centroid: np.ndarray,
    vocab: list[str],
    top_terms: list[str],
    limit: int = REPRESENTATIVE_COUNT,
) -> list[int]:
    """Member indices ordered by 0.7 * centroid similarity + 0.3 * top-term salience."""
    if not member_indices:
        return []
    term_index = {t: i for i, t in enumerate(vocab)}
    cols = [term_index[t] for t in top_terms if t in term_index]
    members = np.asarray(member_indices, dtype=int)
    sims = vectors[members] @ centroid if centroid.size else np.zeros(members.size)
    salience = vectors[members][:, cols].sum(axis=1) if cols else np.zeros(members.size)
    peak = float(salience.max()) if salience.size else 0.0
    if peak > 0:
        salience = salience / peak
    scores = EVIDENCE_SIMILARITY_WEIGHT * sims + EVIDENCE_SALIENCE_WEIGHT * salience
    order = sorted(range(members.size), key=lambda i: (-scores[i], members[i]))
    return [int(members[i]) for i in order[:limit]]


def concept_size(weight: float) -> float:
    return min(6.0 + math.log2(weight + 1.0) * 8.4, 48.0)
