from __future__ import annotations

import hashlib
import json
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import numpy as np

from conceptgraph.bm25 import build_bm25
from conceptgraph.clustering import cluster_centroids, cluster_sentences, soft_memberships
from conceptgraph.errors import AnalysisCancelled
from conceptgraph.graph import (
    apply_positions,
    concept_nodes,
    juror_concept_mass,
    juror_nodes,
    juror_pc_values,
    membership_links,
    similarity_links,
)
from conceptgraph.health import evaluate_report_health
from conceptgraph.hierarchy import build_detail_layer
from conceptgraph.labeling import (
    centroid_terms,
    concept_size,
    contrastive_term_scores,
    evaluate_label_quality,
    label_cluster,
    rank_evidence,
    template_label,
)
from conceptgraph.logging_utils import get_logger
from conceptgraph.models import (
    AnalysisParameters,
    AnalysisResult,
    BM25Model,
    Concept,
    JurorBlock,
    Membership,
    ProgressEvent,
    SentenceRecord,
    to_jsonable,
)
from conceptgraph.projection import (
    MAX_DIMENSIONS,
    axis_labels,
    choose_dimensions,
    deterministic_pca,
    pad_pc_values,
    positions_from_pc_values,
    variance_stats,
)
from conceptgraph.segmentation import extract_sentences, segment_by_juror
from conceptgraph.structure import classify_structural_roles
from conceptgraph.validation import validate_parameters, validate_source

logger = get_logger(__name__)

JUROR_TOP_TERMS = 5
ProgressSink = Callable[[ProgressEvent], None]


@dataclass
class JobContext:
    """Per-run handle: identity, where progress goes, and how to cancel."""

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    sink: ProgressSink | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    stage: str = "queued"

    def emit(self, stage: str, pct: int, message: str | None = None) -> None:
        self.stage = stage
        if self.sink is not None:
            self.sink(ProgressEvent(run_id=self.run_id, stage=stage, pct=int(max(0, min(100, pct))), message=message))

    def check_cancelled(self, stage: str | None = None) -> None:
        if self.cancel_event.is_set():
            raise AnalysisCancelled(self.run_id, stage or self.stage)

    def cancel(self) -> None:
        self.cancel_event.set()


def analysis_build_id(source: str | list[JurorBlock], params: AnalysisParameters) -> str:
    payload = {"source": source if isinstance(source, str) else to_jsonable(source), "parameters": params.model_dump()}
    return hashlib.sha256(json.dumps(payload, sort_keys=True, ensure_ascii=False).encode("utf-8")).hexdigest()


def _empty_result(
    ctx: JobContext,
    build_id: str,
    params: AnalysisParameters,
    jurors: list[str],
    sentences: list[SentenceRecord],
    vocab: list[str],
    reason: str,
    timings: dict[str, float],
) -> AnalysisResult:
    logger.warning("Run %s produced no concepts: %s", ctx.run_id, reason)
    return AnalysisResult(
        run_id=ctx.run_id,
        analysis_build_id=build_id,
        seed=params.seed,
        parameters=params,
        jurors=jurors,
        sentences=sentences,
        concepts=[],
        detail_concepts=[],
        nodes=[],
        links=[],
        juror_vectors={j: [] for j in jurors},
        juror_vectors_detail={},
        juror_concept_evidence={},
        centroids=[],
        ngram_vocab=vocab,
        axis_labels={},
        variance_stats={},
        requested_num_dimensions=params.num_dimensions,
        applied_num_dimensions=0,
        recommended_k=None,
        k_search_metrics=[],
        juror_top_terms={j: [] for j in jurors},
        stats={"total_sentences": len(sentences), "total_jurors": len(jurors), "total_concepts": 0},
        diagnostics={"input_error": reason, "warnings": [], "timings": timings},
    )


def _member_lists(labels: list[int], n_clusters: int) -> list[list[int]]:
    members: list[list[int]] = [[] for _ in range(n_clusters)]
    for idx, cid in enumerate(labels):
        members[cid].append(idx)
    return members


def _juror_share(sentences: list[SentenceRecord], members: list[int], weights: list[float]) -> dict[str, float]:
    mass: dict[str, float] = {}
    for idx, w in zip(members, weights):
        juror = sentences[idx].juror
        mass[juror] = mass.get(juror, 0.0) + w
    total = sum(mass.values()) or 1.0
    return {j: m / total for j, m in mass.items()}


def _build_concepts(
    groups: list[list[int]],
    ids: list[str],
    sentences: list[SentenceRecord],
    lexical: BM25Model,
    params: AnalysisParameters,
    soft_mass: list[dict[int, float]] | None,
    ordinal_offset: int = 0,
    layer: str = "primary",
    parents: list[str] | None = None,
    reserved_labels: set[str] | None = None,
) -> list[Concept]:
    vectors = lexical.vectors
    concepts: list[Concept] = []
    used_labels = {label.lower() for label in reserved_labels or ()}
    texts = [s.sentence for s in sentences]
    for i, members in enumerate(groups):
        ordinal = ordinal_offset + i
        centroid = cluster_centroids(vectors[members], [0] * len(members), 1)[0]
        labeled = label_cluster(
            vectors,
            members,
            centroid,
            lexical.ngram_vocab,
            ordinal=ordinal,
            min_df=params.label_min_df,
            max_df_percent=params.label_max_df_percent,
            texts=texts,
        )
        label, source, quality = labeled.label, labeled.source, labeled.quality.score
        if label.lower() in used_labels:
            label = template_label(ordinal)
            source, quality = "template", evaluate_label_quality(label).score
        used_labels.add(label.lower())

        if soft_mass is not None:
            weight_members = sorted(soft_mass[i])
            weights = [soft_mass[i][m] for m in weight_members]
        else:
            weight_members, weights = members, [1.0] * len(members)
        weight = float(sum(weights))
        reps = rank_evidence(vectors, members, centroid, lexical.ngram_vocab, labeled.top_terms)
        concepts.append(
            Concept(
                id=ids[i],
                label=label,
                count=len(members),
                size=concept_size(weight),
                weight=weight,
                top_terms=list(labeled.top_terms),
                representative_sentences=[sentences[r].sentence for r in reps],
                sentence_ids=[sentences[m].id for m in members],
                juror_distribution=_juror_share(sentences, weight_members, weights),
                layer=layer,  # type: ignore[arg-type]
                parent_concept_id=parents[i] if parents else None,
                label_quality=quality,
                label_source=source,  # type: ignore[arg-type]
            )
        )
    return concepts


def _juror_top_terms(sentences: list[SentenceRecord], jurors: list[str], lexical: BM25Model) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for juror in jurors:
        members = [i for i, s in enumerate(sentences) if s.juror == juror]
        ranked = contrastive_term_scores(lexical.vectors, members, lexical.ngram_vocab, min_df=1, max_df_percent=1.0)
        terms = [t.term for t in ranked[:JUROR_TOP_TERMS]]
        if not terms and members:
            centroid = cluster_centroids(lexical.vectors[members], [0] * len(members), 1)[0]
            terms = centroid_terms(centroid, lexical.ngram_vocab, JUROR_TOP_TERMS)
        out[juror] = terms
    return out


def run_analysis(
    source: str | Sequence[JurorBlock],
    params: AnalysisParameters | Mapping[str, Any] | None = None,
    context: JobContext | None = None,
) -> AnalysisResult:
    """Turn juror feedback into a deterministic concept graph.

    ``source`` is raw text (segmented by juror headers) or pre-segmented
    blocks. Invalid parameters raise ``ParameterError`` and non-text input
    raises ``InputError`` before any work starts; an empty corpus yields a
    result with no concepts and the reason in ``diagnostics["input_error"]``.
    Progress goes to ``context.sink``; setting ``context.cancel_event``
    stops the run at the next stage boundary with ``AnalysisCancelled``.
    """
    params = validate_parameters(params)
    source = validate_source(source)
    ctx = context or JobContext()
    build_id = analysis_build_id(source, params)
    timings: dict[str, float] = {}
    try:
        return _run(source, params, ctx, build_id, timings)
    except AnalysisCancelled as exc:
        logger.info("Run %s cancelled during %s", ctx.run_id, exc.stage)
        ctx.emit("cancelled", 100, str(exc))
        raise
    except Exception as exc:
        logger.exception("Run %s failed during %s", ctx.run_id, ctx.stage)
        ctx.emit("failed", 100, f"{type(exc).__name__}: {exc}")
        raise


def _run(
    source: str | list[JurorBlock],
    params: AnalysisParameters,
    ctx: JobContext,
    build_id: str,
    timings: dict[str, float],
) -> AnalysisResult:
    t0 = time.perf_counter()
    ctx.emit("segmenting", 5)
    blocks = segment_by_juror(source) if isinstance(source, str) else list(source)
    sentences = extract_sentences(blocks)
    jurors = list(dict.fromkeys(s.juror for s in sentences))
    timings["segmentation_s"] = round(time.perf_counter() - t0, 4)
    logger.info("Run %s: %d jurors, %d sentences", ctx.run_id, len(jurors), len(sentences))

    ctx.check_cancelled("vectorizing")
    ctx.emit("vectorizing", 20)
    t0 = time.perf_counter()
    texts = [s.sentence for s in sentences]
    consensus, discriminative = build_bm25(texts, [s.juror for s in sentences], params.ngram_min, params.ngram_max)
    timings["vectorizing_s"] = round(time.perf_counter() - t0, 4)
    if not sentences:
        return _empty_result(ctx, build_id, params, jurors, sentences, [], "no sentences found in input", timings)
    if not consensus.ngram_vocab:
        return _empty_result(ctx, build_id, params, jurors, sentences, [], "empty n-gram vocabulary", timings)

    ctx.check_cancelled("clustering")
    ctx.emit("clustering", 35)
    t0 = time.perf_counter()
    vectors = consensus.vectors
    clustering = cluster_sentences(vectors, params, should_stop=lambda: ctx.check_cancelled("clustering"))
    labels = clustering.labels
    n_clusters = clustering.k_applied
    centroids = clustering.centroids
    concept_ids = [f"concept:{i}" for i in range(n_clusters)]

    soft_mass: list[dict[int, float]] | None = None
    if params.soft_membership:
        soft = soft_memberships(
            vectors,
            centroids,
            labels,
            top_n=params.soft_top_n,
            temperature=params.soft_temperature,
            min_weight=params.soft_min_weight,
            entropy_cap=params.soft_entropy_cap,
        )
        soft_mass = [{} for _ in range(n_clusters)]
        for idx, memberships in enumerate(soft):
            for cid, w in memberships:
                soft_mass[cid][idx] = w
            sentences[idx] = replace(
                sentences[idx],
                concept_id=concept_ids[labels[idx]],
                concept_membership=tuple(Membership(concept_ids[c], w) for c, w in memberships),
            )
    else:
        sentences = [replace(s, concept_id=concept_ids[labels[i]]) for i, s in enumerate(sentences)]

    details = build_detail_layer(vectors, labels, params.detail_min_cluster_size) if params.detail_layer else []
    detail_ids = [f"concept:{d.parent_index}:detail:{d.ordinal}" for d in details]
    for detail, detail_id in zip(details, detail_ids):
        for idx in detail.member_indices:
            sentences[idx] = replace(sentences[idx], detail_concept_id=detail_id)
    timings["clustering_s"] = round(time.perf_counter() - t0, 4)

    ctx.check_cancelled("labeling")
    ctx.emit("labeling", 55)
    t0 = time.perf_counter()
    groups = _member_lists(labels, n_clusters)
    concepts = _build_concepts(groups, concept_ids, sentences, discriminative, params, soft_mass)
    detail_concepts = _build_concepts(
        [d.member_indices for d in details],
        detail_ids,
        sentences,
        discriminative,
        params,
        None,
        ordinal_offset=n_clusters,
        layer="detail",
        parents=[concept_ids[d.parent_index] for d in details],
        reserved_labels={c.label for c in concepts},
    )
    by_id = {c.id: c for c in concepts}
    for detail in detail_concepts:
        by_id[detail.parent_concept_id].child_concept_ids.append(detail.id)
    timings["labeling_s"] = round(time.perf_counter() - t0, 4)

    ctx.check_cancelled("projecting")
    ctx.emit("projecting", 70)
    t0 = time.perf_counter()
    pca = deterministic_pca(centroids, min(MAX_DIMENSIONS, max(1, n_clusters - 1)))
    applied = choose_dimensions(pca, params.num_dimensions, params.dimension_mode, params.variance_threshold, n_clusters)
    concept_pc = pad_pc_values(pca.transform(centroids), applied)
    detail_centroids = np.array([d.centroid for d in details]).reshape(len(details), vectors.shape[1])
    detail_pc = pad_pc_values(pca.transform(detail_centroids), applied)
    timings["projecting_s"] = round(time.perf_counter() - t0, 4)

    ctx.check_cancelled("graph")
    ctx.emit("graph", 85)
    t0 = time.perf_counter()
    primary_mass = juror_concept_mass(sentences, jurors, concept_ids)
    detail_mass = juror_concept_mass(sentences, jurors, detail_ids, layer="detail")
    profiles = primary_mass.profiles
    juror_pc = juror_pc_values(profiles, concept_pc)

    stance_counts: dict[str, Counter] = {}
    sentence_counts: dict[str, int] = {}
    for s in sentences:
        stance_counts.setdefault(s.juror, Counter())[s.stance] += 1
        sentence_counts[s.juror] = sentence_counts.get(s.juror, 0) + 1

    nodes = (
        juror_nodes(jurors, juror_pc, sentence_counts, stance_counts)
        + concept_nodes(concepts, concept_pc)
        + concept_nodes(detail_concepts, detail_pc)
    )
    pc_matrix = np.vstack([juror_pc, concept_pc, detail_pc])
    apply_positions(nodes, positions_from_pc_values(pc_matrix, applied, params.scale))

    links = (
        membership_links(primary_mass, params.min_edge_weight)
        + membership_links(detail_mass, params.min_edge_weight)
        + similarity_links(jurors, concept_ids, profiles, primary_mass.evidence, params.similarity_threshold)
    )
    links = classify_structural_roles(nodes, links)
    timings["graph_s"] = round(time.perf_counter() - t0, 4)

    stats_variance = variance_stats(pca, applied)
    concept_juror_counts = [len(c.juror_distribution) for c in concepts]
    stats = {
        "total_sentences": len(sentences),
        "total_jurors": len(jurors),
        "total_concepts": len(concepts),
        "total_detail_concepts": len(detail_concepts),
        "stances": dict(Counter(s.stance for s in sentences)),
        "links_by_kind": dict(Counter(link.kind for link in links)),
        "bridges": sum(1 for link in links if link.structural_role == "bridge"),
    }
    diagnostics: dict[str, Any] = {
        "warnings": list(clustering.warnings),
        "converged": clustering.converged,
        "k_requested": clustering.k_requested,
        "k_applied": clustering.k_applied,
        "merges": clustering.merges,
        "splits": clustering.splits,
        "template_labels": [c.id for c in concepts + detail_concepts if c.label_source == "template"],
        "health": evaluate_report_health(len(sentences), concept_juror_counts, stats_variance["max_variance_achieved"]),
        "timings": timings,
    }

    result = AnalysisResult(
        run_id=ctx.run_id,
        analysis_build_id=build_id,
        seed=params.seed,
        parameters=params,
        jurors=jurors,
        sentences=sentences,
        concepts=concepts,
        detail_concepts=detail_concepts,
        nodes=nodes,
        links=links,
        juror_vectors={j: [float(v) for v in profiles[i]] for i, j in enumerate(jurors)},
        juror_vectors_detail={j: [float(v) for v in detail_mass.profiles[i]] for i, j in enumerate(jurors)},
        juror_concept_evidence=primary_mass.evidence,
        centroids=[[float(v) for v in row] for row in centroids],
        ngram_vocab=list(consensus.ngram_vocab),
        axis_labels=axis_labels([c.label for c in concepts], concept_ids, concept_pc),
        variance_stats=stats_variance,
        requested_num_dimensions=params.num_dimensions,
        applied_num_dimensions=applied,
        recommended_k=clustering.recommended_k,
        k_search_metrics=clustering.k_search_metrics,
        juror_top_terms=_juror_top_terms(sentences, jurors, discriminative),
        stats=stats,
        diagnostics=diagnostics,
    )
    ctx.emit("completed", 100)
    logger.info(
        "Run %s done: %d concepts, %d links, %d dims (%s)",
        ctx.run_id,
        len(concepts),
        len(links),
        applied,
        ", ".join(f"{k}={v}" for k, v in timings.items()),
    )
    return result
