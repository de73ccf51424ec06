from __future__ import annotations

import numpy as np

from conceptgraph.graph import cosine_matrix
from conceptgraph.models import AnalysisResult, GraphLink, GraphNode
from conceptgraph.text import extract_ngrams

DESIGNER_PREFIX = "designer:"
DEFAULT_ALIGNMENT_THRESHOLD = 0.3


def _project_to_vocab(centroids: list[list[float]], vocab: list[str], union_index: dict[str, int]) -> np.ndarray:
    out = np.zeros((len(centroids), len(union_index)), dtype=np.float64)
    cols = [union_index[t] for t in vocab]
    for i, row in enumerate(centroids):
        if cols:
            out[i, cols] = row
    return out


def _concept_sentences(result: AnalysisResult, concept_id: str) -> list[tuple[str, str]]:
    out: list[tuple[str, str]] = []
    for record in result.sentences:
        if record.concept_membership:
            hit = any(m.concept_id == concept_id for m in record.concept_membership)
        else:
            hit = record.concept_id == concept_id
        if hit:
            out.append((record.id, record.sentence))
    return out


def designer_node_id(concept_id: str) -> str:
    return f"{DESIGNER_PREFIX}{concept_id}"


def align_concepts(
    juror_run: AnalysisResult,
    designer_run: AnalysisResult,
    threshold: float = DEFAULT_ALIGNMENT_THRESHOLD,
) -> list[GraphLink]:
    """Link every concept pair whose centroids reach ``threshold`` cosine.

    Centroids live in each run's own n-gram space, so both are lifted into
    the union vocabulary first. Evidence is the sentences of either concept
    that contain an n-gram weighted in both centroids; pairs without such a
    sentence are not linked.
    """
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("threshold must be within [0, 1]")
    if not juror_run.concepts or not designer_run.concepts:
        return []

    union = sorted(set(juror_run.ngram_vocab) | set(designer_run.ngram_vocab))
    union_index = {t: i for i, t in enumerate(union)}
    a = _project_to_vocab(juror_run.centroids, juror_run.ngram_vocab, union_index)
    b = _project_to_vocab(designer_run.centroids, designer_run.ngram_vocab, union_index)
    if not union:
        return []
    sims = cosine_matrix(np.vstack([a, b]))[: a.shape[0], a.shape[0] :]

    params_a = juror_run.parameters
    params_b = designer_run.parameters
    links: list[GraphLink] = []
    for i, concept_a in enumerate(juror_run.concepts):
        for j, concept_b in enumerate(designer_run.concepts):
            sim = float(sims[i, j])
            if sim < threshold:
                continue
            shared = {union[k] for k in np.flatnonzero((a[i] > 0) & (b[j] > 0))}
            evidence: list[str] = []
            for sid, text in _concept_sentences(juror_run, concept_a.id):
                if shared.intersection(extract_ngrams(text, params_a.ngram_min, params_a.ngram_max)):
                    evidence.append(sid)
            for sid, text in _concept_sentences(designer_run, concept_b.id):
                if shared.intersection(extract_ngrams(text, params_b.ngram_min, params_b.ngram_max)):
                    evidence.append(f"{DESIGNER_PREFIX}{sid}")
            if not evidence:
                continue
            target = designer_node_id(concept_b.id)
            links.append(
                GraphLink(
                    id=f"align:{concept_a.id}:{target}",
                    source=concept_a.id,
                    target=target,
                    weight=sim,
                    kind="jurorDesignerConcept",
                    evidence_ids=evidence,
                    evidence_count=len(evidence),
                )
            )
    return links


def designer_concept_nodes(designer_run: AnalysisResult) -> list[GraphNode]:
    """The designer run's primary concepts, re-typed and re-keyed for a combined graph."""
    by_id = {n.id: n for n in designer_run.nodes}
    out: list[GraphNode] = []
    for concept in designer_run.concepts:
        node = by_id.get(concept.id)
        if node is None:
            continue
        out.append(
            GraphNode(
                id=designer_node_id(concept.id),
                type="designerConcept",
                label=concept.title or concept.label,
                size=node.size,
                pc_values=list(node.pc_values),
                x=node.x,
                y=node.y,
                z=node.z,
                meta={"source_run_id": designer_run.run_id, "top_terms": list(concept.top_terms)},
            )
        )
    return out
