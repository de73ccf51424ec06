from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from conceptgraph.models import Concept, GraphLink, GraphNode, SentenceRecord, Stance

JUROR_NODE_SIZE = 28.0
CONCEPT_SIMILARITY_DISCOUNT = 0.7
# Dominant-stance tie-break, strongest first.
STANCE_PRIORITY: tuple[Stance, ...] = ("critique", "suggestion", "praise", "neutral")


@dataclass
class JurorConceptMass:
    """Soft-weighted sentence mass each juror puts on each concept."""

    jurors: list[str]
    concept_ids: list[str]
    mass: np.ndarray
    totals: np.ndarray
    evidence: dict[str, dict[str, list[str]]]
    stances: dict[tuple[str, str], Counter]

    @property
    def profiles(self) -> np.ndarray:
        totals = np.where(self.totals > 0, self.totals, 1.0)
        return self.mass / totals[:, None]


def juror_node_id(juror: str) -> str:
    return f"juror:{juror}"


def edge_threshold(kind: str, similarity_threshold: float) -> float:
    if kind == "conceptConcept":
        return similarity_threshold * CONCEPT_SIMILARITY_DISCOUNT
    return similarity_threshold


def dominant_stance(counts: Counter) -> Stance | None:
    if not counts:
        return None
    best = max(counts.values())
    for stance in STANCE_PRIORITY:
        if counts.get(stance, 0) == best:
            return stance
    return None


def _memberships(record: SentenceRecord, layer: str) -> list[tuple[str, float]]:
    if layer == "detail":
        return [(record.detail_concept_id, 1.0)] if record.detail_concept_id else []
    if record.concept_membership:
        return [(m.concept_id, m.weight) for m in record.concept_membership]
    return [(record.concept_id, 1.0)] if record.concept_id else []


def juror_concept_mass(
    sentences: Sequence[SentenceRecord],
    jurors: list[str],
    concept_ids: list[str],
    layer: str = "primary",
) -> JurorConceptMass:
    j_index = {j: i for i, j in enumerate(jurors)}
    c_index = {c: i for i, c in enumerate(concept_ids)}
    mass = np.zeros((len(jurors), len(concept_ids)), dtype=np.float64)
    totals = np.zeros(len(jurors), dtype=np.float64)
    evidence: dict[str, dict[str, list[str]]] = {j: {} for j in jurors}
    stances: dict[tuple[str, str], Counter] = {}
    for record in sentences:
        ji = j_index.get(record.juror)
        if ji is None:
            continue
        totals[ji] += 1.0
        for concept_id, weight in _memberships(record, layer):
            ci = c_index.get(concept_id)
            if ci is None or weight <= 0:
                continue
            mass[ji, ci] += weight
            evidence[record.juror].setdefault(concept_id, []).append(record.id)
            stances.setdefault((record.juror, concept_id), Counter())[record.stance] += 1
    return JurorConceptMass(jurors, list(concept_ids), mass, totals, evidence, stances)


def membership_links(data: JurorConceptMass, min_edge_weight: float) -> list[GraphLink]:
    links: list[GraphLink] = []
    profiles = data.profiles
    for ji, juror in enumerate(data.jurors):
        for ci, concept_id in enumerate(data.concept_ids):
            weight = float(profiles[ji, ci])
            evidence_ids = data.evidence.get(juror, {}).get(concept_id, [])
            if weight <= 0 or weight < min_edge_weight or not evidence_ids:
                continue
            links.append(
                GraphLink(
                    id=f"link:{juror_node_id(juror)}__{concept_id}",
                    source=juror_node_id(juror),
                    target=concept_id,
                    weight=weight,
                    kind="jurorConcept",
                    stance=dominant_stance(data.stances.get((juror, concept_id), Counter())),
                    evidence_ids=list(evidence_ids),
                    evidence_count=len(evidence_ids),
                )
            )
    return links


def cosine_matrix(rows: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(rows, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    unit = rows / safe[:, None]
    return unit @ unit.T


def similarity_links(
    jurors: list[str],
    concept_ids: list[str],
    profiles: np.ndarray,
    evidence: dict[str, dict[str, list[str]]],
    similarity_threshold: float,
) -> list[GraphLink]:
    """Juror-juror and concept-concept edges.

    Jurors compare by their concept profiles (rows of ``profiles``); concepts
    compare by which jurors use them (columns), with the concept threshold
    discounted by ``CONCEPT_SIMILARITY_DISCOUNT``. Only ``profiles`` and the
    per-(juror, concept) evidence ids are needed, so the same edges can be
    rebuilt from a compacted result.
    """
    links: list[GraphLink] = []
    if profiles.size == 0:
        return links

    juror_sim = cosine_matrix(profiles)
    juror_cut = edge_threshold("jurorJuror", similarity_threshold)
    for a in range(len(jurors)):
        for b in range(a + 1, len(jurors)):
            sim = float(juror_sim[a, b])
            if sim < juror_cut:
                continue
            shared = [c for c in concept_ids if c in evidence.get(jurors[a], {}) and c in evidence.get(jurors[b], {})]
            ids: list[str] = []
            for concept_id in shared:
                ids.extend(evidence[jurors[a]][concept_id])
                ids.extend(evidence[jurors[b]][concept_id])
            ids = list(dict.fromkeys(ids))
            if not ids:
                continue
            links.append(
                GraphLink(
                    id=f"sim:{juror_node_id(jurors[a])}__{juror_node_id(jurors[b])}",
                    source=juror_node_id(jurors[a]),
                    target=juror_node_id(jurors[b]),
                    weight=sim,
                    kind="jurorJuror",
                    evidence_ids=ids,
                    evidence_count=len(ids),
                )
            )

    concept_sim = cosine_matrix(profiles.T)
    concept_cut = edge_threshold("conceptConcept", similarity_threshold)
    for a in range(len(concept_ids)):
        for b in range(a + 1, len(concept_ids)):
            sim = float(concept_sim[a, b])
            if sim < concept_cut:
                continue
            ca, cb = concept_ids[a], concept_ids[b]
            ids = []
            for juror in jurors:
                per_concept = evidence.get(juror, {})
                if ca in per_concept and cb in per_concept:
                    ids.extend(per_concept[ca])
                    ids.extend(per_concept[cb])
            ids = list(dict.fromkeys(ids))
            if not ids:
                continue
            links.append(
                GraphLink(
                    id=f"sim:{ca}__{cb}",
                    source=ca,
                    target=cb,
                    weight=sim,
                    kind="conceptConcept",
                    evidence_ids=ids,
                    evidence_count=len(ids),
                )
            )
    return links


def concept_nodes(concepts: Sequence[Concept], pc_values: np.ndarray) -> list[GraphNode]:
    nodes: list[GraphNode] = []
    for i, concept in enumerate(concepts):
        nodes.append(
            GraphNode(
                id=concept.id,
                type="concept",
                label=concept.label,
                size=concept.size,
                pc_values=[float(v) for v in pc_values[i]],
                layer=concept.layer,
                parent_concept_id=concept.parent_concept_id,
                child_concept_ids=list(concept.child_concept_ids) if concept.layer == "primary" else None,
                meta={
                    "count": concept.count,
                    "weight": concept.weight,
                    "top_terms": list(concept.top_terms),
                    "juror_distribution": [
                        {"juror": j, "weight": w} for j, w in concept.juror_distribution.items()
                    ],
                    "label_quality": concept.label_quality,
                    "label_source": concept.label_source,
                },
            )
        )
    return nodes


def juror_nodes(
    jurors: list[str],
    pc_values: np.ndarray,
    sentence_counts: dict[str, int],
    stance_counts: dict[str, Counter],
) -> list[GraphNode]:
    nodes: list[GraphNode] = []
    for i, juror in enumerate(jurors):
        counts = stance_counts.get(juror, Counter())
        nodes.append(
            GraphNode(
                id=juror_node_id(juror),
                type="juror",
                label=juror,
                size=JUROR_NODE_SIZE,
                pc_values=[float(v) for v in pc_values[i]],
                meta={
                    "sentence_count": sentence_counts.get(juror, 0),
                    "stances": {s: counts.get(s, 0) for s in STANCE_PRIORITY},
                },
            )
        )
    return nodes


def juror_pc_values(profiles: np.ndarray, concept_pc: np.ndarray) -> np.ndarray:
    """Weighted mean of concept coordinates, weights = the juror's concept profile."""
    if profiles.size == 0:
        return np.zeros((profiles.shape[0], concept_pc.shape[1] if concept_pc.ndim == 2 else 0))
    sums = profiles.sum(axis=1)
    safe = np.where(sums > 0, sums, 1.0)
    return (profiles @ concept_pc) / safe[:, None]


def apply_positions(nodes: list[GraphNode], positions: np.ndarray) -> None:
    for node, (x, y, z) in zip(nodes, positions):
        node.x = float(x)
        node.y = float(y)
        node.z = float(z)
