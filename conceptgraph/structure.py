from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from conceptgraph.models import GraphLink, GraphNode

CONCEPT_TYPES = frozenset({"concept", "designerConcept"})


class ClusterResolver:
    """Maps every node to the concept cluster that owns it.

    Concepts own themselves (detail concepts defer to their parent); any
    other node belongs to the cluster of its strongest adjacent concept edge,
    first encountered on ties, or to itself when it touches no concept.
    Adjacency is indexed once and each answer is cached.
    """

    def __init__(self, nodes: Sequence[GraphNode], links: Sequence[GraphLink]):
        self._nodes = {n.id: n for n in nodes}
        self._adjacent: dict[str, list[tuple[float, str]]] = {}
        for link in links:
            for here, there in ((link.source, link.target), (link.target, link.source)):
                other = self._nodes.get(there)
                if other is not None and other.type in CONCEPT_TYPES:
                    self._adjacent.setdefault(here, []).append((link.weight, there))
        self._cache: dict[str, str] = {}

    def _own_cluster(self, node: GraphNode) -> str:
        if node.layer == "detail" and node.parent_concept_id:
            return node.parent_concept_id
        return node.id

    def resolve(self, node_id: str) -> str:
        cached = self._cache.get(node_id)
        if cached is not None:
            return cached
        node = self._nodes.get(node_id)
        if node is None:
            cluster = node_id
        elif node.type in CONCEPT_TYPES:
            cluster = self._own_cluster(node)
        else:
            best: tuple[float, str] | None = None
            for weight, concept_id in self._adjacent.get(node_id, []):
                if best is None or weight > best[0]:
                    best = (weight, concept_id)
            cluster = self._own_cluster(self._nodes[best[1]]) if best else node_id
        self._cache[node_id] = cluster
        return cluster


def classify_structural_roles(nodes: Sequence[GraphNode], links: Sequence[GraphLink]) -> list[GraphLink]:
    """Return copies of ``links`` tagged ``bridge`` or ``cluster-internal``."""
    resolver = ClusterResolver(nodes, links)
    out: list[GraphLink] = []
    for link in links:
        same = resolver.resolve(link.source) == resolver.resolve(link.target)
        out.append(replace(link, structural_role="cluster-internal" if same else "bridge"))
    return out
