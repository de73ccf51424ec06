from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from conceptgraph.clustering import _remap_cluster_ids, cluster_centroids, merge_small_clusters, unique_row_indices

MAX_DETAIL_PER_CONCEPT = 4


@dataclass
class DetailCluster:
    parent_index: int
    ordinal: int
    member_indices: list[int]
    centroid: np.ndarray
    cohesion: float


def _safe_detail_count(n_items: int, n_distinct: int, min_size: int) -> int:
    if n_items < 2 * min_size or n_distinct < 2:
        return 1
    return max(1, min(MAX_DETAIL_PER_CONCEPT, n_items // min_size, n_distinct))


def _ward_labels(vectors: np.ndarray, n_clusters: int) -> list[int]:
    from scipy.cluster.hierarchy import fcluster, linkage

    linkage_matrix = linkage(vectors, method="ward", metric="euclidean")
    raw = fcluster(linkage_matrix, t=n_clusters, criterion="maxclust")
    return _remap_cluster_ids(raw)


def build_detail_layer(
    vectors: np.ndarray,
    primary_labels: list[int],
    min_cluster_size: int = 3,
) -> list[DetailCluster]:
    """Sub-cluster each primary concept with Ward linkage.

    A concept gets children only when it can be cut into at least two parts
    that each keep ``min_cluster_size`` members; tiny Ward branches are folded
    back into their nearest sibling.
    """
    labels_arr = np.asarray(primary_labels, dtype=int)
    out: list[DetailCluster] = []
    n_primary = int(labels_arr.max()) + 1 if labels_arr.size else 0
    for parent in range(n_primary):
        members = np.where(labels_arr == parent)[0]
        sub_vectors = vectors[members]
        n_distinct = len(unique_row_indices(sub_vectors))
        n_detail = _safe_detail_count(members.size, n_distinct, min_cluster_size)
        if n_detail < 2:
            continue
        sub_labels, _ = merge_small_clusters(sub_vectors, _ward_labels(sub_vectors, n_detail), min_cluster_size)
        n_sub = max(sub_labels) + 1
        if n_sub < 2:
            continue
        centroids = cluster_centroids(sub_vectors, sub_labels, n_sub)
        sub_arr = np.asarray(sub_labels, dtype=int)
        for j in range(n_sub):
            local = np.where(sub_arr == j)[0]
            cohesion = float(np.mean(sub_vectors[local] @ centroids[j])) if local.size else 0.0
            out.append(
                DetailCluster(
                    parent_index=parent,
                    ordinal=j,
                    member_indices=[int(members[i]) for i in local],
                    centroid=centroids[j],
                    cohesion=round(max(0.0, min(1.0, cohesion)), 4),
                )
            )
    return out

