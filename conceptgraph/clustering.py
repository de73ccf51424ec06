from __future__ import annotations

import math
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from conceptgraph.errors import ConvergenceWarning
from conceptgraph.logging_utils import get_logger
from conceptgraph.models import AnalysisParameters
from conceptgraph.prng import LCG

logger = get_logger(__name__)

KSEARCH_SIZE_PENALTY = 0.001
KSEARCH_DOMINANCE_SHARE = 0.35
KSEARCH_DOMINANCE_WEIGHT = 0.5
KSEARCH_TIE_MARGIN = 0.02
DOMINANCE_SHARE_MIN = 0.2
DOMINANCE_SHARE_MAX = 0.8


@dataclass
class KMeansResult:
    labels: np.ndarray
    centroids: np.ndarray
    converged: bool
    iterations: int


@dataclass
class ClusteringResult:
    labels: list[int]
    centroids: np.ndarray
    k_requested: int
    k_applied: int
    recommended_k: int | None = None
    k_search_metrics: list[dict[str, Any]] = field(default_factory=list)
    merges: list[dict[str, int]] = field(default_factory=list)
    splits: list[dict[str, int]] = field(default_factory=list)
    converged: bool = True
    warnings: list[str] = field(default_factory=list)


def _remap_cluster_ids(raw_ids: np.ndarray | list[int]) -> list[int]:
    cluster_map: dict[int, int] = {}
    next_id = 0
    out: list[int] = []
    for cid in raw_ids:
        c = int(cid)
        if c not in cluster_map:
            cluster_map[c] = next_id
            next_id += 1
        out.append(cluster_map[c])
    return out


def _unit(v: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(v))
    if norm <= 0.0:
        return np.zeros_like(v)
    return v / norm


def unique_row_indices(vectors: np.ndarray) -> list[int]:
    """First index of every distinct row, in input order."""
    seen: set[bytes] = set()
    out: list[int] = []
    for i, row in enumerate(vectors):
        key = np.ascontiguousarray(row).tobytes()
        if key in seen:
            continue
        seen.add(key)
        out.append(i)
    return out


def cluster_centroids(vectors: np.ndarray, labels: list[int] | np.ndarray, n_clusters: int) -> np.ndarray:
    labels_arr = np.asarray(labels, dtype=int)
    centroids = np.zeros((n_clusters, vectors.shape[1]), dtype=np.float64)
    for cid in range(n_clusters):
        idx = np.where(labels_arr == cid)[0]
        if idx.size:
            centroids[cid] = _unit(vectors[idx].mean(axis=0))
    return centroids


def kmeans_cosine(
    vectors: np.ndarray,
    k: int,
    seed: int = 42,
    max_iterations: int = 25,
) -> KMeansResult:
    """Spherical k-means over L2-normalized rows.

    Initial centroids are distinct rows drawn with the seeded LCG. Points go to
    the centroid with the highest dot product (lowest index on ties); a
    centroid that loses all its points keeps its previous position.
    """
    n = vectors.shape[0]
    if n == 0:
        return KMeansResult(np.zeros(0, dtype=int), np.zeros((0, vectors.shape[1])), True, 0)

    distinct = unique_row_indices(vectors)
    k_eff = max(1, min(int(k), len(distinct)))
    rng = LCG(seed)
    picks = rng.sample_indices(len(distinct), k_eff)
    centroids = np.array([vectors[distinct[p]] for p in picks], dtype=np.float64)

    labels: np.ndarray | None = None
    converged = False
    iterations = 0
    for iteration in range(max_iterations):
        iterations = iteration + 1
        new_labels = np.argmax(vectors @ centroids.T, axis=1)
        if labels is not None and np.array_equal(new_labels, labels):
            converged = True
            break
        labels = new_labels
        for cid in range(k_eff):
            idx = np.where(labels == cid)[0]
            if idx.size:
                centroids[cid] = _unit(vectors[idx].mean(axis=0))

    if labels is None:
        labels = np.argmax(vectors @ centroids.T, axis=1)
    return KMeansResult(labels=labels.astype(int), centroids=centroids, converged=converged, iterations=iterations)


def _largest_share(labels: list[int] | np.ndarray) -> float:
    counts = np.bincount(np.asarray(labels, dtype=int))
    total = int(counts.sum())
    return float(counts.max()) / total if total else 0.0


def score_candidate(vectors: np.ndarray, labels: np.ndarray, min_cluster_size: int) -> dict[str, Any]:
    from sklearn.metrics import silhouette_score

    counts = np.bincount(labels)
    counts = counts[counts > 0]
    n_clusters = int(counts.size)
    entry: dict[str, Any] = {
        "clusters": n_clusters,
        "min_size": int(counts.min()) if n_clusters else 0,
        "largest_share": _largest_share(labels),
        "valid": False,
        "silhouette": None,
        "score": None,
    }
    if n_clusters < 2 or n_clusters >= vectors.shape[0]:
        entry["reason"] = "degenerate"
        return entry
    if int(counts.min()) < min_cluster_size:
        entry["reason"] = "below_min_cluster_size"
        return entry

    silhouette = float(silhouette_score(vectors, labels, metric="cosine"))
    score = silhouette - KSEARCH_SIZE_PENALTY * n_clusters
    if entry["largest_share"] > KSEARCH_DOMINANCE_SHARE:
        score -= KSEARCH_DOMINANCE_WEIGHT * (entry["largest_share"] - KSEARCH_DOMINANCE_SHARE) ** 2
    entry.update({"valid": True, "silhouette": round(silhouette, 6), "score": round(score, 6)})
    return entry


def pick_k(
    vectors: np.ndarray,
    k_min: int,
    k_max: int,
    seed: int,
    min_cluster_size: int = 1,
    max_iterations: int = 25,
    should_stop: Callable[[], None] | None = None,
) -> tuple[int, list[dict[str, Any]]]:
    """Search ``[k_min, k_max]`` by cosine silhouette with size and dominance penalties.

    ``should_stop`` is called before each candidate and may raise to abandon
    the search; candidates are independent so nothing needs undoing.
    """
    n = vectors.shape[0]
    upper = min(k_max, n - 1)
    metrics: list[dict[str, Any]] = []
    best_k: int | None = None
    best_score = -math.inf
    for k in range(k_min, upper + 1):
        if should_stop is not None:
            should_stop()
        result = kmeans_cosine(vectors, k, seed=seed, max_iterations=max_iterations)
        entry = {"k": k, **score_candidate(vectors, result.labels, min_cluster_size)}
        metrics.append(entry)
        if not entry["valid"]:
            continue
        # Smaller k wins unless a larger one beats it by more than the margin.
        if best_k is None or entry["score"] > best_score + KSEARCH_TIE_MARGIN:
            best_k = k
            best_score = entry["score"]
    if best_k is None:
        best_k = max(1, min(k_min, n))
        logger.info("No valid k in [%d, %d]; falling back to k=%d", k_min, k_max, best_k)
    return best_k, metrics


def granularity_k(k_min: int, k_max: int, granularity_percent: float) -> int:
    span = k_max - k_min
    return int(math.floor(k_min + span * (granularity_percent / 100.0) + 0.5))


def dominance_threshold(granularity_percent: float) -> float:
    return max(DOMINANCE_SHARE_MIN, min(DOMINANCE_SHARE_MAX, 1.0 - granularity_percent / 100.0))


def merge_small_clusters(
    vectors: np.ndarray,
    labels: list[int],
    min_cluster_size: int,
) -> tuple[list[int], list[dict[str, int]]]:
    """Fold clusters below ``min_cluster_size`` into their most similar neighbour.

    The smallest cluster (lowest id on ties) is merged first; centroids are
    recomputed after each merge.
    """
    current = _remap_cluster_ids(labels)
    merges: list[dict[str, int]] = []
    while True:
        n_clusters = max(current) + 1 if current else 0
        if n_clusters <= 1:
            break
        counts = np.bincount(np.asarray(current, dtype=int), minlength=n_clusters)
        smallest = int(np.argmin(counts))
        if counts[smallest] >= min_cluster_size:
            break
        centroids = cluster_centroids(vectors, current, n_clusters)
        sims = centroids @ centroids[smallest]
        sims[smallest] = -math.inf
        target = int(np.argmax(sims))
        merges.append({"from": smallest, "into": target, "size": int(counts[smallest])})
        current = _remap_cluster_ids([target if c == smallest else c for c in current])
    return current, merges


def split_dominant_clusters(
    vectors: np.ndarray,
    labels: list[int],
    share_threshold: float,
    min_cluster_size: int,
    max_clusters: int,
    seed: int,
    max_iterations: int = 25,
) -> tuple[list[int], list[dict[str, int]]]:
    current = list(labels)
    splits: list[dict[str, int]] = []
    while True:
        counts = np.bincount(np.asarray(current, dtype=int))
        n_clusters = int(counts.size)
        if n_clusters >= max_clusters:
            break
        largest = int(np.argmax(counts))
        if counts[largest] / counts.sum() <= share_threshold:
            break
        members = np.where(np.asarray(current) == largest)[0]
        sub = kmeans_cosine(vectors[members], 2, seed=seed, max_iterations=max_iterations)
        part_sizes = np.bincount(sub.labels, minlength=2)
        if part_sizes.size < 2 or int(part_sizes.min()) < max(1, min_cluster_size):
            break
        for pos, member in enumerate(members):
            if sub.labels[pos] == 1:
                current[int(member)] = n_clusters
        splits.append({"cluster": largest, "new_cluster": n_clusters, "moved": int(part_sizes[1])})
    return current, splits


def soft_memberships(
    vectors: np.ndarray,
    centroids: np.ndarray,
    hard_labels: list[int],
    top_n: int = 2,
    temperature: float = 1.0,
    min_weight: float = 0.10,
    entropy_cap: float = 0.8,
) -> list[list[tuple[int, float]]]:
    """Fractional cluster weights per row, summing to 1.

    The hard cluster always ranks first so it stays the top membership; the
    rest follow by similarity. Too-small weights are dropped and a too-even
    spread (normalized entropy above ``entropy_cap``) hardens to the top one.
    """
    out: list[list[tuple[int, float]]] = []
    sims_all = np.maximum(0.0, vectors @ centroids.T) / temperature
    for i, sims in enumerate(sims_all):
        hard = int(hard_labels[i])
        if float(sims.sum()) <= 0.0:
            out.append([(hard, 1.0)])
            continue
        order = [hard] + [c for c in sorted(range(len(sims)), key=lambda c: -sims[c]) if c != hard]
        top = order[:top_n]
        total = float(sum(sims[c] for c in top)) or 1.0
        candidates = [(c, float(sims[c]) / total) for c in top]
        kept = [(c, w) for c, w in candidates if w >= min_weight] or [candidates[0]]
        if kept[0][0] != hard:
            kept = [candidates[0]] + [(c, w) for c, w in kept if c != hard]
        kept_total = sum(w for _, w in kept) or 1.0
        kept = [(c, w / kept_total) for c, w in kept]
        if len(kept) > 1 and _normalized_entropy([w for _, w in kept]) > entropy_cap:
            kept = [(kept[0][0], 1.0)]
        out.append(kept)
    return out


def _normalized_entropy(weights: list[float]) -> float:
    if len(weights) <= 1:
        return 0.0
    ent = -sum(w * math.log2(w) for w in weights if w > 0)
    return ent / math.log2(len(weights))


def cluster_sentences(
    vectors: np.ndarray,
    params: AnalysisParameters,
    should_stop: Callable[[], None] | None = None,
) -> ClusteringResult:
    """Partition sentence vectors into concepts under the run's cut policy."""
    n = vectors.shape[0]
    if n == 0:
        return ClusteringResult(labels=[], centroids=np.zeros((0, vectors.shape[1])), k_requested=params.k, k_applied=0)

    recommended_k: int | None = None
    metrics: list[dict[str, Any]] = []
    if params.auto_k:
        k = recommended_k = _auto_k(vectors, params, should_stop, metrics)
    elif params.cut_type == "granularity":
        k = granularity_k(params.k_min, params.k_max, params.granularity_percent)
    else:
        k = params.k

    distinct = len(unique_row_indices(vectors))
    k_applied = max(1, min(k, n, distinct))
    if k_applied < k:
        logger.info("Reducing k from %d to %d (%d sentences, %d distinct)", k, k_applied, n, distinct)

    result = kmeans_cosine(vectors, k_applied, seed=params.seed, max_iterations=params.max_iterations)
    run_warnings: list[str] = []
    if not result.converged:
        msg = f"k-means did not converge within {params.max_iterations} iterations (k={k_applied})"
        warnings.warn(msg, ConvergenceWarning, stacklevel=2)
        logger.warning(msg)
        run_warnings.append(msg)

    labels = _remap_cluster_ids(result.labels)
    splits: list[dict[str, int]] = []
    if params.cut_type == "granularity":
        labels, splits = split_dominant_clusters(
            vectors,
            labels,
            share_threshold=dominance_threshold(params.granularity_percent),
            min_cluster_size=params.min_cluster_size,
            max_clusters=params.k_max,
            seed=params.seed,
            max_iterations=params.max_iterations,
        )
    labels, merges = merge_small_clusters(vectors, labels, params.min_cluster_size)
    labels = _remap_cluster_ids(labels)
    n_clusters = max(labels) + 1
    return ClusteringResult(
        labels=labels,
        centroids=cluster_centroids(vectors, labels, n_clusters),
        k_requested=k,
        k_applied=n_clusters,
        recommended_k=recommended_k,
        k_search_metrics=metrics,
        merges=merges,
        splits=splits,
        converged=result.converged,
        warnings=run_warnings,
    )


def _auto_k(
    vectors: np.ndarray,
    params: AnalysisParameters,
    should_stop: Callable[[], None] | None,
    metrics: list[dict[str, Any]],
) -> int:
    best_k, found = pick_k(
        vectors,
        params.k_min,
        params.k_max,
        seed=params.seed,
        min_cluster_size=params.min_cluster_size,
        max_iterations=params.max_iterations,
        should_stop=should_stop,
    )
    metrics.extend(found)
    logger.info("Auto-k picked k=%d over %d candidates", best_k, len(found))
    return best_k
