from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from conceptgraph.logging_utils import get_logger

logger = get_logger(__name__)

MAX_DIMENSIONS = 12
POWER_ITERATIONS = 100
POWER_TOLERANCE = 1e-12
VARIANCE_EPS = 1e-12
GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


@dataclass
class PCAResult:
    mean: np.ndarray
    components: np.ndarray
    explained_variance: list[float]
    total_variance: float
    iterations: list[int] = field(default_factory=list)

    @property
    def explained_ratio(self) -> list[float]:
        if self.total_variance <= VARIANCE_EPS:
            return [0.0 for _ in self.explained_variance]
        return [v / self.total_variance for v in self.explained_variance]

    def transform(self, rows: np.ndarray) -> np.ndarray:
        if rows.shape[0] == 0:
            return np.zeros((0, self.components.shape[0]))
        return (rows - self.mean) @ self.components.T


def _orthogonalize(v: np.ndarray, basis: list[np.ndarray]) -> np.ndarray:
    for b in basis:
        v = v - float(v @ b) * b
    return v


def _canonical_sign(v: np.ndarray) -> np.ndarray:
    total = float(v.sum())
    if abs(total) > VARIANCE_EPS:
        return v if total > 0 else -v
    nonzero = np.flatnonzero(np.abs(v) > VARIANCE_EPS)
    if nonzero.size and v[nonzero[0]] < 0:
        return -v
    return v


def _start_vector(dim: int, basis: list[np.ndarray], apply_cov) -> np.ndarray | None:
    """Constant vector first, then standard basis vectors, whichever survives deflation."""
    candidates = [np.ones(dim)] + [np.eye(1, dim, j).ravel() for j in range(dim)]
    fallback: np.ndarray | None = None
    for cand in candidates:
        v = _orthogonalize(cand, basis)
        norm = float(np.linalg.norm(v))
        if norm <= 1e-9:
            continue
        v = v / norm
        if fallback is None:
            fallback = v
        if float(np.linalg.norm(_orthogonalize(apply_cov(v), basis))) > VARIANCE_EPS:
            return v
    return fallback


def deterministic_pca(rows: np.ndarray, n_components: int) -> PCAResult:
    """Principal axes by power iteration from the all-ones vector.

    Components are found one at a time, each kept orthogonal to the earlier
    ones, then sign-fixed so that repeated runs on the same data give the
    same directions bit for bit. Works on ``Xc.T @ (Xc @ v)`` so the
    covariance matrix is never materialized.
    """
    n, dim = rows.shape
    mean = rows.mean(axis=0) if n else np.zeros(dim)
    centered = rows - mean
    denom = max(1, n - 1)
    total = float((centered**2).sum()) / denom

    def apply_cov(v: np.ndarray) -> np.ndarray:
        return centered.T @ (centered @ v) / denom

    basis: list[np.ndarray] = []
    variances: list[float] = []
    iterations: list[int] = []
    for _ in range(min(n_components, dim)):
        v = _start_vector(dim, basis, apply_cov)
        if v is None:
            break
        steps = 0
        for steps in range(1, POWER_ITERATIONS + 1):
            w = _orthogonalize(apply_cov(v), basis)
            norm = float(np.linalg.norm(w))
            if norm <= VARIANCE_EPS:
                break
            w = w / norm
            delta = float(np.linalg.norm(w - v))
            v = w
            if delta < POWER_TOLERANCE:
                break
        v = _canonical_sign(v)
        basis.append(v)
        variances.append(max(0.0, float(v @ apply_cov(v))))
        iterations.append(steps)

    components = np.vstack(basis) if basis else np.zeros((0, dim))
    return PCAResult(mean=mean, components=components, explained_variance=variances, total_variance=total, iterations=iterations)


def choose_dimensions(
    pca: PCAResult,
    requested: int,
    mode: str,
    variance_threshold: float,
    n_entities: int,
) -> int:
    cap = max(1, min(MAX_DIMENSIONS, n_entities - 1, pca.components.shape[0] or 1))
    if mode != "variance-target":
        return max(1, min(requested, cap))
    cumulative = 0.0
    for d, ratio in enumerate(pca.explained_ratio[:cap], start=1):
        cumulative += ratio
        if cumulative >= variance_threshold - 1e-12:
            return d
    return cap


def variance_stats(pca: PCAResult, applied: int) -> dict[str, Any]:
    cumulative: list[float] = []
    running = 0.0
    for v in pca.explained_variance:
        running += v
        cumulative.append(running)
    ratio = pca.explained_ratio
    achieved = sum(ratio[:applied]) if ratio else 0.0
    return {
        "explained_variances": [float(v) for v in pca.explained_variance],
        "explained_variance_ratio": [float(r) for r in ratio],
        "cumulative_variances": cumulative,
        "total_variance": float(pca.total_variance),
        "max_variance_achieved": float(achieved),
        "power_iterations": list(pca.iterations),
    }


def pad_pc_values(values: np.ndarray, applied: int) -> np.ndarray:
    """Trim or zero-pad projections so every entity has ``applied`` coordinates."""
    out = np.zeros((values.shape[0], applied), dtype=np.float64)
    width = min(applied, values.shape[1])
    out[:, :width] = values[:, :width]
    return out


def axis_directions(n_dims: int) -> np.ndarray:
    """Fixed 3D direction per reduced dimension.

    Up to three dimensions map onto the x, y and z unit vectors; beyond that
    the directions are spread over the unit sphere on a Fibonacci lattice.
    """
    if n_dims <= 3:
        return np.eye(3)[:n_dims].copy()
    out = np.zeros((n_dims, 3))
    for i in range(n_dims):
        y = 1.0 - (i / (n_dims - 1)) * 2.0
        radius = math.sqrt(max(0.0, 1.0 - y * y))
        theta = GOLDEN_ANGLE * i
        out[i] = (math.cos(theta) * radius, y, math.sin(theta) * radius)
    return out


def normalize_positions(raw: np.ndarray, scale: float = 10.0) -> np.ndarray:
    """Center the batch on its bounding-box midpoint and scale by the widest axis range."""
    if raw.shape[0] == 0:
        return raw.copy()
    mins = raw.min(axis=0)
    maxs = raw.max(axis=0)
    center = (mins + maxs) / 2.0
    extent = float((maxs - mins).max())
    if extent <= 0.0:
        extent = 1.0
    return (raw - center) / extent * (scale * 2.0)


def positions_from_pc_values(pc_values: np.ndarray, applied: int, scale: float = 10.0) -> np.ndarray:
    if pc_values.shape[0] == 0:
        return np.zeros((0, 3))
    raw = pad_pc_values(pc_values, applied) @ axis_directions(applied)
    return normalize_positions(raw, scale)


def axis_labels(concept_labels: list[str], concept_ids: list[str], pc_values: np.ndarray) -> dict[str, dict[str, str]]:
    """Name each reduced axis after its most extreme concepts, avoiding reuse across axes."""
    out: dict[str, dict[str, str]] = {}
    if pc_values.shape[0] == 0:
        return out
    used: set[int] = set()
    for dim in range(pc_values.shape[1]):
        column = pc_values[:, dim]
        ascending = sorted(range(column.size), key=lambda i: (column[i], i))
        negative = next((i for i in ascending if i not in used), ascending[0])
        positive = next((i for i in reversed(ascending) if i not in used and i != negative), ascending[-1])
        used.update({negative, positive})
        entry = {
            "negative": concept_labels[negative],
            "positive": concept_labels[positive],
            "negative_id": concept_ids[negative],
            "positive_id": concept_ids[positive],
            "name": f"{concept_labels[negative]} vs {concept_labels[positive]}",
        }
        out[f"pc{dim + 1}"] = entry
        if dim < 3:
            out["xyz"[dim]] = dict(entry)
    return out
