from __future__ import annotations

import json
import os
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

from conceptgraph.graph import apply_positions, similarity_links
from conceptgraph.logging_utils import get_logger
from conceptgraph.models import AnalysisParameters, AnalysisResult, GraphLink, GraphNode, ProgressEvent, to_jsonable
from conceptgraph.projection import positions_from_pc_values
from conceptgraph.structure import classify_structural_roles

logger = get_logger(__name__)

COMPACT_FORMAT_VERSION = 1
TERMINAL_STAGES = {"completed": "completed", "failed": "failed", "cancelled": "cancelled"}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_json(path: Path, payload: Any) -> None:
    """Write JSON through a temp file and an atomic replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        for attempt in range(5):
            try:
                tmp_path.replace(path)
                break
            except OSError:
                if attempt >= 4:
                    raise
                time.sleep(0.02 * (attempt + 1))
    finally:
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.debug("Could not remove temp file %s", tmp_path)


def read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_status(
    run_dir: Path,
    run_id: str,
    status: str,
    stage: str,
    pct: int,
    error: str | None = None,
) -> None:
    payload = {
        "run_id": run_id,
        "status": status,
        "progress": {"stage": stage, "pct": int(max(0, min(100, pct)))},
        "error": error,
        "updated_at": utc_now_iso(),
    }
    write_json(run_dir / "status.json", payload)


def read_status(run_dir: Path) -> dict[str, Any]:
    status_path = run_dir / "status.json"
    if not status_path.exists():
        return {"run_id": None, "status": "queued", "progress": {"stage": "queued", "pct": 0}, "error": None}
    data = read_json(status_path)
    if not isinstance(data, dict):
        raise ValueError(f"{status_path} does not hold a status object")
    return data


class StatusFileSink:
    """Progress sink that mirrors pipeline events into ``<run_dir>/status.json``."""

    def __init__(self, run_dir: Path):
        self.run_dir = Path(run_dir)

    def __call__(self, event: ProgressEvent) -> None:
        status = TERMINAL_STAGES.get(event.stage, "processing")
        error = event.message if status in {"failed", "cancelled"} else None
        write_status(self.run_dir, event.run_id, status, event.stage, event.pct, error=error)


def save_result(path: Path, result: AnalysisResult) -> None:
    write_json(path, result.to_dict())


def compact_result(result: AnalysisResult) -> dict[str, Any]:
    """Smallest payload from which positions and similarity edges can be rebuilt.

    Node coordinates and similarity links are dropped; membership links keep
    their evidence, and juror profiles plus per-(juror, concept) evidence ids
    let ``restore_graph`` recompute everything else.
    """
    nodes = []
    for node in result.nodes:
        data = to_jsonable(node)
        for key in ("x", "y", "z"):
            data.pop(key, None)
        nodes.append(data)
    membership = [to_jsonable(replace(link, structural_role=None)) for link in result.links if link.kind == "jurorConcept"]
    return {
        "format_version": COMPACT_FORMAT_VERSION,
        "run_id": result.run_id,
        "analysis_build_id": result.analysis_build_id,
        "parameters": result.parameters.model_dump(),
        "applied_num_dimensions": result.applied_num_dimensions,
        "jurors": list(result.jurors),
        "concept_ids": [c.id for c in result.concepts],
        "juror_vectors": {k: list(v) for k, v in result.juror_vectors.items()},
        "juror_concept_evidence": to_jsonable(result.juror_concept_evidence),
        "nodes": nodes,
        "membership_links": membership,
    }


def reconstruct_positions(nodes: list[GraphNode], applied_dims: int, scale: float) -> None:
    """Recompute x/y/z in place from each node's stored ``pc_values``."""
    pc_matrix = np.array([n.pc_values for n in nodes], dtype=np.float64).reshape(len(nodes), applied_dims)
    apply_positions(nodes, positions_from_pc_values(pc_matrix, applied_dims, scale))


def reconstruct_similarity_links(
    jurors: list[str],
    concept_ids: list[str],
    juror_vectors: dict[str, list[float]],
    evidence: dict[str, dict[str, list[str]]],
    similarity_threshold: float,
) -> list[GraphLink]:
    profiles = np.array([juror_vectors[j] for j in jurors], dtype=np.float64).reshape(len(jurors), len(concept_ids))
    return similarity_links(jurors, concept_ids, profiles, evidence, similarity_threshold)


def restore_graph(payload: dict[str, Any]) -> tuple[list[GraphNode], list[GraphLink]]:
    version = payload.get("format_version")
    if version != COMPACT_FORMAT_VERSION:
        raise ValueError(f"unsupported compact format version: {version!r}")
    params = AnalysisParameters(**payload["parameters"])

    nodes = [GraphNode(**n) for n in payload["nodes"]]
    reconstruct_positions(nodes, int(payload["applied_num_dimensions"]), params.scale)

    links = [GraphLink(**link) for link in payload["membership_links"]]
    links.extend(
        reconstruct_similarity_links(
            list(payload["jurors"]),
            list(payload["concept_ids"]),
            payload["juror_vectors"],
            payload["juror_concept_evidence"],
            params.similarity_threshold,
        )
    )
    return nodes, classify_structural_roles(nodes, links)
