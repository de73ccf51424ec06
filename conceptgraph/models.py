from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

Stance = Literal["praise", "critique", "suggestion", "neutral"]
NodeType = Literal["juror", "concept", "designerConcept"]
LinkKind = Literal["jurorConcept", "jurorJuror", "conceptConcept", "jurorDesignerConcept"]
Layer = Literal["primary", "detail"]

UNATTRIBUTED = "Unattributed"


class AnalysisParameters(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    k: int = Field(default=6, ge=1, le=200)
    auto_k: bool = False
    k_min: int = Field(default=2, ge=1, le=200)
    k_max: int = Field(default=10, ge=1, le=200)
    similarity_threshold: float = Field(default=0.35, ge=0.0, le=1.0)
    min_edge_weight: float = Field(default=0.05, ge=0.0, le=1.0)
    seed: int = 42
    num_dimensions: int = Field(default=3, ge=1, le=12)
    dimension_mode: Literal["manual", "variance-target"] = "manual"
    variance_threshold: float = Field(default=0.9, gt=0.0, le=1.0)
    soft_membership: bool = False
    soft_top_n: int = Field(default=2, ge=1, le=10)
    soft_temperature: float = Field(default=1.0, gt=0.0, le=10.0)
    soft_min_weight: float = Field(default=0.10, ge=0.0, lt=1.0)
    soft_entropy_cap: float = Field(default=0.8, gt=0.0, le=1.0)
    cut_type: Literal["count", "granularity"] = "count"
    granularity_percent: float = Field(default=50.0, ge=0.0, le=100.0)
    min_cluster_size: int = Field(default=1, ge=1, le=1000)
    detail_layer: bool = False
    detail_min_cluster_size: int = Field(default=3, ge=2, le=100)
    ngram_min: int = Field(default=2, ge=1, le=5)
    ngram_max: int = Field(default=3, ge=1, le=5)
    max_iterations: int = Field(default=25, ge=1, le=1000)
    scale: float = Field(default=10.0, gt=0.0, le=1000.0)
    label_min_df: int = Field(default=2, ge=1, le=100)
    label_max_df_percent: float = Field(default=0.8, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_ranges(self) -> AnalysisParameters:
        if self.k_min > self.k_max:
            raise ValueError(f"k_min ({self.k_min}) must not exceed k_max ({self.k_max})")
        if self.ngram_min > self.ngram_max:
            raise ValueError(f"ngram_min ({self.ngram_min}) must not exceed ngram_max ({self.ngram_max})")
        return self


@dataclass(frozen=True)
class Comment:
    id: str
    text: str
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class JurorBlock:
    juror: str
    comments: tuple[Comment, ...] = ()

    @property
    def text(self) -> str:
        return "\n\n".join(c.text for c in self.comments)


@dataclass(frozen=True)
class Membership:
    concept_id: str
    weight: float


@dataclass(frozen=True)
class SentenceRecord:
    id: str
    juror: str
    sentence: str
    stance: Stance
    source_tags: tuple[str, ...] = ()
    concept_id: str | None = None
    concept_membership: tuple[Membership, ...] | None = None
    detail_concept_id: str | None = None


@dataclass
class BM25Model:
    variant: Literal["consensus", "discriminative"]
    ngram_vocab: list[str]
    scores: dict[str, float]
    doc_freq: dict[str, int]
    vectors: np.ndarray


@dataclass
class Concept:
    id: str
    label: str
    count: int
    size: float
    weight: float = 0.0
    top_terms: list[str] = field(default_factory=list)
    representative_sentences: list[str] = field(default_factory=list)
    sentence_ids: list[str] = field(default_factory=list)
    juror_distribution: dict[str, float] = field(default_factory=dict)
    layer: Layer = "primary"
    parent_concept_id: str | None = None
    child_concept_ids: list[str] = field(default_factory=list)
    title: str | None = None
    one_liner: str | None = None
    label_quality: float = 0.0
    label_source: Literal["keyphrase", "contrastive", "centroid", "template"] = "contrastive"


@dataclass
class GraphNode:
    id: str
    type: NodeType
    label: str
    size: float
    pc_values: list[float]
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    layer: Layer = "primary"
    parent_concept_id: str | None = None
    child_concept_ids: list[str] | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphLink:
    id: str
    source: str
    target: str
    weight: float
    kind: LinkKind
    stance: Stance | None = None
    evidence_ids: list[str] = field(default_factory=list)
    evidence_count: int = 0
    structural_role: Literal["bridge", "cluster-internal"] | None = None


@dataclass(frozen=True)
class ProgressEvent:
    run_id: str
    stage: str
    pct: int
    message: str | None = None


@dataclass(frozen=True)
class AnalysisResult:
    run_id: str
    analysis_build_id: str
    seed: int
    parameters: AnalysisParameters
    jurors: list[str]
    sentences: list[SentenceRecord]
    concepts: list[Concept]
    detail_concepts: list[Concept]
    nodes: list[GraphNode]
    links: list[GraphLink]
    juror_vectors: dict[str, list[float]]
    juror_vectors_detail: dict[str, list[float]]
    juror_concept_evidence: dict[str, dict[str, list[str]]]
    centroids: list[list[float]]
    ngram_vocab: list[str]
    axis_labels: dict[str, dict[str, str]]
    variance_stats: dict[str, Any]
    requested_num_dimensions: int
    applied_num_dimensions: int
    recommended_k: int | None
    k_search_metrics: list[dict[str, Any]]
    juror_top_terms: dict[str, list[str]]
    stats: dict[str, Any]
    diagnostics: dict[str, Any]

    def node(self, node_id: str) -> GraphNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> dict[str, Any]:
        return to_jsonable(self)


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value
