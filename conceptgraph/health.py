from __future__ import annotations

from typing import Any, Literal

Status = Literal["good", "warning", "poor"]

STATUS_SCORE = {"good": 1.0, "warning": 0.6, "poor": 0.2}


def _density_status(value: float) -> Status:
    if value < 5 or value > 30:
        return "poor"
    if value < 8 or value > 20:
        return "warning"
    return "good"


def _avg_size_status(value: float) -> Status:
    if value < 4:
        return "poor"
    if value < 7:
        return "warning"
    return "good"


def _variance_status(value: float) -> Status:
    if value < 0.6:
        return "poor"
    if value < 0.75:
        return "warning"
    return "good"


def _solo_status(ratio: float) -> Status:
    if ratio > 0.4:
        return "poor"
    if ratio > 0.2:
        return "warning"
    return "good"


def evaluate_report_health(
    total_sentences: int,
    concept_juror_counts: list[int],
    variance_achieved: float | None,
) -> dict[str, Any]:
    """Grade a finished run on concept density, concept size, axis variance and single-juror concepts."""
    total_concepts = len(concept_juror_counts)
    density = total_sentences / (total_concepts or 1)
    density_status = _density_status(density)
    avg_status = _avg_size_status(density)
    variance = 0.8 if variance_achieved is None else float(variance_achieved)
    variance_status = _variance_status(variance)
    solo = sum(1 for c in concept_juror_counts if c == 1)
    solo_ratio = solo / total_concepts if total_concepts else 0.0
    solo_status = _solo_status(solo_ratio)

    overall = 0.25 * sum(STATUS_SCORE[s] for s in (density_status, avg_status, variance_status, solo_status))

    recommendations: list[str] = []
    if density_status == "poor" and density < 5:
        recommendations.append("Too many concepts for this dataset size. Try reducing k or enabling the detail layer.")
    if density_status == "poor" and density > 30:
        recommendations.append("Concepts might be too broad. Try increasing k for more granular insights.")
    if variance_status == "poor":
        recommendations.append("Low axis variance suggests a noisy layout. Try the variance-target dimension mode.")
    if solo_status != "good":
        recommendations.append("Many concepts are driven by single jurors. Check whether they are shared themes or outliers.")

    return {
        "overall_score": round(overall, 4),
        "metrics": {
            "concept_density": {"value": density, "status": density_status},
            "avg_sentences_per_concept": {"value": density, "status": avg_status},
            "axis_variance": {"value": variance * 100.0, "status": variance_status},
            "single_juror_concepts": {"value": solo_ratio * 100.0, "status": solo_status},
        },
        "recommendations": recommendations,
    }
