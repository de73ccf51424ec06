from __future__ import annotations


class ConceptGraphError(Exception):
    """Base class for errors raised by the concept graph pipeline."""


class InputError(ConceptGraphError):
    """Corpus is missing or unusable."""


class ParameterError(ConceptGraphError, ValueError):
    """Parameter bundle rejected before a run starts."""


class LabelQualityFailure(ConceptGraphError):
    def __init__(self, label: str, score: float, violations: list[str]):
        self.label = label
        self.score = score
        self.violations = list(violations)
        super().__init__(f"label {label!r} rejected (score={score:.2f}, violations={', '.join(violations) or 'none'})")


class EnrichmentFailure(ConceptGraphError):
    """External label/axis synthesis was unavailable or returned unusable text."""

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        self.detail = detail
        super().__init__(reason if not detail else f"{reason}: {detail}")


class AnalysisCancelled(ConceptGraphError):
    def __init__(self, run_id: str, stage: str):
        self.run_id = run_id
        self.stage = stage
        super().__init__(f"run {run_id} cancelled during {stage}")


class ConvergenceWarning(UserWarning):
    """K-means stopped at its iteration cap before assignments stabilized."""
