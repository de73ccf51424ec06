from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from conceptgraph.errors import InputError, ParameterError
from conceptgraph.models import AnalysisParameters, JurorBlock


def sanitize_preview(text: str, limit: int = 140) -> str:
    clean = " ".join((text or "").split())
    return clean[:limit]


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = str(err.get("msg", "invalid value"))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts) or "invalid parameters"


def validate_parameters(params: AnalysisParameters | Mapping[str, Any] | None) -> AnalysisParameters:
    if params is None:
        return AnalysisParameters()
    if isinstance(params, AnalysisParameters):
        return params
    if not isinstance(params, Mapping):
        raise ParameterError(f"parameters must be a mapping, got {type(params).__name__}")
    try:
        return AnalysisParameters(**dict(params))
    except ValidationError as exc:
        raise ParameterError(_format_validation_error(exc)) from exc


def parse_parameters_json(raw: str | None) -> AnalysisParameters:
    if not raw:
        return AnalysisParameters()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ParameterError(f"parameters must be valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ParameterError("parameters must be a JSON object")
    return validate_parameters(data)


def validate_source(source: Any) -> str | list[JurorBlock]:
    """Accept raw text or an ordered sequence of juror blocks."""
    if isinstance(source, str):
        return source
    if isinstance(source, Sequence) and not isinstance(source, (bytes, bytearray)):
        blocks = list(source)
        bad = [type(b).__name__ for b in blocks if not isinstance(b, JurorBlock)]
        if bad:
            raise InputError(f"juror blocks expected, got {', '.join(sorted(set(bad)))}")
        return blocks
    raise InputError(f"source must be text or a sequence of JurorBlock, got {type(source).__name__}")
