"""Environment configuration for the optional label/axis synthesizer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_OLLAMA_URL = "http://localhost:11434/api/generate"
DEFAULT_OLLAMA_MODEL = "gemma3:1b"


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw.strip())
    except ValueError:
        return default
    return max(minimum, min(maximum, parsed))


@dataclass
class SynthesizerConfig:
    """Where and how to reach the text model used for label enrichment."""

    url: str = DEFAULT_OLLAMA_URL
    model: str = DEFAULT_OLLAMA_MODEL
    timeout_sec: int = 20
    call_budget: int = 40
    cache_path: Optional[Path] = None
    enabled: bool = True

    @classmethod
    def from_env(cls) -> SynthesizerConfig:
        """Load configuration from environment variables."""
        cache_raw = os.getenv("SYNTH_CACHE_PATH")
        enabled_raw = (os.getenv("SYNTH_ENABLED") or "1").strip().lower()
        return cls(
            url=os.getenv("OLLAMA_URL") or DEFAULT_OLLAMA_URL,
            model=os.getenv("OLLAMA_MODEL") or DEFAULT_OLLAMA_MODEL,
            timeout_sec=_env_int("SYNTH_TIMEOUT_SEC", 20, 1, 300),
            call_budget=_env_int("SYNTH_CALL_BUDGET", 40, 0, 10000),
            cache_path=Path(cache_raw) if cache_raw else None,
            enabled=enabled_raw not in {"0", "false", "no", "off"},
        )
