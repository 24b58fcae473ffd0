"""Engine configuration: defaults, merged with an optional JSON file, then
with BOOK_QUOTES_* environment variables (a .env file is loaded first)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from book_quotes.llm import ProviderFormat

ENV_PREFIX = "BOOK_QUOTES_"


class QuoteConfig(BaseModel):
    # Context window
    window_fraction: float = Field(default=0.10, gt=0, le=1)
    max_window: int = Field(default=50_000, gt=0)
    min_window: int = Field(default=1, ge=1)
    expansion_multipliers: tuple[float, ...] = (1.5, 2.0, 3.0)

    # Provenance
    proximity: int = Field(default=200, ge=0)

    # Capability timeouts (seconds)
    compatibility_timeout: float = 15.0
    selection_timeout: float = 15.0
    assistant_timeout: float = 20.0

    cache_size: int = Field(default=1024, ge=1)
    max_scored_candidates: int = Field(default=5, ge=1)

    # LLM connection
    llm_url: str = "http://localhost:5001"
    llm_api_key: str = ""
    llm_format: ProviderFormat = "koboldcpp"
    llm_model: str = ""
    llm_timeout: float = 60.0


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, field in QuoteConfig.model_fields.items():
        raw = os.getenv(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        if field.annotation == tuple[float, ...]:
            overrides[name] = tuple(float(v) for v in raw.split(",") if v.strip())
        else:
            overrides[name] = raw
    return overrides


def load_config(path: Path | None = None, env_file: Path | None = None) -> QuoteConfig:
    """Read config, returning defaults merged with stored and environment values."""
    load_dotenv(env_file or Path.cwd() / ".env")
    config: dict[str, Any] = {}
    if path is not None and path.is_file():
        stored = json.loads(path.read_text())
        if isinstance(stored, dict):
            config.update(stored)
    config.update(_env_overrides())
    return QuoteConfig.model_validate(config)
