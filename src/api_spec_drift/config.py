"""Runtime settings for an assessment session.

Values come from defaults, then an optional YAML file, then
API_DRIFT_* environment variables.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

ENV_PREFIX = "API_DRIFT_"


class DriftConfig(BaseModel):
    """Knobs that shape normalization and synthesis."""

    cycle_depth: int = Field(default=1, ge=0)  # further levels a cyclic $ref expands
    malformed_cap: int = Field(default=50, ge=0)
    seed: int = 0
    oversize_array_length: int = Field(default=64, ge=1)
    server_index: int = Field(default=0, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, base: "DriftConfig | None" = None) -> "DriftConfig":
        """Overlay API_DRIFT_* environment variables on top of ``base``."""
        data = (base or cls()).model_dump()
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None:
                data[name] = raw
        return cls(**data)


def load_config(path: Path | None = None) -> DriftConfig:
    """Load settings from a YAML file (optional) plus environment overrides."""
    if path is None:
        return DriftConfig.from_env()

    doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return DriftConfig.from_env(DriftConfig(**doc))
