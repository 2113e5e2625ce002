"""
Engine Settings - Runtime configuration for the governance engine

Settings are plain pydantic models with sensible defaults. Deployments override
them through GOVERNANCE_* environment variables; tests construct them directly.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

ENV_PREFIX = "GOVERNANCE_"


class EngineSettings(BaseModel):
    """
    Governance engine configuration

    The rule table itself is not configured here; `rules_path` only points at
    an optional JSON file that replaces the built-in table.
    """

    db_path: Path = Field(
        default=Path("governance.db"),
        description="SQLite database holding proposals, votes and the audit log",
    )

    rules_path: Path | None = Field(
        default=None,
        description="Optional JSON rule table replacing the built-in registry",
    )

    sweep_batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum proposals resolved per resolve_expired call",
    )

    early_resolution: bool = Field(
        default=False,
        description="Resolve a proposal as soon as a vote makes the outcome certain",
    )

    busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a connection waits on a locked database",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    json_logs: bool = Field(
        default=False,
        description="Render logs as JSON (production) instead of console text",
    )

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls, **overrides: object) -> "EngineSettings":
        """
        Build settings from GOVERNANCE_* environment variables

        Recognised: GOVERNANCE_DB_PATH, GOVERNANCE_RULES_PATH,
        GOVERNANCE_SWEEP_BATCH_SIZE, GOVERNANCE_EARLY_RESOLUTION,
        GOVERNANCE_BUSY_TIMEOUT_SECONDS, GOVERNANCE_LOG_LEVEL,
        GOVERNANCE_JSON_LOGS. Explicit keyword overrides win.
        """
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


default_settings = EngineSettings()
