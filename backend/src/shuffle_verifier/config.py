from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from shuffle_verifier.engine.reveal import DEFAULT_REVEAL_DELAY_MS


ENV_PREFIX = "SHUFFLE_VERIFIER_"


class VerifierConfig(BaseModel):
    backend_url: str = "http://127.0.0.1:8000"
    request_timeout_s: float = 10.0
    retry_attempts: int = Field(default=3, ge=1)
    retry_backoff_s: float = Field(default=0.25, ge=0)
    reveal_delay_ms: int = Field(default=DEFAULT_REVEAL_DELAY_MS, ge=0)
    local_search_radius: int = Field(default=10, ge=0)
    default_hole_cards: int = Field(default=2, ge=1)

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "VerifierConfig":
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            key = f"{ENV_PREFIX}{name.upper()}"
            if key in environ:
                values[name] = environ[key]
        return cls.model_validate(values)
