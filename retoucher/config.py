from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field

ENV_PREFIX = "RETOUCHER_"


class Settings(BaseModel):
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    # Longest edge of the interactive (display) buffer.
    preview_max_edge: int = 1200
    export_max_edge: int = 8000
    mask_probe_stride: int = 200
    field_probe_stride: int = 500
    max_sessions: int = 16


def _read_env() -> dict:
    values: dict = {}
    origins = os.getenv(f"{ENV_PREFIX}ALLOWED_ORIGINS")
    if origins:
        values["allowed_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
    for key in (
        "log_level",
        "preview_max_edge",
        "export_max_edge",
        "mask_probe_stride",
        "field_probe_stride",
        "max_sessions",
    ):
        raw = os.getenv(f"{ENV_PREFIX}{key.upper()}")
        if raw is not None:
            values[key] = raw
    return values


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(**_read_env())
