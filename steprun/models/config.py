"""Configuration models for the step runner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

BrowserName = Literal["chromium", "firefox", "webkit"]

SUPPORTED_BROWSERS: tuple[str, ...] = ("chromium", "firefox", "webkit")

MIN_STEP_TIMEOUT_SECONDS = 1
MAX_STEP_TIMEOUT_SECONDS = 120
DEFAULT_STEP_TIMEOUT_SECONDS = 10


class ViewportConfig(BaseModel):
    width: int = 1280
    height: int = 720


class RunnerConfig(BaseModel):
    # Execution
    default_browser: BrowserName = "chromium"
    step_timeout_seconds: int = DEFAULT_STEP_TIMEOUT_SECONDS
    continue_on_failure: bool = False
    headless: bool = True
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)

    # Storage
    data_dir: str = ".steprun"

    # Artifacts
    thumbnail_max_width: int = 320
    thumbnail_max_height: int = 200

    # AI settings
    ai_model: str = "claude-sonnet-4-20250514"
    ai_max_tokens: int = 4096

    @field_validator("default_browser", mode="before")
    @classmethod
    def sanitize_browser(cls, v):
        if v in SUPPORTED_BROWSERS:
            return v
        return "chromium"

    @field_validator("step_timeout_seconds", mode="before")
    @classmethod
    def clamp_step_timeout(cls, v):
        try:
            timeout = round(float(v))
        except (TypeError, ValueError, OverflowError):
            return DEFAULT_STEP_TIMEOUT_SECONDS
        return max(MIN_STEP_TIMEOUT_SECONDS, min(MAX_STEP_TIMEOUT_SECONDS, timeout))

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def store_path(self) -> Path:
        return self.data_path / "store.json"

    @property
    def artifacts_path(self) -> Path:
        return self.data_path / "artifacts"

    @property
    def debug_path(self) -> Path:
        return self.data_path / "debug"

    @classmethod
    def load(cls, path: str | Path) -> "RunnerConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
