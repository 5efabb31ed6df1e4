"""Event payloads pushed to subscribers and browser install state."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from steprun.models.config import BrowserName
from steprun.models.records import RunStatus, StepResult, StepStatus, now_iso

RunEventType = Literal["run-started", "step-started", "step-finished", "run-finished"]
InstallPhase = Literal["starting", "downloading", "installing", "verifying", "completed", "failed"]


class RunUpdateEvent(BaseModel):
    run_id: str
    type: RunEventType
    run_status: Optional[RunStatus] = None
    step_id: Optional[str] = None
    step_order: Optional[int] = None
    step_status: Optional[StepStatus] = None
    step_result: Optional[StepResult] = None
    message: Optional[str] = None
    timestamp: str = Field(default_factory=now_iso)


class BrowserInstallState(BaseModel):
    browser: BrowserName
    installed: bool = False
    install_in_progress: bool = False
    executable_path: Optional[str] = None
    last_error: Optional[str] = None


class BrowserInstallUpdate(BaseModel):
    browser: BrowserName
    phase: InstallPhase
    progress: Optional[int] = None  # 0-100 when known
    message: str = ""
    timestamp: str = Field(default_factory=now_iso)
