"""Persistent records: projects, test cases, steps, runs and step results."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

from steprun.models.config import BrowserName

RunStatus = Literal["queued", "running", "passed", "failed", "cancelled"]
StepStatus = Literal["pending", "passed", "failed", "cancelled"]

TERMINAL_RUN_STATUSES: frozenset[str] = frozenset({"passed", "failed", "cancelled"})

# Allowed run status transitions; terminal states have no exits.
RUN_TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running", "failed", "cancelled"}),
    "running": frozenset({"passed", "failed", "cancelled"}),
    "passed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Project(BaseModel):
    id: str = Field(default_factory=lambda: new_id("proj"))
    name: str
    base_url: str
    env_label: str = "default"
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=now_iso)


class TestCase(BaseModel):
    __test__ = False  # not a pytest class

    id: str = Field(default_factory=lambda: new_id("tc"))
    project_id: str
    title: str
    created_at: str = Field(default_factory=now_iso)
    updated_at: str = Field(default_factory=now_iso)


class Step(BaseModel):
    id: str = Field(default_factory=lambda: new_id("step"))
    test_case_id: str
    order: int  # dense, 1-based within a test case
    raw_text: str
    parsed_action_json: Optional[str] = None


class Run(BaseModel):
    id: str = Field(default_factory=lambda: new_id("run"))
    test_case_id: str
    browser: BrowserName
    status: RunStatus = "queued"
    started_at: str = Field(default_factory=now_iso)
    ended_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def transition(self, status: RunStatus) -> None:
        """Move to ``status``; ``ended_at`` is stamped on the terminal move."""
        if status not in RUN_TRANSITIONS[self.status]:
            raise ValueError(f"Invalid run transition {self.status} -> {status}")
        self.status = status
        if status in TERMINAL_RUN_STATUSES:
            self.ended_at = now_iso()


class StepResult(BaseModel):
    id: str = Field(default_factory=lambda: new_id("sr"))
    run_id: str
    step_id: str
    step_order: int
    status: StepStatus = "pending"
    error_text: Optional[str] = None
    screenshot_path: Optional[str] = None


class ActiveRunContext(BaseModel):
    run_id: str
    project_id: str
    test_case_id: str
