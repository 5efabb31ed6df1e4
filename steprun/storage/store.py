"""JSON-backed store for projects, test cases, steps, runs and step results."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from pydantic import BaseModel, Field

from steprun.errors import NotFoundError
from steprun.models.records import (
    Project,
    Run,
    Step,
    StepResult,
    TestCase,
)

logger = logging.getLogger(__name__)


class StoreData(BaseModel):
    projects: dict[str, Project] = Field(default_factory=dict)
    test_cases: dict[str, TestCase] = Field(default_factory=dict)
    steps: dict[str, Step] = Field(default_factory=dict)
    runs: dict[str, Run] = Field(default_factory=dict)
    step_results: dict[str, StepResult] = Field(default_factory=dict)


class Store:
    """Persistent record store.

    All records live in memory and every mutation rewrites the JSON file
    atomically. ``Store()`` without a path keeps everything in memory.
    Records handed out are copies; callers write changes back explicitly.
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.RLock()
        self._data = self._load()

    def _load(self) -> StoreData:
        if self.path is not None and self.path.exists():
            try:
                with open(self.path) as f:
                    return StoreData(**json.load(f))
            except Exception as e:
                logger.warning("Failed to load store %s: %s. Starting empty.", self.path, e)
        return StoreData()

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(self._data.model_dump(), f, indent=2)
        os.replace(tmp, self.path)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def save_project(self, project: Project) -> Project:
        with self._lock:
            self._data.projects[project.id] = project.model_copy(deep=True)
            self._save()
        return project

    def get_project(self, project_id: str) -> Project:
        with self._lock:
            project = self._data.projects.get(project_id)
            if project is None:
                raise NotFoundError("Project not found.")
            return project.model_copy(deep=True)

    def list_projects(self) -> list[Project]:
        with self._lock:
            projects = [p.model_copy(deep=True) for p in self._data.projects.values()]
        return sorted(projects, key=lambda p: p.created_at)

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            if project_id not in self._data.projects:
                return False
            for tc_id in [t.id for t in self._data.test_cases.values() if t.project_id == project_id]:
                self._drop_test_case(tc_id)
            del self._data.projects[project_id]
            self._save()
        return True

    # ------------------------------------------------------------------
    # Test cases and steps
    # ------------------------------------------------------------------

    def save_test_case(self, test_case: TestCase, steps: list[Step] | None = None) -> TestCase:
        """Insert or update a test case; ``steps`` (if given) replaces its step list."""
        with self._lock:
            self._data.test_cases[test_case.id] = test_case.model_copy(deep=True)
            if steps is not None:
                for step_id in [s.id for s in self._data.steps.values() if s.test_case_id == test_case.id]:
                    del self._data.steps[step_id]
                for step in steps:
                    self._data.steps[step.id] = step.model_copy(deep=True)
            self._save()
        return test_case

    def get_test_case(self, test_case_id: str) -> TestCase:
        with self._lock:
            tc = self._data.test_cases.get(test_case_id)
            if tc is None:
                raise NotFoundError("Test case not found.")
            return tc.model_copy(deep=True)

    def list_test_cases(self, project_id: str) -> list[TestCase]:
        with self._lock:
            cases = [t.model_copy(deep=True) for t in self._data.test_cases.values()
                     if t.project_id == project_id]
        return sorted(cases, key=lambda t: t.updated_at, reverse=True)

    def list_steps(self, test_case_id: str) -> list[Step]:
        """Steps of a test case in ascending order."""
        with self._lock:
            steps = [s.model_copy(deep=True) for s in self._data.steps.values()
                     if s.test_case_id == test_case_id]
        return sorted(steps, key=lambda s: s.order)

    def get_step(self, step_id: str) -> Step:
        with self._lock:
            step = self._data.steps.get(step_id)
            if step is None:
                raise NotFoundError("Step not found.")
            return step.model_copy(deep=True)

    def delete_test_case(self, test_case_id: str) -> bool:
        with self._lock:
            if test_case_id not in self._data.test_cases:
                return False
            self._drop_test_case(test_case_id)
            self._save()
        return True

    def _drop_test_case(self, test_case_id: str) -> None:
        run_ids = {r.id for r in self._data.runs.values() if r.test_case_id == test_case_id}
        for sr_id in [s.id for s in self._data.step_results.values() if s.run_id in run_ids]:
            del self._data.step_results[sr_id]
        for run_id in run_ids:
            del self._data.runs[run_id]
        for step_id in [s.id for s in self._data.steps.values() if s.test_case_id == test_case_id]:
            del self._data.steps[step_id]
        del self._data.test_cases[test_case_id]

    # ------------------------------------------------------------------
    # Runs and step results
    # ------------------------------------------------------------------

    def save_run(self, run: Run) -> Run:
        with self._lock:
            self._data.runs[run.id] = run.model_copy(deep=True)
            self._save()
        return run

    def get_run(self, run_id: str) -> Run | None:
        with self._lock:
            run = self._data.runs.get(run_id)
            return run.model_copy(deep=True) if run else None

    def list_runs(self, test_case_id: str) -> list[Run]:
        """Run history for a test case, newest first."""
        with self._lock:
            runs = [r.model_copy(deep=True) for r in self._data.runs.values()
                    if r.test_case_id == test_case_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    def save_step_result(self, result: StepResult) -> StepResult:
        with self._lock:
            self._data.step_results[result.id] = result.model_copy(deep=True)
            self._save()
        return result

    def list_step_results(self, run_id: str) -> list[StepResult]:
        with self._lock:
            results = [r.model_copy(deep=True) for r in self._data.step_results.values()
                       if r.run_id == run_id]
        return sorted(results, key=lambda r: r.step_order)

