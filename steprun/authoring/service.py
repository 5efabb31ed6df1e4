"""Authoring service — validated create/update/delete of projects and test cases."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from pydantic import BaseModel

from steprun.errors import ValidationError
from steprun.executor.run_registry import RunRegistry
from steprun.models.actions import action_to_json
from steprun.models.records import Project, Step, TestCase, now_iso
from steprun.parser.step_parser import parse_step
from steprun.storage.store import Store

logger = logging.getLogger(__name__)

SAMPLE_PROJECT = {
    "name": "Sample QA Project",
    "base_url": "https://example.com",
    "env_label": "sample",
    "metadata": {"seedTag": "sample-local"},
}
SAMPLE_TEST_TITLE = "Sample login flow"
SAMPLE_TEST_STEPS = [
    'Enter "qa.user@example.com" in "Email" field',
    'Enter "password123" in "Password" field',
    'Click "Login"',
    "Expect dashboard is visible",
]


class SampleSeed(BaseModel):
    """Outcome of seeding the demo project; flags say what was newly created."""

    project: Project
    test_case: TestCase
    created_project: bool
    created_test_case: bool


def validate_base_url(url: str) -> str:
    """Return the trimmed URL, or raise if it is not absolute http(s)."""
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Base URL must be an absolute http(s) URL.")
    return url


def build_steps(test_case_id: str, lines: list[str]) -> list[Step]:
    """Parse every non-blank line into a Step with dense 1-based order."""
    texts = [line.strip() for line in lines if line and line.strip()]
    steps: list[Step] = []
    for index, text in enumerate(texts, start=1):
        parsed = parse_step(text)
        if not parsed.ok:
            raise ValidationError(f"Step {index}: {parsed.error}")
        steps.append(Step(
            test_case_id=test_case_id,
            order=index,
            raw_text=text,
            parsed_action_json=action_to_json(parsed.action),
        ))
    return steps


class AuthoringService:
    def __init__(self, store: Store, registry: RunRegistry):
        self.store = store
        self.registry = registry

    # Projects

    def create_project(
        self, name: str, base_url: str, env_label: str = "default",
        metadata: dict[str, str] | None = None,
    ) -> Project:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Project name is required.")
        project = Project(
            name=name,
            base_url=validate_base_url(base_url),
            env_label=(env_label or "").strip() or "default",
            metadata=dict(metadata or {}),
        )
        self.store.save_project(project)
        logger.info("Created project %s (%s)", project.id, project.name)
        return project

    def update_project(
        self, project_id: str, name: str | None = None, base_url: str | None = None,
        env_label: str | None = None, metadata: dict[str, str] | None = None,
    ) -> Project:
        project = self.store.get_project(project_id)
        if name is not None:
            if not name.strip():
                raise ValidationError("Project name is required.")
            project.name = name.strip()
        if base_url is not None:
            project.base_url = validate_base_url(base_url)
        if env_label is not None:
            project.env_label = env_label.strip() or "default"
        if metadata is not None:
            project.metadata = dict(metadata)
        return self.store.save_project(project)

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    def delete_project(self, project_id: str) -> None:
        self.store.get_project(project_id)
        self.registry.check_project_deletable(project_id)
        self.store.delete_project(project_id)
        logger.info("Deleted project %s", project_id)

    # Test cases

    def create_test_case(self, project_id: str, title: str, steps: list[str]) -> tuple[TestCase, list[Step]]:
        self.store.get_project(project_id)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Test case title is required.")
        test_case = TestCase(project_id=project_id, title=title)
        built = build_steps(test_case.id, steps)
        self.store.save_test_case(test_case, built)
        logger.info("Created test case %s with %d steps", test_case.id, len(built))
        return test_case, built

    def update_test_case(
        self, test_case_id: str, title: str | None = None, steps: list[str] | None = None,
    ) -> tuple[TestCase, list[Step]]:
        test_case = self.store.get_test_case(test_case_id)
        if title is not None:
            if not title.strip():
                raise ValidationError("Test case title is required.")
            test_case.title = title.strip()
        built = build_steps(test_case.id, steps) if steps is not None else None
        test_case.updated_at = now_iso()
        self.store.save_test_case(test_case, built)
        return test_case, self.store.list_steps(test_case.id)

    def list_test_cases(self, project_id: str) -> list[TestCase]:
        self.store.get_project(project_id)
        return self.store.list_test_cases(project_id)

    def get_test_case(self, test_case_id: str) -> tuple[TestCase, list[Step]]:
        return self.store.get_test_case(test_case_id), self.store.list_steps(test_case_id)

    def delete_test_case(self, test_case_id: str) -> None:
        self.store.get_test_case(test_case_id)
        self.registry.check_test_case_deletable(test_case_id)
        self.store.delete_test_case(test_case_id)
        logger.info("Deleted test case %s", test_case_id)

    # Sample data

    def seed_sample_project(self) -> SampleSeed:
        """Create the demo project and its login test unless they already exist."""
        project = next(
            (p for p in self.store.list_projects()
             if p.name == SAMPLE_PROJECT["name"]
             and p.base_url == SAMPLE_PROJECT["base_url"]
             and p.env_label == SAMPLE_PROJECT["env_label"]),
            None,
        )
        created_project = project is None
        if project is None:
            project = self.create_project(**SAMPLE_PROJECT)

        test_case = next(
            (tc for tc in self.store.list_test_cases(project.id) if tc.title == SAMPLE_TEST_TITLE),
            None,
        )
        created_test_case = test_case is None
        if test_case is None:
            test_case, _ = self.create_test_case(project.id, SAMPLE_TEST_TITLE, SAMPLE_TEST_STEPS)

        return SampleSeed(
            project=project,
            test_case=test_case,
            created_project=created_project,
            created_test_case=created_test_case,
        )
