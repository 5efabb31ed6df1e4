"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest
from PIL import Image

from steprun.executor.artifact_store import ArtifactStore
from steprun.executor.event_bus import EventBus
from steprun.executor.run_registry import RunRegistry
from steprun.models.actions import action_to_json
from steprun.models.config import RunnerConfig
from steprun.models.events import BrowserInstallState
from steprun.models.records import Project, Step, TestCase
from steprun.parser.step_parser import parse_step
from steprun.storage.store import Store


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    """Create a runner configuration rooted in a temp directory."""
    return RunnerConfig(data_dir=str(tmp_path / ".steprun"), step_timeout_seconds=5)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def store() -> Store:
    """In-memory store."""
    return Store()


@pytest.fixture
def registry() -> RunRegistry:
    return RunRegistry()


@pytest.fixture
def run_events() -> EventBus:
    return EventBus("run-updates")


@pytest.fixture
def artifact_store(tmp_path: Path) -> ArtifactStore:
    """Artifact store with a small thumbnail size."""
    return ArtifactStore(tmp_path / "artifacts", thumbnail_size=(64, 40))


@pytest.fixture
def mock_runtime() -> Mock:
    """Browser runtime manager double whose engine is already installed."""
    runtime = Mock()
    runtime.ensure_installed = AsyncMock(
        return_value=BrowserInstallState(browser="chromium", installed=True)
    )
    runtime.launch = AsyncMock()
    return runtime


# ============================================================================
# Record Fixtures
# ============================================================================


@pytest.fixture
def project(store: Store) -> Project:
    """A saved project pointing at example.com."""
    p = Project(name="Shop", base_url="https://example.com", env_label="staging")
    store.save_project(p)
    return p


def add_test_case(store: Store, project: Project, lines: list[str], title: str = "Login flow") -> TestCase:
    """Save a test case with parsed steps and return it."""
    tc = TestCase(project_id=project.id, title=title)
    steps = [
        Step(
            test_case_id=tc.id,
            order=i,
            raw_text=line,
            parsed_action_json=action_to_json(parse_step(line).action),
        )
        for i, line in enumerate(lines, start=1)
    ]
    store.save_test_case(tc, steps)
    return tc


# ============================================================================
# Mock Fixtures
# ============================================================================


def make_locator(fail: bool = False) -> MagicMock:
    """Create a locator double whose ``.first`` actions succeed or raise."""
    locator = MagicMock()
    error = Exception("Timeout 3000ms exceeded") if fail else None
    locator.first.fill = AsyncMock(side_effect=error)
    locator.first.click = AsyncMock(side_effect=error)
    locator.first.wait_for = AsyncMock(side_effect=error)
    return locator


@pytest.fixture
def mock_page() -> MagicMock:
    """Create a mock Playwright page; ``get_by_*`` return working locators."""
    page = MagicMock()
    page.url = "https://example.com/home"
    page.goto = AsyncMock()
    page.screenshot = AsyncMock()
    page.keyboard.type = AsyncMock()
    page.get_by_label.return_value = make_locator()
    page.get_by_role.return_value = make_locator()
    page.get_by_placeholder.return_value = make_locator()
    page.get_by_text.return_value = make_locator()
    return page


# ============================================================================
# Helper Functions
# ============================================================================


def create_screenshot(path: Path, size: tuple[int, int] = (400, 300)) -> Path:
    """Write a real PNG image for testing."""
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, (200, 30, 30)).save(path, format="PNG")
    return path
