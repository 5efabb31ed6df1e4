"""Tests for the orchestrator's result envelopes."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import create_screenshot
from steprun.errors import BrowserInstallError
from steprun.models.events import BrowserInstallState
from steprun.models.records import ActiveRunContext
from steprun.orchestrator import Orchestrator


@pytest.fixture
def orchestrator(runner_config, monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    orch = Orchestrator(runner_config)
    orch.runtime.ensure_installed = AsyncMock(
        return_value=BrowserInstallState(browser="chromium", installed=True)
    )
    return orch


@pytest.fixture
def saved_case_id(orchestrator):
    project = orchestrator.project_create("Shop", "https://example.com").data
    tc, _ = orchestrator.test_case_create(project.id, "Login", ['Click "Login"', "Expect Welcome"]).data
    return tc.id


class TestWiring:

    def test_ai_optional(self, orchestrator):
        """Test the orchestrator starts without an API key."""
        assert orchestrator.ai_client is None

    def test_data_dir_created(self, orchestrator, runner_config):
        assert runner_config.data_path.is_dir()
        assert runner_config.artifacts_path.is_dir()

    def test_parse_passthrough(self, orchestrator):
        result = orchestrator.parse('Click "Login"')
        assert result.ok
        assert result.data.source == "strict"


class TestErrorMapping:

    def test_validation(self, orchestrator):
        result = orchestrator.project_create("", "https://example.com")
        assert not result.ok
        assert result.error.code == "validation"

    def test_not_found(self, orchestrator):
        result = orchestrator.run_status("run_missing")
        assert result.error.code == "not_found"
        assert result.error.message == "Run not found."

    def test_unexpected_error_is_internal(self, orchestrator):
        with patch.object(orchestrator.store, "list_projects", side_effect=RuntimeError("db gone")):
            result = orchestrator.project_list()
        assert result.error.code == "internal"
        assert result.error.message == "db gone"

    def test_artifact_outside_root(self, orchestrator, tmp_path):
        outside = create_screenshot(tmp_path / "secret.png")
        result = orchestrator.screenshot_data_url(str(outside), "thumbnail")
        assert result.error.code == "artifact"

    def test_artifact_inside_root(self, orchestrator):
        shot = create_screenshot(orchestrator.artifacts.screenshot_path("run_1", "s", 1))
        result = orchestrator.screenshot_data_url(str(shot), "thumbnail")
        assert result.ok
        assert result.data.startswith("data:image/jpeg;base64,")

    def test_delete_blocked(self, orchestrator, saved_case_id):
        project_id = orchestrator.store.get_test_case(saved_case_id).project_id
        orchestrator.registry.try_activate(
            ActiveRunContext(run_id="run_1", project_id=project_id, test_case_id=saved_case_id)
        )
        assert orchestrator.test_case_delete(saved_case_id).error.code == "run_active"
        assert orchestrator.project_delete(project_id).error.code == "run_active"

    def test_cancel_without_run_is_ok(self, orchestrator):
        result = orchestrator.run_cancel("run_missing")
        assert result.ok
        assert result.data.accepted is False


@pytest.mark.asyncio
class TestRuns:

    async def test_start_unknown(self, orchestrator):
        result = await orchestrator.run_start("tc_missing")
        assert result.error.code == "not_found"

    async def test_install_failure(self, orchestrator, saved_case_id):
        orchestrator.runtime.ensure_installed = AsyncMock(side_effect=BrowserInstallError("offline"))
        result = await orchestrator.run_start(saved_case_id, "webkit")
        assert result.error.code == "environment"
        assert result.error.message == "offline"
        assert orchestrator.run_history(saved_case_id).data == []

    async def test_already_active(self, orchestrator, saved_case_id):
        orchestrator.registry.try_activate(
            ActiveRunContext(run_id="run_x", project_id="p", test_case_id="t")
        )
        result = await orchestrator.run_start(saved_case_id)
        assert result.error.code == "already_active"

    async def test_run_to_completion(self, orchestrator, saved_case_id, mock_page):
        """Test a run started through the orchestrator can be observed to the end."""
        context = MagicMock()
        context.new_page = AsyncMock(return_value=mock_page)
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()
        orchestrator.runtime.launch = AsyncMock(return_value=browser)
        manager = MagicMock()
        manager.__aenter__ = AsyncMock(return_value=MagicMock())
        manager.__aexit__ = AsyncMock(return_value=False)

        with patch("steprun.executor.engine.async_playwright", return_value=manager), \
             patch("steprun.executor.engine.run_action", AsyncMock()):
            started = await orchestrator.run_start(saved_case_id)
            assert started.ok
            final = await orchestrator.run_wait(started.data.id)

        assert final.data.status == "passed"
        steps = orchestrator.step_results(started.data.id).data
        assert [r.status for r in steps] == ["passed", "passed"]
        assert orchestrator.active_run().data is None

    async def test_browser_status(self, orchestrator):
        with patch("steprun.browser.runtime.resolve_executable_path", AsyncMock(return_value=None)):
            result = await orchestrator.run_browser_status()
        assert result.ok
        assert len(result.data) == 3

    async def test_browser_status_unsupported(self, orchestrator):
        result = await orchestrator.run_browser_status("safari")
        assert result.error.code == "validation"


class TestAssist:

    def test_suggest_uses_template_without_ai(self, orchestrator, saved_case_id):
        project = orchestrator.project_list().data[0]
        result = orchestrator.suggest_steps(project.id, "Search works")
        assert result.ok
        assert result.data[-1].raw_text == "Expect Search works"

    def test_bug_report_unknown_run(self, orchestrator):
        assert orchestrator.bug_report("run_missing").error.code == "not_found"
