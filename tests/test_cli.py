"""Tests for the command line interface."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from steprun.browser.runtime import BrowserRuntimeManager
from steprun.cli import cli
from steprun.models.events import BrowserInstallState
from steprun.storage.store import Store

STORE_PATH = Path(".steprun") / "store.json"


@pytest.fixture
def runner():
    return CliRunner(env={"ANTHROPIC_API_KEY": None})


def _stored():
    return Store(STORE_PATH)


def _add_project(runner):
    result = runner.invoke(cli, ["project", "add", "Shop", "https://example.com", "--meta", "team=web"])
    assert result.exit_code == 0, result.output
    return _stored().list_projects()[0]


def _add_test(runner, project_id, *steps):
    args = ["test", "add", project_id, "Login"]
    for step in steps:
        args += ["-s", step]
    result = runner.invoke(cli, args)
    assert result.exit_code == 0, result.output
    return _stored().list_test_cases(project_id)[0]


class TestInit:

    def test_creates_config(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["init", "--browser", "firefox", "--timeout", "20"])
            assert result.exit_code == 0
            data = json.loads(Path("steprun.json").read_text())
            assert data["default_browser"] == "firefox"
            assert data["step_timeout_seconds"] == 20

    def test_sample_seeded_once(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["init", "--sample"])
            assert result.exit_code == 0, result.output
            assert "Created sample test" in result.output

            result = runner.invoke(cli, ["init", "--sample"], input="n\n")
            assert result.exit_code == 0, result.output
            assert "Found existing sample test" in result.output
            projects = _stored().list_projects()
            assert [p.name for p in projects] == ["Sample QA Project"]
            assert len(_stored().list_test_cases(projects[0].id)) == 1


class TestParse:

    def test_strict(self, runner):
        result = runner.invoke(cli, ["parse", 'Click "Login" after 2s'])
        assert result.exit_code == 0
        assert "click" in result.output
        assert "strict" in result.output

    def test_empty(self, runner):
        result = runner.invoke(cli, ["parse", "   "])
        assert result.exit_code == 1
        assert "Step cannot be empty." in result.output


class TestProjectsAndTests:

    def test_project_add_and_list(self, runner):
        with runner.isolated_filesystem():
            project = _add_project(runner)
            assert project.metadata == {"team": "web"}

            result = runner.invoke(cli, ["project", "list"])
            assert result.exit_code == 0
            assert "Shop" in result.output

    def test_project_add_bad_url(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["project", "add", "Shop", "example.com"])
            assert result.exit_code == 1
            assert "Base URL must be" in result.output

    def test_test_add_and_show(self, runner):
        with runner.isolated_filesystem():
            project = _add_project(runner)
            tc = _add_test(runner, project.id, 'Click "Login"', "Expect Welcome")

            result = runner.invoke(cli, ["test", "show", tc.id])
            assert result.exit_code == 0
            assert '1. Click "Login"' in result.output
            assert "2. Expect Welcome" in result.output

    def test_test_add_from_file(self, runner):
        with runner.isolated_filesystem():
            project = _add_project(runner)
            Path("steps.txt").write_text('Go to "/login"\n\nClick "Sign in"\n')
            result = runner.invoke(cli, ["test", "add", project.id, "From file", "--steps-file", "steps.txt"])
            assert result.exit_code == 0
            tc = _stored().list_test_cases(project.id)[0]
            assert [s.raw_text for s in _stored().list_steps(tc.id)] == ['Go to "/login"', 'Click "Sign in"']

    def test_delete(self, runner):
        with runner.isolated_filesystem():
            project = _add_project(runner)
            tc = _add_test(runner, project.id, 'Click "A"')
            assert runner.invoke(cli, ["test", "delete", tc.id]).exit_code == 0
            assert runner.invoke(cli, ["project", "delete", project.id]).exit_code == 0
            assert _stored().list_projects() == []


class TestRun:

    def test_unknown_test_case(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["run", "tc_missing"])
            assert result.exit_code == 1
            assert "Test case not found." in result.output

    def test_run_passes(self, runner, mock_page):
        """Test a run streams step events and reports the final status."""
        context = MagicMock()
        context.new_page = AsyncMock(return_value=mock_page)
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        browser.close = AsyncMock()
        manager = MagicMock()
        manager.__aenter__ = AsyncMock(return_value=MagicMock())
        manager.__aexit__ = AsyncMock(return_value=False)

        with runner.isolated_filesystem():
            project = _add_project(runner)
            tc = _add_test(runner, project.id, 'Click "Login"')
            with patch.object(BrowserRuntimeManager, "ensure_installed",
                              AsyncMock(return_value=BrowserInstallState(browser="chromium", installed=True))), \
                 patch.object(BrowserRuntimeManager, "launch", AsyncMock(return_value=browser)), \
                 patch("steprun.executor.engine.async_playwright", return_value=manager), \
                 patch("steprun.executor.engine.run_action", AsyncMock()):
                result = runner.invoke(cli, ["run", tc.id])

            assert result.exit_code == 0, result.output
            assert "step 1: passed" in result.output
            runs = _stored().list_runs(tc.id)
            assert [r.status for r in runs] == ["passed"]

            history = runner.invoke(cli, ["history", tc.id])
            assert history.exit_code == 0
            assert "passed" in history.output

            results = runner.invoke(cli, ["results", runs[0].id])
            assert results.exit_code == 0
            assert f"Run {runs[0].id}: passed" in results.output

    def test_history_empty(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["history", "tc_any"])
            assert "No runs yet." in result.output


class TestAssist:

    def test_suggest_template(self, runner):
        with runner.isolated_filesystem():
            project = _add_project(runner)
            result = runner.invoke(cli, ["suggest", project.id, "Search works"])
            assert result.exit_code == 0
            assert "Expect Search works" in result.output

    def test_bug_report_unknown_run(self, runner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["bug-report", "run_missing"])
            assert result.exit_code == 1
            assert "Run not found." in result.output


class TestBrowsers:

    def test_status_table(self, runner):
        with runner.isolated_filesystem():
            with patch("steprun.browser.runtime.resolve_executable_path", AsyncMock(return_value=None)):
                result = runner.invoke(cli, ["browsers"])
            assert result.exit_code == 0
            for name in ("chromium", "firefox", "webkit"):
                assert name in result.output
