"""Orchestrator — wires the components and exposes the application calls."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from steprun.ai.assist import StepAssistant
from steprun.ai.client import AIClient
from steprun.authoring.service import AuthoringService
from steprun.browser.runtime import BrowserRuntimeManager
from steprun.errors import StepRunError
from steprun.executor.artifact_store import ArtifactStore
from steprun.executor.engine import RunEngine
from steprun.executor.event_bus import EventBus
from steprun.executor.run_registry import RunRegistry
from steprun.models.config import RunnerConfig
from steprun.models.results import ApiResult
from steprun.parser.step_parser import parse_step
from steprun.storage.store import Store

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns one instance of every component and turns their errors into ApiResults.

    Every public call returns an :class:`ApiResult`: typed errors keep their
    code, anything unexpected is logged and reported as ``internal``.
    """

    def __init__(self, config: RunnerConfig, ai_client: AIClient | None = None):
        self.config = config
        config.data_path.mkdir(parents=True, exist_ok=True)

        self.ai_client = ai_client
        if self.ai_client is None:
            try:
                self.ai_client = AIClient(
                    model=config.ai_model,
                    max_tokens=config.ai_max_tokens,
                    debug_dir=config.debug_path,
                )
            except EnvironmentError as e:
                logger.warning("AI client unavailable: %s. Using template fallbacks.", e)

        self.store = Store(config.store_path)
        self.registry = RunRegistry()
        self.run_events = EventBus("run-updates")
        self.install_events = EventBus("browser-install")
        self.runtime = BrowserRuntimeManager(self.install_events)
        self.artifacts = ArtifactStore(
            config.artifacts_path,
            thumbnail_size=(config.thumbnail_max_width, config.thumbnail_max_height),
        )
        self.engine = RunEngine(
            config, self.store, self.registry, self.runtime, self.artifacts, self.run_events,
        )
        self.authoring = AuthoringService(self.store, self.registry)
        self.assistant = StepAssistant(self.store, self.ai_client)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def run_start(self, test_case_id: str, browser: str | None = None) -> ApiResult:
        return await self._wrap_async(lambda: self.engine.start(test_case_id, browser))

    def run_cancel(self, run_id: str) -> ApiResult:
        return self._wrap(lambda: self.engine.cancel(run_id))

    def run_status(self, run_id: str) -> ApiResult:
        return self._wrap(lambda: self.engine.status(run_id))

    def run_history(self, test_case_id: str) -> ApiResult:
        return self._wrap(lambda: self.engine.history(test_case_id))

    def step_results(self, run_id: str) -> ApiResult:
        return self._wrap(lambda: self.engine.step_results(run_id))

    async def run_wait(self, run_id: str) -> ApiResult:
        return await self._wrap_async(lambda: self.engine.wait(run_id))

    def active_run(self) -> ApiResult:
        return self._wrap(self.registry.active_context)

    # ------------------------------------------------------------------
    # Browser runtime
    # ------------------------------------------------------------------

    async def run_browser_status(self, browser: str | None = None) -> ApiResult:
        if browser is None:
            return await self._wrap_async(self.runtime.status)
        return await self._wrap_async(lambda: self.runtime.get_status(browser))

    async def run_install_browser(self, browser: str) -> ApiResult:
        return await self._wrap_async(lambda: self.runtime.install(browser))

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def screenshot_data_url(self, path: str, variant: str = "full") -> ApiResult:
        return self._wrap(lambda: self.artifacts.read_as_data_url(path, variant))

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    def parse(self, raw_text: str) -> ApiResult:
        return ApiResult.success(parse_step(raw_text))

    def project_create(self, name: str, base_url: str, env_label: str = "default",
                       metadata: dict[str, str] | None = None) -> ApiResult:
        return self._wrap(lambda: self.authoring.create_project(name, base_url, env_label, metadata))

    def project_update(self, project_id: str, **changes) -> ApiResult:
        return self._wrap(lambda: self.authoring.update_project(project_id, **changes))

    def project_list(self) -> ApiResult:
        return self._wrap(self.authoring.list_projects)

    def project_delete(self, project_id: str) -> ApiResult:
        return self._wrap(lambda: self.authoring.delete_project(project_id))

    def test_case_create(self, project_id: str, title: str, steps: list[str]) -> ApiResult:
        return self._wrap(lambda: self.authoring.create_test_case(project_id, title, steps))

    def test_case_update(self, test_case_id: str, title: str | None = None,
                         steps: list[str] | None = None) -> ApiResult:
        return self._wrap(lambda: self.authoring.update_test_case(test_case_id, title, steps))

    def test_case_list(self, project_id: str) -> ApiResult:
        return self._wrap(lambda: self.authoring.list_test_cases(project_id))

    def test_case_get(self, test_case_id: str) -> ApiResult:
        return self._wrap(lambda: self.authoring.get_test_case(test_case_id))

    def test_case_delete(self, test_case_id: str) -> ApiResult:
        return self._wrap(lambda: self.authoring.delete_test_case(test_case_id))

    def seed_sample(self) -> ApiResult:
        return self._wrap(self.authoring.seed_sample_project)

    # ------------------------------------------------------------------
    # AI assistance
    # ------------------------------------------------------------------

    def suggest_steps(self, project_id: str, title: str) -> ApiResult:
        def _suggest():
            project = self.store.get_project(project_id)
            return self.assistant.generate_steps(title, project.base_url, project.metadata)
        return self._wrap(_suggest)

    def bug_report(self, run_id: str) -> ApiResult:
        return self._wrap(lambda: self.assistant.draft_bug_report(run_id))

    async def shutdown(self) -> None:
        await self.engine.shutdown()

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _wrap(call: Callable[[], Any]) -> ApiResult:
        try:
            return ApiResult.success(call())
        except StepRunError as e:
            return ApiResult.failure(e.code, e.message)
        except Exception as e:
            logger.exception("Unexpected error")
            return ApiResult.failure("internal", str(e) or e.__class__.__name__)

    @staticmethod
    async def _wrap_async(call: Callable[[], Awaitable[Any]]) -> ApiResult:
        try:
            return ApiResult.success(await call())
        except StepRunError as e:
            return ApiResult.failure(e.code, e.message)
        except Exception as e:
            logger.exception("Unexpected error")
            return ApiResult.failure("internal", str(e) or e.__class__.__name__)
