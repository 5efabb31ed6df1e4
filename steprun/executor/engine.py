"""Run engine — drives one test case run against a live browser session."""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import async_playwright
from pydantic import ValidationError as PydanticValidationError

from steprun.browser.runtime import BrowserRuntimeManager
from steprun.errors import NotFoundError, RunAlreadyActiveError, ValidationError
from steprun.models.actions import ParsedAction, action_from_json
from steprun.models.config import RunnerConfig
from steprun.models.events import RunUpdateEvent
from steprun.models.records import (
    ActiveRunContext,
    Project,
    Run,
    Step,
    StepResult,
)
from steprun.models.results import CancelOutcome
from steprun.parser.step_parser import parse_step
from steprun.storage.store import Store

from .action_runner import describe_step_error, run_action, step_timeout_for
from .artifact_store import ArtifactStore
from .event_bus import EventBus
from .run_registry import RunRegistry

logger = logging.getLogger(__name__)

NO_STEPS_MESSAGE = "Test case has no steps. Add at least one step before running."
NO_ACTIVE_RUN_MESSAGE = "No active run to cancel."


class RunEngine:
    """Executes runs one at a time.

    ``start`` validates, makes sure the browser engine is installed, claims
    the registry slot and returns the new Run while the steps execute in a
    background task. Progress is pushed on ``events`` and every change is
    written to the store first, so ``status`` always agrees with the last
    event.
    """

    def __init__(
        self,
        config: RunnerConfig,
        store: Store,
        registry: RunRegistry,
        runtime: BrowserRuntimeManager,
        artifacts: ArtifactStore,
        events: EventBus | None = None,
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.runtime = runtime
        self.artifacts = artifacts
        self.events = events or EventBus("run-updates")
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancel_requests: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self, test_case_id: str, browser: str | None = None) -> Run:
        browser = browser or self.config.default_browser
        if self.registry.is_running():
            raise RunAlreadyActiveError()

        test_case = self.store.get_test_case(test_case_id)
        project = self.store.get_project(test_case.project_id)
        steps = self.store.list_steps(test_case_id)
        if not steps:
            raise ValidationError(NO_STEPS_MESSAGE)

        await self.runtime.ensure_installed(browser)

        run = Run(test_case_id=test_case_id, browser=browser)
        context = ActiveRunContext(run_id=run.id, project_id=project.id, test_case_id=test_case_id)
        if not self.registry.try_activate(context):
            raise RunAlreadyActiveError()

        try:
            run.transition("running")
            self.store.save_run(run)
            cancel_event = asyncio.Event()
            self._cancel_requests[run.id] = cancel_event
            self._emit(
                run.id, "run-started", run_status="running",
                message=f"Running {len(steps)} step(s) for {test_case.title}.",
            )
            task = asyncio.get_running_loop().create_task(
                self._execute_run(run, project, steps, cancel_event),
                name=f"steprun-{run.id}",
            )
        except Exception:
            self._cancel_requests.pop(run.id, None)
            self.registry.clear(run.id)
            raise
        self._tasks[run.id] = task

        logger.info("Run %s started: test case %s on %s (%d steps)",
                    run.id, test_case_id, browser, len(steps))
        return run

    def cancel(self, run_id: str) -> CancelOutcome:
        """Request cooperative cancellation; returns once the request is accepted."""
        active = self.registry.active_context()
        event = self._cancel_requests.get(run_id)
        if active is None or active.run_id != run_id or event is None:
            return CancelOutcome(run_id=run_id, accepted=False, message=NO_ACTIVE_RUN_MESSAGE)
        if event.is_set():
            return CancelOutcome(run_id=run_id, accepted=True, message="Cancellation already requested.")
        event.set()
        logger.info("Cancellation requested for run %s", run_id)
        return CancelOutcome(run_id=run_id, accepted=True, message="Cancellation requested.")

    def status(self, run_id: str) -> Run:
        run = self.store.get_run(run_id)
        if run is None:
            raise NotFoundError("Run not found.")
        return run

    def history(self, test_case_id: str) -> list[Run]:
        return self.store.list_runs(test_case_id)

    def step_results(self, run_id: str) -> list[StepResult]:
        return self.store.list_step_results(run_id)

    async def wait(self, run_id: str) -> Run:
        """Wait for a run's background task to finish and return the final Run."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.status(run_id)

    async def shutdown(self) -> None:
        """Cancel any run still executing (used on process exit)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_run(
        self, run: Run, project: Project, steps: list[Step], cancel_event: asyncio.Event,
    ) -> None:
        aborted = False
        try:
            async with async_playwright() as p:
                browser = await self.runtime.launch(p, run.browser, headless=self.config.headless)
                try:
                    context = await browser.new_context(viewport={
                        "width": self.config.viewport.width,
                        "height": self.config.viewport.height,
                    })
                    page = await context.new_page()
                    await page.goto(
                        project.base_url, wait_until="domcontentloaded",
                        timeout=self.config.step_timeout_seconds * 1000,
                    )
                    await self._run_steps(run, project, steps, page, cancel_event)
                finally:
                    try:
                        await browser.close()
                    except Exception as e:
                        logger.debug("Browser close failed for run %s: %s", run.id, e)
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        except Exception as e:
            logger.error("Run %s aborted: %s", run.id, e)
            aborted = True
            if not cancel_event.is_set():
                self._record_fatal(run, steps, describe_step_error(e, run.browser))
        finally:
            self._finalize(run, cancel_event, aborted)

    async def _run_steps(
        self, run: Run, project: Project, steps: list[Step], page, cancel_event: asyncio.Event,
    ) -> None:
        timeout_s = self.config.step_timeout_seconds
        continue_on_failure = self.config.continue_on_failure

        for step in steps:
            if cancel_event.is_set():
                logger.info("Run %s: cancellation observed before step %d", run.id, step.order)
                break

            action, error_text = self._resolve_action(step)
            result = StepResult(run_id=run.id, step_id=step.id, step_order=step.order)
            self.store.save_step_result(result)
            self._emit(run.id, "step-started", step_id=step.id, step_order=step.order,
                       step_status="pending")
            logger.debug("Run %s: step %d/%d: %s", run.id, step.order, len(steps), step.raw_text)

            if action is not None:
                try:
                    await asyncio.wait_for(
                        run_action(page, action, timeout=timeout_s * 1000, base_url=project.base_url),
                        timeout=step_timeout_for(action, timeout_s),
                    )
                except Exception as e:
                    error_text = describe_step_error(e, run.browser)

            result.screenshot_path = await self.artifacts.capture(page, run.id, step.id, step.order)
            if cancel_event.is_set():
                result.status = "cancelled"
            elif error_text:
                result.status = "failed"
                result.error_text = error_text
            else:
                result.status = "passed"
            self.store.save_step_result(result)
            self._emit(
                run.id, "step-finished", step_id=step.id, step_order=step.order,
                step_status=result.status, step_result=result, message=result.error_text,
            )
            logger.debug("Run %s: step %d %s", run.id, step.order, result.status.upper())

            if result.status == "cancelled":
                break
            if result.status == "failed" and not continue_on_failure:
                logger.info("Run %s: stopping after failed step %d", run.id, step.order)
                break

    def _resolve_action(self, step: Step) -> tuple[ParsedAction | None, str | None]:
        """Use the stored parsed action when valid, otherwise re-parse the raw text."""
        if step.parsed_action_json:
            try:
                return action_from_json(step.parsed_action_json), None
            except PydanticValidationError:
                logger.debug("Stored action for step %s is invalid, re-parsing", step.id)
        parsed = parse_step(step.raw_text)
        if not parsed.ok:
            return None, f"Step {step.order} could not be parsed: {parsed.error}"
        return parsed.action, None

    def _record_fatal(self, run: Run, steps: list[Step], error_text: str) -> None:
        """Attach a fatal error to the pending step, or to the first step if none began."""
        results = self.store.list_step_results(run.id)
        pending = [r for r in results if r.status == "pending"]
        if not results:
            pending = [StepResult(run_id=run.id, step_id=steps[0].id, step_order=steps[0].order)]
        for result in pending:
            result.status = "failed"
            result.error_text = error_text
            self.store.save_step_result(result)
            self._emit(
                run.id, "step-finished", step_id=result.step_id, step_order=result.step_order,
                step_status="failed", step_result=result, message=error_text,
            )

    def _finalize(self, run: Run, cancel_event: asyncio.Event, aborted: bool = False) -> None:
        try:
            if cancel_event.is_set():
                final = "cancelled"
                # A step interrupted by task cancellation never recorded its outcome
                for result in self.store.list_step_results(run.id):
                    if result.status == "pending":
                        result.status = "cancelled"
                        self.store.save_step_result(result)
            elif aborted or any(r.status == "failed" for r in self.store.list_step_results(run.id)):
                final = "failed"
            else:
                final = "passed"
            run.transition(final)
            self.store.save_run(run)
        finally:
            self.registry.clear(run.id)
            self._cancel_requests.pop(run.id, None)
            self._tasks.pop(run.id, None)

        logger.info("Run %s finished: %s", run.id, run.status.upper())
        self._emit(run.id, "run-finished", run_status=run.status, message=_finish_message(run.status))

    def _emit(self, run_id: str, event_type: str, **fields) -> None:
        self.events.publish(RunUpdateEvent(run_id=run_id, type=event_type, **fields))


def _finish_message(status: str) -> str:
    return {
        "passed": "Run passed.",
        "failed": "Run failed.",
        "cancelled": "Run cancelled.",
    }.get(status, f"Run {status}.")
