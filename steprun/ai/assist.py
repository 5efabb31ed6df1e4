"""Step assistant — AI step suggestions and bug report drafts."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from steprun.errors import NotFoundError, ValidationError
from steprun.parser.step_parser import parse_step
from steprun.storage.store import Store

from .client import AIClient
from .prompts.bug_report import BUG_REPORT_SYSTEM_PROMPT, build_bug_report_prompt
from .prompts.steps import STEPS_SYSTEM_PROMPT, build_steps_prompt

logger = logging.getLogger(__name__)

RISKY_VERBS = ("delete", "remove", "destroy", "purge", "drop", "cancel subscription", "deactivate")


class GeneratedStep(BaseModel):
    raw_text: str
    reason: str = ""
    is_destructive: bool = False


class BugReport(BaseModel):
    title: str
    environment: str
    steps_to_reproduce: list[str] = Field(default_factory=list)
    expected_result: str
    actual_result: str
    evidence: list[str] = Field(default_factory=list)


def is_destructive(raw_text: str) -> bool:
    lowered = raw_text.lower()
    return any(verb in lowered for verb in RISKY_VERBS)


class StepAssistant:
    """Drafts authoring content. Works without an AI client using templates."""

    def __init__(self, store: Store, ai_client: Optional[AIClient] = None):
        self.store = store
        self.ai_client = ai_client

    def generate_steps(
        self, title: str, base_url: str, metadata: dict[str, str] | None = None,
    ) -> list[GeneratedStep]:
        title = title.strip()
        if not title:
            raise ValidationError("Test title is required to suggest steps.")
        if self.ai_client is None:
            return self._template_steps(title)

        data = self.ai_client.complete_json(
            STEPS_SYSTEM_PROMPT, build_steps_prompt(title, base_url, metadata),
        )
        rows = data.get("steps")
        if not isinstance(rows, list):
            raise ValidationError("AI response did not include a valid steps array.")

        generated: list[GeneratedStep] = []
        for row in rows:
            if not isinstance(row, dict) or not isinstance(row.get("rawText"), str):
                continue
            raw_text = row["rawText"].strip()
            if not parse_step(raw_text).ok:
                raise ValidationError(f"AI produced unsupported step: {raw_text!r}")
            reason = str(row.get("reason") or "").strip() or "Generated from title context"
            generated.append(GeneratedStep(
                raw_text=raw_text, reason=reason, is_destructive=is_destructive(raw_text),
            ))
        if not generated:
            raise ValidationError("AI did not return usable steps.")
        logger.info("AI suggested %d steps for '%s'", len(generated), title)
        return generated

    @staticmethod
    def _template_steps(title: str) -> list[GeneratedStep]:
        return [
            GeneratedStep(raw_text='Go to "/"', reason="Start from the project base URL"),
            GeneratedStep(raw_text=f"Expect {title}", reason="Check the page mentions the feature under test"),
        ]

    def draft_bug_report(self, run_id: str) -> BugReport:
        run = self.store.get_run(run_id)
        if run is None:
            raise NotFoundError("Run not found.")
        if run.status != "failed":
            raise ValidationError("Bug reports can only be generated for failed runs.")

        test_case = self.store.get_test_case(run.test_case_id)
        project = self.store.get_project(test_case.project_id)
        results = {r.step_id: r for r in self.store.list_step_results(run.id)}
        outcomes = []
        for step in self.store.list_steps(test_case.id):
            result = results.get(step.id)
            outcomes.append({
                "order": step.order,
                "rawText": step.raw_text,
                "status": result.status if result else "not run",
                "errorText": result.error_text if result else None,
                "screenshotPath": result.screenshot_path if result else None,
            })

        fallback = BugReport(
            title=f"[{project.name}] {test_case.title} fails in {run.browser}",
            environment=f"{project.env_label} | {run.browser} | {project.base_url}",
            steps_to_reproduce=[o["rawText"] for o in outcomes if o["status"] != "not run"],
            expected_result="Flow should complete without errors.",
            actual_result=next(
                (o["errorText"] for o in outcomes if o["status"] == "failed" and o["errorText"]),
                "Run failed without an error message.",
            ),
            evidence=[o["screenshotPath"] for o in outcomes if o["screenshotPath"]],
        )
        if self.ai_client is None:
            return fallback

        context = {
            "project": project.name,
            "baseUrl": project.base_url,
            "environment": project.env_label,
            "browser": run.browser,
            "testTitle": test_case.title,
            "startedAt": run.started_at,
            "endedAt": run.ended_at,
            "steps": outcomes,
        }
        data = self.ai_client.complete_json(BUG_REPORT_SYSTEM_PROMPT, build_bug_report_prompt(context))
        return BugReport(
            title=_string(data.get("title"), fallback.title),
            environment=_string(data.get("environment"), fallback.environment),
            steps_to_reproduce=_strings(data.get("stepsToReproduce"), fallback.steps_to_reproduce),
            expected_result=_string(data.get("expectedResult"), fallback.expected_result),
            actual_result=_string(data.get("actualResult"), fallback.actual_result),
            evidence=_strings(data.get("evidence"), fallback.evidence),
        )


def _string(value, fallback: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else fallback


def _strings(value, fallback: list[str]) -> list[str]:
    if not isinstance(value, list):
        return fallback
    items = [v.strip() for v in value if isinstance(v, str) and v.strip()]
    return items or fallback
