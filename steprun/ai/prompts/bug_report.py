"""System prompts for AI bug report drafting."""

import json

BUG_REPORT_SYSTEM_PROMPT = """You are an expert QA engineer writing a bug report for an issue tracker, based on a failed automated test run.

Be specific: name the failing step and quote its error. Keep the title under 80 characters.

Return strict JSON with this shape and nothing else:
{"title": string, "environment": string, "stepsToReproduce": [string], "expectedResult": string, "actualResult": string, "evidence": [string]}"""


def build_bug_report_prompt(run_context: dict) -> str:
    """Build the user message for the bug report call."""
    return (
        f"## Failed run\n\n```json\n{json.dumps(run_context, indent=2)}\n```\n\n"
        "Draft the bug report."
    )
