"""System prompts for AI step suggestions."""

STEPS_SYSTEM_PROMPT = """You are a QA automation assistant. Test steps are written in a small language that supports only these four shapes:

1) Enter "<value>" in "<field>" field
2) Click "<text>"            (optionally followed by: after <N>s)
3) Go to "<path-or-url>"
4) Expect <assertion>        (optionally followed by: within <N>s)

Write steps a tester could run against the real site. Use visible labels and texts, not CSS selectors.

Return strict JSON with this shape and nothing else:
{"steps": [{"rawText": string, "reason": string}]}"""


def build_steps_prompt(title: str, base_url: str, metadata: dict[str, str] | None = None) -> str:
    """Build the user message for the step suggestion call."""
    lines = [f"Test title: {title}", f"Base URL: {base_url}"]
    if metadata:
        lines.append("Project metadata:")
        lines.extend(f"- {k}: {v}" for k, v in sorted(metadata.items()))
    lines.append("\nSuggest the steps for this test.")
    return "\n".join(lines)
