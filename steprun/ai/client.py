"""Claude API client used for step suggestions and bug report drafts."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from pathlib import Path
from typing import Any

import anthropic

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def extract_json_object(text: str) -> dict[str, Any]:
    """Pull a JSON object out of a model reply.

    Accepts a bare object, one wrapped in a code fence, or one surrounded by
    prose. Trailing commas are tolerated. Raises ValueError otherwise.
    """
    body = text.strip()
    fenced = _FENCE_RE.search(body)
    if fenced:
        body = fenced.group(1).strip()

    candidates = [body]
    repaired = _TRAILING_COMMA_RE.sub(r"\1", body)
    start, end = repaired.find("{"), repaired.rfind("}")
    if start != -1 and end > start:
        repaired = repaired[start:end + 1]
    candidates.append(repaired)

    last_error: json.JSONDecodeError | None = None
    for candidate in candidates:
        try:
            parsed = json.loads(candidate, strict=False)
            break
        except json.JSONDecodeError as e:
            last_error = e
    else:
        logger.error("Could not decode AI reply as JSON: %s", last_error)
        raise ValueError(f"AI returned invalid JSON: {last_error}")

    if not isinstance(parsed, dict):
        raise ValueError("AI returned JSON that is not an object")
    return parsed


class AIClient:
    """Thin wrapper over ``anthropic.Anthropic`` that records every exchange.

    Construction fails with EnvironmentError when ANTHROPIC_API_KEY is unset;
    callers treat that as "AI assistance disabled".
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 4096,
        debug_dir: Path | None = None,
    ):
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise EnvironmentError(
                "ANTHROPIC_API_KEY is not set; step suggestions and bug report drafts "
                "will use built-in templates."
            )
        self.client = anthropic.Anthropic(api_key=api_key, timeout=120.0)
        self.model = model
        self.max_tokens = max_tokens
        self.debug_dir = debug_dir
        self.calls = 0

    def complete(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: int | None = None,
        temperature: float = 0.3,
    ) -> str:
        """Return the text of one Claude reply."""
        self.calls += 1
        budget = max_tokens or self.max_tokens
        logger.info("AI request #%d to %s (max_tokens=%d)", self.calls, self.model, budget)

        started = time.monotonic()
        try:
            reply = self.client.messages.create(
                model=self.model,
                max_tokens=budget,
                temperature=temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_message}],
            )
        except anthropic.APIError as e:
            logger.error("AI request #%d failed: %s", self.calls, e)
            self._record(system_prompt, user_message, error=str(e))
            raise

        text = "".join(getattr(block, "text", "") for block in reply.content)
        logger.info("AI reply #%d: %d chars in %.1fs", self.calls, len(text), time.monotonic() - started)
        if reply.stop_reason == "max_tokens":
            logger.warning("AI reply #%d hit the %d token limit and may be cut off", self.calls, budget)
        self._record(system_prompt, user_message, reply=text)
        return text

    def complete_json(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: int | None = None,
        temperature: float = 0.2,
    ) -> dict[str, Any]:
        """Like :meth:`complete`, decoded into a JSON object."""
        return extract_json_object(self.complete(system_prompt, user_message, max_tokens, temperature))

    def _record(self, system_prompt: str, user_message: str, reply: str = "", error: str | None = None) -> None:
        """Write the exchange to ``debug_dir`` for later inspection."""
        if self.debug_dir is None:
            return
        sections = [
            ("SYSTEM", system_prompt),
            ("USER", user_message),
            ("REPLY", reply or "(empty)"),
        ]
        if error:
            sections.append(("ERROR", error))
        target = self.debug_dir / f"ai_{time.strftime('%Y%m%d_%H%M%S')}_{self.calls:03d}.log"
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(
                "\n\n".join(f"--- {name} ---\n{body}" for name, body in sections) + "\n",
                encoding="utf-8",
            )
        except OSError as e:
            logger.debug("Could not write AI exchange log %s: %s", target, e)
