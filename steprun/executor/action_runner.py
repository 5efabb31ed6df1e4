"""Action runner — translates parsed step actions to Playwright calls."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable
from urllib.parse import urljoin

from playwright.async_api import Page

from steprun.models.actions import (
    ClickAction,
    EnterAction,
    ExpectAction,
    GotoAction,
    ParsedAction,
)

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 600
MIN_EXPECT_SECONDS = 1
LOCATOR_ATTEMPTS = 4
TYPE_DELAY_MS = 15

_VISIBILITY_SUFFIX = re.compile(
    r"\s+(?:is|are)\s+(?:visible|shown|displayed|present)$|\s+(?:appears|appear)$",
    re.IGNORECASE,
)
_QUOTED = re.compile(r'"(.+?)"')
_MISSING_BROWSER = re.compile(
    r"executable doesn't exist|please run the following command|browser binaries", re.IGNORECASE
)


class StepFailure(Exception):
    """An action could not be completed on the page."""


def step_timeout_for(action: ParsedAction, default_seconds: float) -> float:
    """Overall time budget for one step, in seconds."""
    if isinstance(action, ExpectAction) and action.within is not None:
        return max(MIN_EXPECT_SECONDS, min(MAX_WAIT_SECONDS, action.within))
    if isinstance(action, ClickAction) and action.wait_after:
        return default_seconds + min(MAX_WAIT_SECONDS, max(0, action.wait_after))
    if isinstance(action, EnterAction):
        return default_seconds + len(action.value) * TYPE_DELAY_MS / 1000
    return default_seconds


async def run_action(page: Page, action: ParsedAction, timeout: int = 10000, base_url: str = "") -> None:
    """Execute a single parsed action on the Playwright page.

    Args:
        page: Playwright page instance.
        action: The action to execute.
        timeout: Locator timeout in milliseconds (default 10000).
        base_url: Project base URL used to resolve ``Go to`` paths.
    """
    logger.debug("Running action: %s", action.model_dump(exclude_none=True))

    match action:
        case EnterAction():
            await _perform_enter(page, action.target, action.value, timeout)
        case ClickAction():
            delay = min(MAX_WAIT_SECONDS, max(0, action.wait_after or 0))
            if delay > 0:
                logger.debug("Waiting %.1fs before clicking '%s'", delay, action.target)
                await asyncio.sleep(delay)
            await _perform_click(page, action.target, timeout)
        case GotoAction():
            destination = resolve_navigation_target(action.path, page.url, base_url)
            logger.debug("Navigating to %s...", destination)
            await page.goto(destination, wait_until="domcontentloaded", timeout=timeout)
        case ExpectAction():
            expect_ms = timeout
            if action.within is not None:
                expect_ms = int(max(MIN_EXPECT_SECONDS, min(MAX_WAIT_SECONDS, action.within)) * 1000)
            await _perform_expect(page, action.assertion, expect_ms)
        case _:
            raise StepFailure(f"Unsupported action: {action!r}")


def _matcher(text: str) -> re.Pattern:
    return re.compile(re.escape(text), re.IGNORECASE)


def _attempt_timeout(timeout: int) -> int:
    """Per-locator timeout so the whole fallback chain fits in one step budget."""
    return max(1, timeout // LOCATOR_ATTEMPTS)


async def _first_success(attempts: list[Callable[[], Awaitable[None]]]) -> bool:
    for attempt in attempts:
        try:
            await attempt()
            return True
        except Exception as e:
            logger.debug("Locator attempt failed: %s", e)
    return False


async def _perform_enter(page: Page, field: str, value: str, timeout: int) -> None:
    pattern = _matcher(field)
    attempt_ms = _attempt_timeout(timeout)

    async def _click_text_then_type() -> None:
        await page.get_by_text(pattern).first.click(timeout=attempt_ms)
        await page.keyboard.type(value, delay=TYPE_DELAY_MS)

    found = await _first_success([
        lambda: page.get_by_label(pattern).first.fill(value, timeout=attempt_ms),
        lambda: page.get_by_role("textbox", name=pattern).first.fill(value, timeout=attempt_ms),
        lambda: page.get_by_placeholder(pattern).first.fill(value, timeout=attempt_ms),
        _click_text_then_type,
    ])
    if not found:
        raise StepFailure(f'Unable to locate input field "{field}".')


async def _perform_click(page: Page, target: str, timeout: int) -> None:
    pattern = _matcher(target)
    attempt_ms = _attempt_timeout(timeout)
    found = await _first_success([
        lambda: page.get_by_role("button", name=pattern).first.click(timeout=attempt_ms),
        lambda: page.get_by_role("link", name=pattern).first.click(timeout=attempt_ms),
        lambda: page.get_by_role("menuitem", name=pattern).first.click(timeout=attempt_ms),
        lambda: page.get_by_text(pattern).first.click(timeout=attempt_ms),
    ])
    if not found:
        raise StepFailure(f'Unable to locate clickable target "{target}".')


def expectation_text(assertion: str) -> str:
    """The text an Expect step waits for.

    A quoted fragment wins; otherwise a trailing "is visible"-style phrase
    is dropped so ``Expect Dashboard is visible`` waits for "Dashboard".
    """
    quoted = _QUOTED.search(assertion)
    if quoted:
        return quoted.group(1)
    stripped = _VISIBILITY_SUFFIX.sub("", assertion.strip())
    return stripped or assertion.strip()


async def _perform_expect(page: Page, assertion: str, timeout: int) -> None:
    pattern = _matcher(expectation_text(assertion))
    await page.get_by_text(pattern).first.wait_for(state="visible", timeout=timeout)


def resolve_navigation_target(target: str, current_url: str, base_url: str) -> str:
    value = target.strip()
    if not value:
        raise StepFailure("Navigation target cannot be empty.")
    if re.match(r"^https?://", value, re.IGNORECASE):
        return value
    if value.startswith("/"):
        return urljoin(base_url, value)
    fallback = current_url if re.match(r"^https?://", current_url or "", re.IGNORECASE) else base_url
    return urljoin(fallback, value)


def describe_step_error(error: BaseException, browser: str) -> str:
    """Turn an execution error into a message fit for display."""
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return _TIMEOUT_MESSAGE
    raw = str(error) or error.__class__.__name__
    if isinstance(error, StepFailure):
        return raw
    if _MISSING_BROWSER.search(raw):
        return f"The {browser} browser runtime is not installed. Install {browser} and retry."
    if re.search(r"timeout", raw, re.IGNORECASE):
        return _TIMEOUT_MESSAGE
    if re.search(r"navigation|net::|ERR_|NS_ERROR", raw):
        return "Failed to open the page. Check the URL and network access."
    if re.search(r"strict mode violation", raw, re.IGNORECASE):
        return "Multiple matching elements were found. Narrow the step target text."
    return f"Automation failed: {raw}"


_TIMEOUT_MESSAGE = (
    "Step timed out before the page reached the expected state. "
    "Add `within 30s` to the Expect step or increase the step timeout."
)
