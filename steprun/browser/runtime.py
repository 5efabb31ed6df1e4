"""Browser runtime manager — tracks and installs Playwright browser engines."""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from pathlib import Path
from typing import Callable

from playwright.async_api import Browser, Playwright, async_playwright

from steprun.errors import BrowserInstallError, ValidationError
from steprun.executor.event_bus import EventBus
from steprun.models.config import SUPPORTED_BROWSERS
from steprun.models.events import BrowserInstallState, BrowserInstallUpdate

logger = logging.getLogger(__name__)

_PERCENT_RE = re.compile(r"(\d{1,3})%")

LineCallback = Callable[[str], None]


async def resolve_executable_path(browser: str) -> str | None:
    """Ask Playwright where the executable for ``browser`` should live."""
    try:
        async with async_playwright() as p:
            return getattr(p, browser).executable_path
    except Exception as e:
        logger.debug("Could not resolve %s executable path: %s", browser, e)
        return None


async def run_playwright_install(browser: str, on_line: LineCallback) -> None:
    """Run ``playwright install <browser>`` streaming output lines to ``on_line``.

    Raises BrowserInstallError when the installer cannot start or exits non-zero.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "playwright", "install", browser,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        raise BrowserInstallError(f"Playwright browser install failed to start: {e}") from e

    output: list[str] = []
    assert proc.stdout is not None
    async for raw in proc.stdout:
        for line in re.split(r"[\r\n]+", raw.decode(errors="replace")):
            line = line.strip()
            if line:
                output.append(line)
                on_line(line)

    code = await proc.wait()
    if code != 0:
        details = "\n".join(output[-20:]).strip()
        raise BrowserInstallError(details or f"Playwright install exited with code {code}.")


def parse_progress(text: str) -> int | None:
    m = _PERCENT_RE.search(text)
    if not m:
        return None
    return max(0, min(100, int(m.group(1))))


def infer_phase(text: str) -> str:
    lowered = text.lower()
    if "download" in lowered:
        return "downloading"
    if any(k in lowered for k in ("extract", "unpack", "decompress", "copy")):
        return "installing"
    if any(k in lowered for k in ("verif", "valid", "done", "installed", "complete")):
        return "verifying"
    return "installing"


class BrowserRuntimeManager:
    """Tracks install state per engine and installs engines on demand.

    ``ensure_installed`` is single-flight per engine: concurrent callers for
    the same engine await one shared installation task, while different
    engines install independently.
    """

    def __init__(self, updates: EventBus | None = None):
        self.updates = updates or EventBus("browser-install")
        self._inflight: dict[str, asyncio.Task] = {}
        self._last_errors: dict[str, str] = {}
        self._executable_paths: dict[str, str | None] = {}

    async def status(self) -> list[BrowserInstallState]:
        """Current install state for every supported engine."""
        return [await self.get_status(b) for b in SUPPORTED_BROWSERS]

    async def get_status(self, browser: str) -> BrowserInstallState:
        _check_supported(browser)
        path = await self._executable_path(browser)
        return BrowserInstallState(
            browser=browser,
            installed=bool(path) and Path(path).exists(),
            install_in_progress=browser in self._inflight,
            executable_path=path,
            last_error=self._last_errors.get(browser),
        )

    async def ensure_installed(self, browser: str) -> BrowserInstallState:
        """Return immediately when installed, otherwise install (or join an install)."""
        state = await self.get_status(browser)
        if state.installed:
            return state
        return await self.install(browser)

    async def install(self, browser: str) -> BrowserInstallState:
        _check_supported(browser)
        task = self._inflight.get(browser)
        if task is not None:
            self._emit(browser, "installing", None, f"{browser} install already in progress.")
        else:
            self._emit(browser, "starting", 0, f"Starting {browser} install...")
            task = asyncio.get_running_loop().create_task(self._install(browser))
            self._inflight[browser] = task
        # shield: one caller giving up must not cancel the shared install
        await asyncio.shield(task)
        return await self.get_status(browser)

    async def launch(self, playwright: Playwright, browser: str, headless: bool = True) -> Browser:
        _check_supported(browser)
        logger.debug("Launching %s (headless=%s)", browser, headless)
        return await getattr(playwright, browser).launch(headless=headless)

    async def _install(self, browser: str) -> None:
        logger.info("Installing browser runtime: %s", browser)
        fallback_progress = 3

        def on_line(line: str) -> None:
            nonlocal fallback_progress
            progress = parse_progress(line)
            if progress is None:
                fallback_progress = min(96, fallback_progress + 2)
                progress = fallback_progress
            else:
                fallback_progress = max(fallback_progress, progress)
            self._emit(browser, infer_phase(line), progress, line)

        try:
            await run_playwright_install(browser, on_line)
        except BrowserInstallError as e:
            self._fail(browser, e.message)
            raise
        except Exception as e:
            message = f"Failed to install {browser}: {e}"
            self._fail(browser, message)
            raise BrowserInstallError(message) from e
        finally:
            self._inflight.pop(browser, None)

        self._last_errors.pop(browser, None)
        self._executable_paths.pop(browser, None)
        logger.info("Browser runtime installed: %s", browser)
        self._emit(browser, "completed", 100, f"{browser} installed.")

    def _fail(self, browser: str, message: str) -> None:
        logger.error("Browser install failed for %s: %s", browser, message)
        self._last_errors[browser] = message
        self._emit(browser, "failed", None, message)

    async def _executable_path(self, browser: str) -> str | None:
        if browser not in self._executable_paths:
            self._executable_paths[browser] = await resolve_executable_path(browser)
        return self._executable_paths[browser]

    def _emit(self, browser: str, phase: str, progress: int | None, message: str) -> None:
        self.updates.publish(BrowserInstallUpdate(
            browser=browser, phase=phase, progress=progress, message=message,
        ))


def _check_supported(browser: str) -> None:
    if browser not in SUPPORTED_BROWSERS:
        raise ValidationError(
            f"Unsupported browser '{browser}'. Choose one of: {', '.join(SUPPORTED_BROWSERS)}."
        )

