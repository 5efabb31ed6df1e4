"""Run registry — the single slot holding the currently active run."""

from __future__ import annotations

import logging
import threading

from steprun.errors import DeleteBlockedError
from steprun.models.records import ActiveRunContext

logger = logging.getLogger(__name__)


class RunRegistry:
    """Owns at most one ActiveRunContext.

    ``try_activate`` is a compare-and-set on an empty slot, so two concurrent
    start attempts can never both succeed. The registry only references the
    run by id; the run engine owns the Run record itself.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: ActiveRunContext | None = None

    def active_context(self) -> ActiveRunContext | None:
        with self._lock:
            return self._active

    def is_running(self) -> bool:
        return self.active_context() is not None

    def try_activate(self, context: ActiveRunContext) -> bool:
        """Claim the slot for ``context``; False if another run holds it."""
        with self._lock:
            if self._active is not None:
                return False
            self._active = context
        logger.debug("Active run set: %s (test case %s)", context.run_id, context.test_case_id)
        return True

    def clear(self, run_id: str) -> bool:
        """Release the slot, but only if ``run_id`` is the one holding it."""
        with self._lock:
            if self._active is None or self._active.run_id != run_id:
                return False
            self._active = None
        logger.debug("Active run cleared: %s", run_id)
        return True

    def check_project_deletable(self, project_id: str) -> None:
        active = self.active_context()
        if active is not None and active.project_id == project_id:
            raise DeleteBlockedError(
                "Cannot delete project while a run is in progress for one of its test cases."
            )

    def check_test_case_deletable(self, test_case_id: str) -> None:
        active = self.active_context()
        if active is not None and active.test_case_id == test_case_id:
            raise DeleteBlockedError(
                "Cannot delete test case while a run is in progress for this test case."
            )
