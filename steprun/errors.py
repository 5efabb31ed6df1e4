"""Typed errors raised by the step runner components.

Each error carries a stable ``code`` so the orchestrator can turn it into
an :class:`~steprun.models.results.ApiResult` without inspecting messages.
"""

from __future__ import annotations


class StepRunError(Exception):
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StepRunError):
    """Bad input rejected before anything is created."""
    code = "validation"


class NotFoundError(StepRunError):
    code = "not_found"


class RunAlreadyActiveError(StepRunError):
    code = "already_active"

    def __init__(self, message: str = "A run is already in progress."):
        super().__init__(message)


class BrowserInstallError(StepRunError):
    """Browser engine missing or its installation failed."""
    code = "environment"


class ArtifactAccessError(StepRunError):
    code = "artifact"


class DeleteBlockedError(StepRunError):
    code = "run_active"
