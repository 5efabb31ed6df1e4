"""Parsed step actions produced by the step parser."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class EnterAction(BaseModel):
    type: Literal["enter"] = "enter"
    target: str
    value: str


class ClickAction(BaseModel):
    type: Literal["click"] = "click"
    target: str
    wait_after: Optional[float] = None  # seconds to pause before the click lands


class GotoAction(BaseModel):
    type: Literal["goto"] = "goto"
    path: str


class ExpectAction(BaseModel):
    type: Literal["expect"] = "expect"
    assertion: str
    within: Optional[float] = None  # seconds; replaces the per-step timeout


ParsedAction = Annotated[
    Union[EnterAction, ClickAction, GotoAction, ExpectAction],
    Field(discriminator="type"),
]

_action_adapter: TypeAdapter = TypeAdapter(ParsedAction)


def action_from_json(data: str) -> ParsedAction:
    """Validate a stored ``parsed_action_json`` blob."""
    return _action_adapter.validate_json(data)


def action_to_json(action: ParsedAction) -> str:
    return action.model_dump_json(exclude_none=True)


class ParseResult(BaseModel):
    """Outcome of parsing one step line.

    ``ok`` is True exactly when ``action`` is set. ``source`` tells callers
    whether the line matched the strict grammar or was interpreted by the
    looser fallback pass.
    """
    ok: bool
    action: Optional[ParsedAction] = None
    source: Optional[Literal["strict", "fallback"]] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, action: ParsedAction, source: str) -> "ParseResult":
        return cls(ok=True, action=action, source=source)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(ok=False, error=error)
