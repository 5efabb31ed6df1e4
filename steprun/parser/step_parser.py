"""Step parser — turns one line of step text into a structured action.

Strict grammar (case-sensitive keywords, double-quoted operands)::

    Enter "<value>" in "<field>" field
    Click "<text>" [after <N>s]
    Go to "<path>"
    Expect <assertion> [within <N>s]

Lines that match none of these are handed to looser heuristics. The last
matcher accepts anything, so every non-empty line yields an action; the
``source`` field of the result tells strict matches from best-effort ones.
"""

from __future__ import annotations

import re
from typing import Callable, Optional

from steprun.models.actions import (
    ClickAction,
    EnterAction,
    ExpectAction,
    GotoAction,
    ParsedAction,
    ParseResult,
)

EMPTY_STEP_ERROR = "Step cannot be empty."

_DURATION = r"(\d+(?:\.\d+)?)s"

STRICT_ENTER = re.compile(r'^Enter\s+"(.+?)"\s+in\s+"(.+?)"\s+field$')
STRICT_CLICK = re.compile(r'^Click\s+"(.+?)"(?:\s+after\s+' + _DURATION + r")?$")
STRICT_GOTO = re.compile(r'^Go\s+to\s+"(.+?)"$')
STRICT_EXPECT = re.compile(r"^Expect\s+(.+?)(?:\s+within\s+" + _DURATION + r")?$")

_QUOTED = re.compile(r'"(.+?)"')
_LOOSE_DURATION = re.compile(r"\s+(?:after|within)\s+\d+(?:\.\d+)?\s*s(?:ec(?:ond)?s?)?\.?$", re.IGNORECASE)

Matcher = Callable[[str], Optional[ParsedAction]]


def parse_step(raw_text: str) -> ParseResult:
    """Parse a raw step line. Pure and deterministic."""
    text = (raw_text or "").strip()
    if not text:
        return ParseResult.failure(EMPTY_STEP_ERROR)

    for matcher in STRICT_MATCHERS:
        action = matcher(text)
        if action is not None:
            return ParseResult.success(action, "strict")

    for matcher in FALLBACK_MATCHERS:
        action = matcher(text)
        if action is not None:
            return ParseResult.success(action, "fallback")

    # FALLBACK_MATCHERS ends with a total matcher
    raise AssertionError("fallback matchers must accept every non-empty line")


# ----------------------------------------------------------------------
# Strict matchers
# ----------------------------------------------------------------------

def _seconds(value: str | None) -> float | None:
    return float(value) if value is not None else None


def _strict_enter(text: str) -> ParsedAction | None:
    m = STRICT_ENTER.match(text)
    if not m:
        return None
    return EnterAction(value=m.group(1), target=m.group(2))


def _strict_click(text: str) -> ParsedAction | None:
    m = STRICT_CLICK.match(text)
    if not m:
        return None
    return ClickAction(target=m.group(1), wait_after=_seconds(m.group(2)))


def _strict_goto(text: str) -> ParsedAction | None:
    m = STRICT_GOTO.match(text)
    if not m:
        return None
    path = m.group(1).strip()
    if not path:
        return None
    return GotoAction(path=path)


def _strict_expect(text: str) -> ParsedAction | None:
    m = STRICT_EXPECT.match(text)
    if not m:
        return None
    assertion = m.group(1).strip()
    if not assertion:
        return None
    return ExpectAction(assertion=assertion, within=_seconds(m.group(2)))


STRICT_MATCHERS: tuple[Matcher, ...] = (
    _strict_enter,
    _strict_click,
    _strict_goto,
    _strict_expect,
)


# ----------------------------------------------------------------------
# Fallback matchers
# ----------------------------------------------------------------------

def _contains_word(text: str, words: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(re.search(rf"\b{w}\b", lowered) for w in words)


def _trim_punctuation(text: str) -> str:
    return text.strip().rstrip(".!").strip()


def _strip_leading_verb(text: str, verbs: tuple[str, ...]) -> str:
    pattern = r"^(?:" + "|".join(verbs) + r")\s+(?:on\s+)?"
    return _trim_punctuation(re.sub(pattern, "", text, flags=re.IGNORECASE))


_CLICK_VERBS = ("click", "tap", "press", "select")
_ENTER_VERBS = ("enter", "type", "fill", "input")
_EXPECT_VERBS = ("expect", "assert", "verify", "check", "should see", "see")


def _fallback_goto(text: str) -> ParsedAction | None:
    m = re.match(r"^(?:go\s*to|navigate\s+to|open|visit)\s+(.+)$", text, re.IGNORECASE)
    if not m:
        return None
    quoted = _QUOTED.search(m.group(1))
    target = quoted.group(1).strip() if quoted else _trim_punctuation(m.group(1))
    if not target or not (target.startswith(("/", "http://", "https://")) or quoted):
        return None
    return GotoAction(path=target)


def _fallback_enter(text: str) -> ParsedAction | None:
    if not _contains_word(text, _ENTER_VERBS):
        return None
    quoted = _QUOTED.findall(text)
    if len(quoted) >= 2:
        return EnterAction(value=quoted[0], target=quoted[1])
    m = re.search(r"(?:enter|type|fill|input)\s+(.+?)\s+(?:in|into)\s+(.+)", text, re.IGNORECASE)
    if not m:
        return None
    value = _trim_punctuation(m.group(1)).strip('"')
    target = _trim_punctuation(re.sub(r"\s+field$", "", _trim_punctuation(m.group(2)), flags=re.IGNORECASE))
    target = target.strip('"').removeprefix("the ").strip()
    if not value or not target:
        return None
    return EnterAction(value=value, target=target)


def _fallback_click(text: str) -> ParsedAction | None:
    if not _contains_word(text, _CLICK_VERBS):
        return None
    body = _LOOSE_DURATION.sub("", text)
    quoted = _QUOTED.search(body)
    target = quoted.group(1) if quoted else _strip_leading_verb(body, _CLICK_VERBS)
    if not target:
        return None
    return ClickAction(target=target)


def _fallback_expect(text: str) -> ParsedAction:
    """Total matcher: anything left becomes an assertion."""
    body = _LOOSE_DURATION.sub("", text)
    assertion = _strip_leading_verb(body, _EXPECT_VERBS) or _trim_punctuation(body) or text
    return ExpectAction(assertion=assertion)


FALLBACK_MATCHERS: tuple[Matcher, ...] = (
    _fallback_goto,
    _fallback_enter,
    _fallback_click,
    _fallback_expect,
)
