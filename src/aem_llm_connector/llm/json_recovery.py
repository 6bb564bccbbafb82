"""Recovery of a parseable JSON object from raw model output.

Models frequently wrap the object in Markdown fences, surround it with
prose, or emit HTML attribute quotes unescaped inside string values.  The
pipeline here undoes those defects in stages and stops as soon as the text
parses:

    strip_fences -> extract_balanced -> probe -> repair_quotes -> probe
"""

from __future__ import annotations

import enum
import json
import logging
import re

from aem_llm_connector.types import RecoveredDocument

_logger = logging.getLogger(__name__)

_OPEN_FENCE = re.compile(r"^```[A-Za-z0-9_+.-]*[ \t]*\r?\n?")
_FENCE = "```"


# ---------------------------------------------------------------------------
# Formatting noise
# ---------------------------------------------------------------------------

def strip_fences(text: str) -> str:
    """Remove leading/trailing triple-backtick fences and stray backticks.

    Repeats until stable so doubled fences (```json\\n```json\\n{...}) are
    handled too.
    """
    cleaned = text.strip()
    changed = True
    while changed:
        changed = False
        m = _OPEN_FENCE.match(cleaned)
        if m:
            cleaned = cleaned[m.end():].strip()
            changed = True
        if cleaned.endswith(_FENCE):
            cleaned = cleaned[: -len(_FENCE)].strip()
            changed = True
    return cleaned.strip("`").strip()


def extract_balanced(text: str) -> str | None:
    """Return the span from the first ``{`` to the last ``}`` inclusive.

    Prose before and after the object is dropped here whether or not
    fences were stripped.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def is_valid_json(text: str) -> bool:
    try:
        json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return False
    return True


def _balanced_object(text: str, start: int = 0) -> str | None:
    """String-aware balanced-brace scan of the object starting at *start*."""
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


# ---------------------------------------------------------------------------
# Quote repair
# ---------------------------------------------------------------------------

class ScanState(enum.Enum):
    OUTSIDE = "outside"
    IN_KEY = "in_key"  # keys and any other quoted string not following ':'
    IN_VALUE = "in_value"
    ESCAPED = "escaped"


_VALUE_TERMINATORS = frozenset(",}]")


def _opens_value(text: str, pos: int) -> bool:
    """A quote opens a string value iff the previous non-space char is ':'."""
    for i in range(pos - 1, -1, -1):
        c = text[i]
        if not c.isspace():
            return c == ":"
    return False


def _closes_value(text: str, pos: int) -> bool:
    """A quote closes a value iff followed by ``,``/``}``/``]`` or end of input.

    Best-effort heuristic: a value whose interior legitimately contains
    ``", `` is closed early.  ``recover_json`` cross-checks the result.
    """
    for i in range(pos + 1, len(text)):
        c = text[i]
        if not c.isspace():
            return c in _VALUE_TERMINATORS
    return True


def repair_quotes(text: str) -> str:
    """Escape unescaped quotes that sit inside JSON string values.

    Handles output such as ``{"sample": "<p>This is a "bad" example</p>"}``.
    Structural quotes (keys, value delimiters) are never altered, and
    already-escaped quotes are preserved, so the repair is idempotent.
    """
    if not text:
        return text

    out: list[str] = []
    state = ScanState.OUTSIDE
    resume = ScanState.OUTSIDE
    escaped_count = 0

    for i, ch in enumerate(text):
        if state is ScanState.ESCAPED:
            out.append(ch)
            state = resume
            continue
        if ch == "\\":
            out.append(ch)
            resume, state = state, ScanState.ESCAPED
            continue
        if ch != '"':
            out.append(ch)
            continue

        if state is ScanState.OUTSIDE:
            state = ScanState.IN_VALUE if _opens_value(text, i) else ScanState.IN_KEY
            out.append(ch)
        elif state is ScanState.IN_KEY:
            state = ScanState.OUTSIDE
            out.append(ch)
        elif _closes_value(text, i):
            state = ScanState.OUTSIDE
            out.append(ch)
        else:
            out.append('\\"')
            escaped_count += 1

    if escaped_count:
        _logger.debug("Escaped %d interior quote(s) in string values", escaped_count)
    return "".join(out)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def recover_json(raw: str | None, strip_markdown: bool = True) -> RecoveredDocument:
    """Run the full recovery pipeline over a raw model reply."""
    if raw is None or not raw.strip():
        return RecoveredDocument(text=None)

    _logger.debug("Raw response before sanitization: %.300s", raw)
    text = raw
    if strip_markdown:
        text = strip_fences(text)

    candidate = extract_balanced(text)
    if candidate is None:
        _logger.error("No JSON content found in LLM response: %.300s", raw)
        return RecoveredDocument(text=None)

    if is_valid_json(candidate):
        return RecoveredDocument(text=candidate, valid=True)

    _logger.debug("Invalid JSON detected, attempting quote fixing")
    repaired = repair_quotes(candidate)
    valid = is_valid_json(repaired)
    balanced = _balanced_object(repaired) == repaired
    if not balanced:
        _logger.warning(
            "Quote repair end-of-value heuristic disagrees with balanced-brace "
            "scan (%d chars); result may be truncated or mis-quoted",
            len(repaired),
        )
    if not valid:
        _logger.warning("JSON still invalid after quote repair: %.300s", repaired)
    return RecoveredDocument(text=repaired, valid=valid, repaired=True, balanced=balanced)
