"""Extract tutor records from raw completion text.

Model replies are supposed to be bare JSON, but in practice they arrive fenced in
code blocks, surrounded by prose, several objects in a row, or with LaTeX escapes
that JSON decoding turns into control characters. Nothing here raises on bad
input: spans that cannot be decoded are dropped.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from studydesk.models import StepRecord

log = logging.getLogger(__name__)

WRAPPER_KEY = "responses"

_FENCE = re.compile(r"```(?:json)?\s*")
# Backslashes that do not start a valid JSON escape (e.g. "\sqrt", "\(").
# Escaped backslash pairs are matched first so they are left untouched.
_INVALID_ESCAPE = re.compile(r'\\\\|\\(?!["\\/bfnrtu])')

# Control characters a decoder produces from "\t", "\n", ... mapped back to the letter.
_CONTROL_LETTERS = {
    "\t": "t",
    "\n": "n",
    "\r": "r",
    "\f": "f",
    "\b": "b",
}


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).replace("```", "")


def extract_json_spans(text: str) -> list[str]:
    """Return every top-level {...} span, using a plain brace depth counter."""
    cleaned = strip_code_fences(text)
    spans: list[str] = []
    depth = 0
    start = -1
    for i, ch in enumerate(cleaned):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}":
            if depth > 0:
                depth -= 1
            if depth == 0 and start != -1:
                spans.append(cleaned[start:i + 1])
                start = -1
    return spans


def repair_control_escapes(value: Any) -> Any:
    """Turn "<TAB>imes" back into "\\times" in every string of a decoded structure."""
    if isinstance(value, str):
        out: list[str] = []
        for i, ch in enumerate(value):
            nxt = value[i + 1] if i + 1 < len(value) else ""
            if ch in _CONTROL_LETTERS and nxt.isascii() and nxt.isalpha():
                out.append("\\" + _CONTROL_LETTERS[ch])
            else:
                out.append(ch)
        return "".join(out)
    if isinstance(value, list):
        return [repair_control_escapes(item) for item in value]
    if isinstance(value, dict):
        return {key: repair_control_escapes(item) for key, item in value.items()}
    return value


def _double_lone_backslash(match: re.Match) -> str:
    token = match.group(0)
    return token if len(token) == 2 else "\\\\"


def decode_span(span: str) -> Any | None:
    """Decode one span, retrying once with invalid escapes doubled."""
    try:
        return json.loads(span)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_INVALID_ESCAPE.sub(_double_lone_backslash, span))
    except json.JSONDecodeError:
        log.debug(f"Dropping undecodable span: {span[:80]}")
        return None


def _to_record(data: Any) -> StepRecord | None:
    if not isinstance(data, dict):
        return None
    try:
        return StepRecord.model_validate(data)
    except ValidationError as e:
        log.debug(f"Dropping malformed record: {e.error_count()} error(s)")
        return None


def parse_step_records(text: str) -> list[StepRecord]:
    """Parse a completion into records, in the order they appear."""
    records: list[StepRecord] = []
    for span in extract_json_spans(text or ""):
        data = decode_span(span)
        if data is None:
            continue
        data = repair_control_escapes(data)
        if isinstance(data, dict) and isinstance(data.get(WRAPPER_KEY), list):
            items = data[WRAPPER_KEY]
        else:
            items = [data]
        for item in items:
            record = _to_record(item)
            if record is not None:
                records.append(record)
    return records
