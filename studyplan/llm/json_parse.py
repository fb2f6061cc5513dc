import json
from typing import Any, Iterator

from studyplan.core.errors import ParseError


def _balanced_end(s: str, start: int) -> int | None:
    """Index of the brace closing the one at ``start``, skipping string literals."""
    depth = 0
    in_str = False
    escaped = False
    for idx in range(start, len(s)):
        ch = s[idx]
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return idx
    return None


def iter_json_objects(text: str) -> Iterator[str]:
    """
    Yield every balanced {...} block in text, left to right.
    A block that balances is consumed whole, so its inner objects are never
    yielded on their own; an opening brace that never closes is skipped.
    """
    s = text or ""
    start = s.find("{")
    while start != -1:
        end = _balanced_end(s, start)
        if end is None:
            start = s.find("{", start + 1)
            continue
        yield s[start : end + 1]
        start = s.find("{", end + 1)


def find_json_object(text: str) -> str | None:
    """Return the first balanced {...} block in text, or None."""
    return next(iter_json_objects(text), None)


def extract_json(text: str) -> dict[str, Any]:
    """
    Decode the first {...} block of an LLM reply that is strict JSON.
    Commentary around the object (braces included) is tolerated; when no
    block decodes, the first decode error is reported. No repair, no guessing.
    """
    first_error = None
    for candidate in iter_json_objects(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            if first_error is None:
                first_error = (e, candidate)
            continue
        return data

    if first_error is None:
        raise ParseError("No JSON object found in LLM reply", text)
    e, candidate = first_error
    raise ParseError(f"LLM reply is not valid JSON: {e.msg} (line {e.lineno}, col {e.colno})", candidate) from e
