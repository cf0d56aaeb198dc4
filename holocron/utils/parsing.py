from __future__ import annotations

import json
import re
from typing import Any, Iterator, Tuple

FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


def _strip_leading_json_label(s: str) -> str:
    # "json\n{ ... }" left over when the fence language tag is split from the fence
    return re.sub(r"^\s*json\s*\r?\n\s*(?=\{)", "", s, count=1, flags=re.IGNORECASE)


def _balanced_brace_slices(text: str) -> Iterator[Tuple[int, int]]:
    """Yield (start, end_inclusive) indices of balanced JSON-like blocks.

    Tracks strings/escapes so braces inside strings are ignored.
    """
    n = len(text)
    i = 0
    while i < n:
        if text[i] != "{":
            i += 1
            continue
        depth = 0
        j = i
        in_str = False
        esc = False
        closed = False
        while j < n:
            ch = text[j]
            if in_str:
                if esc:
                    esc = False
                elif ch == "\\":
                    esc = True
                elif ch == '"':
                    in_str = False
            else:
                if ch == '"':
                    in_str = True
                elif ch == "{":
                    depth += 1
                elif ch == "}":
                    depth -= 1
                    if depth == 0:
                        yield (i, j)
                        closed = True
                        break
            j += 1
        i = j + 1 if closed else i + 1


def extract_json_block(text: str) -> Any:
    """Return the first JSON object found in model text.

    Fenced ```json blocks win over bare braces. Raises ValueError when nothing parses.
    """
    for m in FENCE_RE.finditer(text):
        raw = _strip_leading_json_label(m.group(1)).strip()
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            continue

    for a, b in _balanced_brace_slices(text):
        try:
            return json.loads(_strip_leading_json_label(text[a : b + 1]))
        except json.JSONDecodeError:
            continue
    raise ValueError("No valid JSON block found.")
