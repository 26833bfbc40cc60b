"""
Row fingerprinting.

A row's fingerprint is an MD5 digest of its column values rendered to
canonical text and framed field by field. Each field is written as
``<length>:<text>`` and NULL as ``~``, so no value can smuggle a
separator in and make two different rows frame (and hash) identically.

The digest only answers "did the content change", it is not a security
boundary.
"""

import hashlib
import json
from datetime import date, datetime, time
from typing import Any, Iterable

NULL_MARKER = "~"


def render_value(value: Any) -> str | None:
    """
    Render one driver value as canonical text.

    Returns None for SQL NULL so callers can tell it apart from ''.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return "t" if value else "f"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def frame(values: Iterable[Any]) -> str:
    """Length-prefix every rendered field and concatenate them."""
    parts = []
    for value in values:
        text = render_value(value)
        if text is None:
            parts.append(NULL_MARKER)
        else:
            parts.append(f"{len(text)}:{text}")
    return "".join(parts)


def row_digest(values: Iterable[Any]) -> str:
    """Fixed-size hex digest of a row's framed values."""
    framed = frame(values).encode("utf-8", errors="surrogatepass")
    return hashlib.md5(framed, usedforsecurity=False).hexdigest()


def render_key(values: tuple) -> str:
    """
    Comparable string form of a primary-key value.

    A single-column key renders as its plain text so numeric keys read
    naturally in logs; composite keys are framed.
    """
    if len(values) == 1:
        text = render_value(values[0])
        return NULL_MARKER if text is None else text
    return frame(values)
