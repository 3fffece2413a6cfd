"""
Input sanitisation for task text and context values.

Runs before fingerprinting and prompt construction on every path.

What we strip:
  - C0/C1 control characters except TAB, LF, CR
  - Zero-width and invisible formatting characters (ZWSP, ZWJ, BOM, etc.)
  - Runs of 3+ consecutive blank lines collapsed to 2

Context strings get the same character filtering but keep their
whitespace; non-string values pass through untouched.
"""

import re
import unicodedata
from typing import Any

# C0/C1 control chars except TAB (09), LF (0A), CR (0D)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\x80-\x9f]")

# Zero-width / invisible Unicode formatting characters
# ZWSP (200B), ZWNJ (200C), ZWJ (200D), LRM (200E), RLM (200F),
# bidi overrides (202A-202E), function chars (2060-2064),
# deprecated formatting (206A-206F), BOM (FEFF)
_INVISIBLE_RANGES = (
    (0x200B, 0x200F),
    (0x202A, 0x202E),
    (0x2060, 0x2064),
    (0x206A, 0x206F),
    (0xFEFF, 0xFEFF),
)
_INVISIBLE_RE = re.compile(
    "[" + "".join(f"{chr(lo)}-{chr(hi)}" for lo, hi in _INVISIBLE_RANGES) + "]"
)

# 3+ consecutive blank lines → 2
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def _strip_invisible(text: str) -> str:
    text = unicodedata.normalize("NFC", text)
    text = _CONTROL_RE.sub("", text)
    return _INVISIBLE_RE.sub("", text)


def sanitize_task(raw: str) -> str:
    """Normalise task text for fingerprinting and prompt inclusion."""
    text = _strip_invisible(str(raw))

    # Normalise line endings to LF only
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    text = _BLANK_LINES_RE.sub("\n\n", text)

    # Strip trailing whitespace per line
    text = "\n".join(line.rstrip() for line in text.split("\n"))

    return text.strip()


def sanitize_context(value: Any, _ancestors: frozenset = frozenset()) -> Any:
    """Recursively filter strings inside a context value; returns a new value.

    Cyclic containers are returned as-is at the point of recursion so the
    canonical serializer can mark them.
    """
    if isinstance(value, str):
        return _strip_invisible(value)
    if not isinstance(value, (dict, list, tuple)):
        return value
    if id(value) in _ancestors:
        return value
    inner = _ancestors | {id(value)}
    if isinstance(value, dict):
        return {key: sanitize_context(item, inner) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_context(item, inner) for item in value]
    return tuple(sanitize_context(item, inner) for item in value)
