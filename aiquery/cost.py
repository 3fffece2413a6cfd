"""Best-effort token accounting.

Adapter-reported usage always wins; otherwise a character heuristic is used.
No currency conversion: callers apply their own pricing table.
"""
import math
from typing import Any, Optional

from .prompts import has_context
from .serialize import stable_stringify

# Flat allowance for the system instructions.
INSTRUCTION_OVERHEAD = 8


def estimate_tokens(task: str, context: Any = None) -> int:
    task_tokens = math.ceil(len(task) / 4)
    context_tokens = math.ceil(len(stable_stringify(context)) / 4) if has_context(context) else 0
    return task_tokens + context_tokens + INSTRUCTION_OVERHEAD


def resolve_tokens(reported: Optional[int], task: str, context: Any = None) -> int:
    """Prefer the adapter's count (0 is a valid count); otherwise estimate."""
    if reported is not None:
        return int(reported)
    return estimate_tokens(task, context)
