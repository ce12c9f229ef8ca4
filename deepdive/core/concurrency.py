"""
Concurrency admission policy.

Large models served from shared endpoints fall over when several
research branches hit them at once, so the engine caps how many
sub-queries run in parallel per recursion level based on the model id.
The policy only ever lowers the caller's request.
"""

import re
from typing import Optional

SERIAL_MODEL_PATTERN = re.compile(r"(70b|72b|claude-3|deepseek-r1|32b|34b)", re.IGNORECASE)

SERIAL_LIMIT = 1
DEFAULT_LIMIT = 4


def max_concurrency_for_model(model_id: Optional[str]) -> int:
    """
    Highest concurrency allowed for a model.

    Example:
        >>> max_concurrency_for_model("llama-3.3-70b")
        1
        >>> max_concurrency_for_model("gpt-4o")
        4
        >>> max_concurrency_for_model(None)
        1
    """
    if not model_id:
        return SERIAL_LIMIT
    if SERIAL_MODEL_PATTERN.search(model_id):
        return SERIAL_LIMIT
    return DEFAULT_LIMIT


def effective_concurrency(requested: int, model_id: Optional[str]) -> int:
    """min(requested, model cap), never below 1."""
    return max(1, min(requested, max_concurrency_for_model(model_id)))


__all__ = ["max_concurrency_for_model", "effective_concurrency"]
