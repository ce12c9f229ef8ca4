"""
Prompt text utilities: token counting, prompt trimming, reply cleanup.

Token counts use tiktoken's o200k_base encoding. When the encoding
cannot be loaded (no network on first use, for example) counts fall back
to a four-characters-per-token estimate.
"""

import json
import re
from functools import lru_cache
from typing import Any, List, Optional

import tiktoken

from config.logging_config import get_logger
from config.settings import settings

logger = get_logger(__name__)

ENCODING_NAME = "o200k_base"
MIN_CHUNK_SIZE = 140

# Per-model context windows; anything not listed gets the conservative default
MODEL_CONTEXT_TOKENS = {
    "deepseek-r1-671b": 131072,
}
DEFAULT_CONTEXT_TOKENS = 8000

SEPARATORS = ("\n\n", "\n", ".", ",", ">", "<", " ", "")

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")


@lru_cache(maxsize=1)
def _encoder():
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as e:
        logger.warning("tiktoken encoding unavailable, estimating tokens", extra={"error": str(e)})
        return None


def count_tokens(text: str) -> int:
    """Token count of `text` (estimated when the encoder is unavailable)."""
    if not text:
        return 0
    encoder = _encoder()
    if encoder is None:
        return len(text) // 4
    return len(encoder.encode(text, disallowed_special=()))


def max_context_tokens(model: Optional[str]) -> int:
    """
    Context window used for prompt budgeting.

    Example:
        >>> max_context_tokens("deepseek-r1-671b")
        131072
        >>> max_context_tokens("gpt-4o")
        8000
    """
    return MODEL_CONTEXT_TOKENS.get(model or "", DEFAULT_CONTEXT_TOKENS)


def _split_first_chunk(text: str, chunk_size: int) -> str:
    """First chunk of at most `chunk_size` characters, cut at the coarsest separator that fits."""
    if len(text) <= chunk_size:
        return text

    for separator in SEPARATORS:
        if not separator:
            return text[:chunk_size]
        cut = text.rfind(separator, 0, chunk_size)
        if cut > 0:
            return text[:cut].rstrip()

    return text[:chunk_size]


def trim_prompt(prompt: str, context_size: Optional[int] = None) -> str:
    """
    Trim `prompt` so it fits in `context_size` tokens.

    Removes roughly three characters per overflowing token, cutting at a
    paragraph, line, sentence or word boundary where possible, and
    repeats until the text fits. Never shortens below 140 characters.
    """
    if not prompt:
        return ""

    context_size = context_size or settings.CONTEXT_SIZE

    length = count_tokens(prompt)
    if length <= context_size:
        return prompt

    overflow = length - context_size
    chunk_size = len(prompt) - overflow * 3
    if chunk_size < MIN_CHUNK_SIZE:
        return prompt[:MIN_CHUNK_SIZE]

    trimmed = _split_first_chunk(prompt, chunk_size)
    if not trimmed or len(trimmed) >= len(prompt):
        trimmed = prompt[:chunk_size]

    return trim_prompt(trimmed, context_size)


def trim_contents(contents: List[str], budget: int, sizes=(8000, 4000, 2000, 1000, 500)) -> Optional[str]:
    """
    Join scraped contents, trimming each item harder until the whole fits.

    Returns:
        Joined text within `budget` tokens, or None if even the
        smallest per-item size is too long
    """
    joined = "\n\n".join(contents)
    tokens = count_tokens(joined)

    for size in sizes:
        if tokens <= budget:
            break
        logger.warning(
            "Scraped content too long, trimming per item",
            extra={"tokens": tokens, "budget": budget, "per_item": size}
        )
        joined = "\n\n".join(trim_prompt(c, size) for c in contents)
        tokens = count_tokens(joined)

    if tokens > budget:
        return None
    return joined


def strip_reasoning(text: str) -> str:
    """Remove <think> blocks and surrounding code fences from a model reply."""
    cleaned = _THINK_BLOCK.sub("", text or "").strip()
    return _CODE_FENCE.sub("", cleaned).strip()


def parse_json_reply(text: str) -> Any:
    """
    Decode the JSON object in a model reply.

    Tolerates reasoning blocks, code fences and prose around the object.

    Raises:
        ValueError: No JSON object could be decoded
    """
    cleaned = strip_reasoning(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("No JSON object in model reply")
    return json.loads(cleaned[start:end + 1])


def normalize_newlines(text: str) -> str:
    """Turn literal "\\n" sequences into real newlines."""
    return (text or "").replace("\\n", "\n")


__all__ = [
    "count_tokens",
    "max_context_tokens",
    "trim_prompt",
    "trim_contents",
    "strip_reasoning",
    "parse_json_reply",
    "normalize_newlines",
]
