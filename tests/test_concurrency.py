from __future__ import annotations

import pytest

from deepdive.core.concurrency import effective_concurrency, max_concurrency_for_model


@pytest.mark.parametrize("model,expected", [
    ("llama-3.3-70b", 1),
    ("qwen-2.5-72B", 1),
    ("claude-3-5-sonnet-latest", 1),
    ("deepseek-r1-671b", 1),
    ("qwq-32b", 1),
    ("yi-34b", 1),
    ("gpt-4o", 4),
    ("gpt-4o-mini", 4),
    (None, 1),
    ("", 1),
])
def test_max_concurrency_for_model(model, expected):
    assert max_concurrency_for_model(model) == expected


def test_effective_concurrency_only_lowers():
    assert effective_concurrency(8, "gpt-4o") == 4
    assert effective_concurrency(2, "gpt-4o") == 2
    assert effective_concurrency(8, "deepseek-r1-671b") == 1
    assert effective_concurrency(0, "gpt-4o") == 1
