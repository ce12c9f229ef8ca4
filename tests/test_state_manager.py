from __future__ import annotations

import pytest

from deepdive.core.state_manager import (
    CancellationToken,
    Learning,
    ResearchCancelledError,
    ResearchResult,
    ResearchTask,
    ScrapeOutcome,
    TopUrlCandidate,
    merge_results,
    merge_top_urls,
    next_breadth,
    recommended_count,
    unique_in_order,
    wants_top_urls,
)


def learning(text):
    return Learning(insight=text, source_title="T", source_url="https://t")


@pytest.mark.parametrize("breadth,expected", [(1, 1), (2, 1), (3, 2), (4, 2), (5, 3), (10, 5)])
def test_next_breadth_halves_rounding_up(breadth, expected):
    assert next_breadth(breadth) == expected


def test_top_url_merge_last_write_wins():
    merged = merge_top_urls([
        TopUrlCandidate("a", "x"),
        TopUrlCandidate("b", "first b"),
        TopUrlCandidate("a", "y"),
    ])

    assert merged == [TopUrlCandidate("a", "y"), TopUrlCandidate("b", "first b")]


def test_merge_results_across_siblings():
    left = ResearchResult(
        learnings=[learning("shared"), learning("left")],
        visited_urls=["u1", "u2"],
        top_urls=[TopUrlCandidate("a", "x")],
        relevant_urls=["u1"],
    )
    right = ResearchResult(
        learnings=[learning("shared")],
        visited_urls=["u2", "u3"],
        top_urls=[TopUrlCandidate("a", "y")],
        relevant_urls=["u3", "u1"],
    )

    merged = merge_results([left, right])

    assert [l.insight for l in merged.learnings] == ["shared", "left", "shared"]
    assert merged.visited_urls == ["u1", "u2", "u3"]
    assert merged.top_urls == [TopUrlCandidate("a", "y")]
    assert merged.relevant_urls == ["u1", "u3"]


def test_visited_merge_is_idempotent_and_order_independent():
    a = ResearchResult(visited_urls=["u1", "u2"])
    b = ResearchResult(visited_urls=["u2", "u3"])

    once = merge_results([a, b])
    twice = merge_results([a, b, a, b])
    reversed_order = merge_results([b, a])

    assert set(once.visited_urls) == set(twice.visited_urls) == set(reversed_order.visited_urls)
    assert len(twice.visited_urls) == 3


def test_merge_of_nothing_is_empty():
    assert merge_results([]).is_empty


def test_unique_in_order():
    assert unique_in_order(["b", "a", "b", "c", "a"]) == ["b", "a", "c"]


@pytest.mark.parametrize("query,expected", [
    ("Top 3 vector databases", 3),
    ("the TOP   10 cities", 10),
    ("vector databases", 5),
    ("", 5),
])
def test_recommended_count(query, expected):
    assert recommended_count(query) == expected


def test_wants_top_urls():
    assert wants_top_urls("Best e-bike under $1500 price")
    assert wants_top_urls("best quality headphones")
    assert not wants_top_urls("best e-bikes")
    assert not wants_top_urls("price of e-bikes")


def test_cancellation_token_is_set_once():
    token = CancellationToken()
    token.raise_if_cancelled()

    token.cancel("user abort")
    token.cancel("second reason")

    assert token.cancelled
    assert token.reason == "user abort"
    with pytest.raises(ResearchCancelledError) as exc_info:
        token.raise_if_cancelled()
    assert exc_info.value.reason == "user abort"


@pytest.mark.parametrize("kwargs", [
    {"breadth": 0, "depth": 1},
    {"breadth": 2, "depth": -1},
    {"breadth": 2, "depth": 1, "concurrency": 0},
])
def test_task_validation(kwargs):
    with pytest.raises(ValueError):
        ResearchTask(query="q", **kwargs)


def test_child_task_decays_and_shares_token():
    token = CancellationToken()
    parent = ResearchTask(query="q", breadth=5, depth=3, cancellation_token=token, concurrency=2, sites=["a.com"])

    child = parent.child("next", [learning("x")], ["u1"])

    assert (child.breadth, child.depth) == (3, 2)
    assert child.cancellation_token is token
    assert child.concurrency == 2
    assert child.sites == ["a.com"]
    assert child.learnings == [learning("x")]


def test_scrape_outcome_states():
    assert not ScrapeOutcome.failed("u").succeeded
    assert ScrapeOutcome("u", summary="").succeeded
    assert ScrapeOutcome("u", summary="s", related_urls=("r",)).to_dict()["related_urls"] == ["r"]


def test_result_to_dict():
    result = ResearchResult(
        learnings=[learning("x")],
        visited_urls=["u1"],
        top_urls=[TopUrlCandidate("u1", "desc")],
        relevant_urls=["u1"],
    )

    assert result.to_dict() == {
        "learnings": [{"insight": "x", "source_title": "T", "source_url": "https://t"}],
        "visited_urls": ["u1"],
        "top_urls": [{"url": "u1", "description": "desc"}],
        "relevant_urls": ["u1"],
    }
