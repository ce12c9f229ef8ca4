from __future__ import annotations

import asyncio

import pytest

from deepdive.core.engine import ResearchEngine, build_follow_up_query
from deepdive.core.state_manager import (
    CancellationToken,
    Learning,
    ResearchCancelledError,
    ScrapeOutcome,
    SubQuery,
    TopUrlCandidate,
)

from conftest import FakeExtractor, FakeSearchExecutor


def make_engine(search_executor=None, extractor=None, model="gpt-4o", **kwargs):
    return ResearchEngine(
        search_executor=search_executor or FakeSearchExecutor(),
        extractor=extractor or FakeExtractor(),
        model=model,
        **kwargs
    )


@pytest.mark.asyncio
async def test_single_level_run():
    search = FakeSearchExecutor(urls_per_query=2)
    extractor = FakeExtractor()
    engine = make_engine(search, extractor)

    result = await engine.run_research("solid state batteries", breadth=2, depth=1)

    assert [s["query"] for s in search.searches] == ["solid state batteries #0", "solid state batteries #1"]
    assert len(extractor.sub_query_calls) == 1
    assert [l.insight for l in result.learnings] == [
        "insight about solid state batteries #0",
        "insight about solid state batteries #1",
    ]
    assert len(result.visited_urls) == 4
    assert result.relevant_urls == result.visited_urls
    assert [t.url for t in result.top_urls] == result.visited_urls


@pytest.mark.asyncio
@pytest.mark.parametrize("breadth,depth", [(1, 0), (1, 1), (3, 2), (4, 3)])
async def test_run_terminates(breadth, depth):
    extractor = FakeExtractor()
    engine = make_engine(extractor=extractor)

    result = await engine.run_research("q", breadth=breadth, depth=depth)

    assert result.learnings
    assert len(extractor.sub_query_calls) <= breadth ** max(depth, 1) * max(depth, 1)


@pytest.mark.asyncio
async def test_breadth_decays_per_level():
    search = FakeSearchExecutor()
    extractor = FakeExtractor()
    engine = make_engine(search, extractor)

    await engine.run_research("q", breadth=4, depth=3)

    requested = [c["num_queries"] for c in extractor.sub_query_calls]
    assert requested[0] == 4
    assert requested.count(4) == 1
    assert requested.count(2) == 4
    assert requested.count(1) == 4 * 2
    assert len(requested) == 1 + 4 + 4 * 2
    assert len(search.searches) == 4 + 4 * 2 + 4 * 2 * 1

    follow_ups = [c["num_follow_ups"] for c in extractor.process_calls]
    assert set(follow_ups) <= {2, 1}


@pytest.mark.asyncio
async def test_deeper_levels_receive_accumulated_context():
    extractor = FakeExtractor()
    engine = make_engine(extractor=extractor)
    prior = [Learning("known fact", "Old", "https://old")]

    result = await engine.run_research("q", breadth=1, depth=2, prior_learnings=prior, visited_urls=["https://seen"])

    first, second = extractor.sub_query_calls
    assert first["learnings"] == prior
    assert [l.insight for l in second["learnings"]] == ["known fact", "insight about q #0"]
    assert second["query"] == build_follow_up_query("goal 0", ["follow-up 0"])
    assert result.learnings[0] == prior[0]
    assert result.visited_urls[0] == "https://seen"


@pytest.mark.asyncio
async def test_cancellation_before_start():
    search = FakeSearchExecutor()
    token = CancellationToken()
    token.cancel("stop")
    engine = make_engine(search)

    with pytest.raises(ResearchCancelledError):
        await engine.run_research("q", breadth=3, depth=2, cancellation_token=token)

    assert search.searches == []


@pytest.mark.asyncio
async def test_cancellation_mid_run_unwinds_every_level():
    token = CancellationToken()

    class CancellingSearch(FakeSearchExecutor):
        async def search(self, query, max_results=10, sites=None):
            token.cancel("user abort")
            return await super().search(query, max_results, sites)

    search = CancellingSearch()
    engine = make_engine(search)

    with pytest.raises(ResearchCancelledError) as exc_info:
        await engine.run_research("q", breadth=3, depth=2, cancellation_token=token)

    assert exc_info.value.reason == "user abort"
    assert len(search.searches) == 1


@pytest.mark.asyncio
async def test_in_flight_siblings_stop_after_their_current_call():
    token = CancellationToken()
    both_searching = asyncio.Event()
    cancelled = asyncio.Event()

    class RacingSearch(FakeSearchExecutor):
        async def search(self, query, max_results=10, sites=None):
            urls = await super().search(query, max_results, sites)
            if len(self.searches) == 2:
                both_searching.set()
            if query.endswith("#0"):
                await both_searching.wait()
                token.cancel("user abort")
                cancelled.set()
            else:
                await cancelled.wait()
            return urls

    search = RacingSearch()
    extractor = FakeExtractor()
    engine = make_engine(search, extractor, model="gpt-4o")

    with pytest.raises(ResearchCancelledError):
        await engine.run_research("q", breadth=2, depth=2, concurrency=2, cancellation_token=token)

    assert len(search.searches) == 2
    assert search.scrapes == []
    assert extractor.process_calls == []


@pytest.mark.asyncio
async def test_branch_failure_is_isolated():
    search = FakeSearchExecutor(fail_on=lambda q: q.endswith("#1"))
    engine = make_engine(search)

    result = await engine.run_research("q", breadth=3, depth=1)

    assert [l.insight for l in result.learnings] == ["insight about q #0", "insight about q #2"]
    assert len(result.visited_urls) == 4
    assert engine.get_statistics()["failed_branches"] == 1


@pytest.mark.asyncio
async def test_empty_sub_queries_use_templates():
    search = FakeSearchExecutor()
    engine = make_engine(search, FakeExtractor(sub_queries=lambda q, n: []))

    await engine.run_research("e-bikes", breadth=2, depth=1)

    assert [s["query"] for s in search.searches] == ["e-bikes", "e-bikes latest developments"]


@pytest.mark.asyncio
async def test_sub_query_errors_use_templates():
    def explode(query, n):
        raise RuntimeError("model down")

    search = FakeSearchExecutor()
    engine = make_engine(search, FakeExtractor(sub_queries=explode))

    await engine.run_research("e-bikes", breadth=5, depth=1)

    assert [s["query"] for s in search.searches] == [
        "e-bikes",
        "e-bikes latest developments",
        "e-bikes detailed analysis",
    ]


@pytest.mark.asyncio
async def test_extra_sub_queries_are_cut_to_breadth():
    search = FakeSearchExecutor()
    many = lambda q, n: [SubQuery(f"{q} {i}", "g") for i in range(n + 3)]
    engine = make_engine(search, FakeExtractor(sub_queries=many))

    await engine.run_research("q", breadth=2, depth=1)

    assert len(search.searches) == 2


@pytest.mark.asyncio
async def test_top_urls_truncated_to_requested_count():
    engine = make_engine(FakeSearchExecutor(urls_per_query=4))

    result = await engine.run_research("Top 2 e-bikes", breadth=1, depth=1)

    assert len(result.top_urls) == 2
    assert len(result.relevant_urls) == 4


@pytest.mark.asyncio
async def test_extraction_top_urls_replace_local_candidates():
    picks = [TopUrlCandidate("https://pick", "editor's choice")]
    engine = make_engine(extractor=FakeExtractor(top_urls=picks))

    result = await engine.run_research("q", breadth=2, depth=1)

    assert result.top_urls == picks


@pytest.mark.asyncio
async def test_recommendation_queries_ask_for_top_urls():
    extractor = FakeExtractor()
    engine = make_engine(extractor=extractor)

    await engine.run_research("best e-bike price", breadth=1, depth=1)
    await engine.run_research("e-bike history", breadth=1, depth=1)

    assert [c["include_top_urls"] for c in extractor.process_calls] == [True, False]


@pytest.mark.asyncio
async def test_failed_and_unrelated_pages():
    class MixedScrape(FakeSearchExecutor):
        async def scrape(self, urls, query):
            return [
                ScrapeOutcome(urls[0], summary="useful", is_query_related=True),
                ScrapeOutcome(urls[1], summary="", is_query_related=False),
                ScrapeOutcome.failed(urls[2]),
            ]

    extractor = FakeExtractor()
    engine = make_engine(MixedScrape(urls_per_query=3), extractor)

    result = await engine.run_research("q", breadth=1, depth=1)

    assert result.visited_urls == ["https://example.com/q-0/0", "https://example.com/q-0/1"]
    assert result.relevant_urls == ["https://example.com/q-0/0"]
    assert result.top_urls == [TopUrlCandidate("https://example.com/q-0/0", "useful")]
    assert extractor.process_calls[0]["contents"] == ["useful"]


@pytest.mark.asyncio
async def test_sites_forwarded_to_search():
    search = FakeSearchExecutor()
    engine = make_engine(search)

    await engine.run_research("q", breadth=1, depth=2, sites=["reddit.com"])

    assert all(s["sites"] == ["reddit.com"] for s in search.searches)


class ProbeSearch(FakeSearchExecutor):
    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def search(self, query, max_results=10, sites=None):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return await super().search(query, max_results, sites)


@pytest.mark.asyncio
async def test_concurrency_capped_for_large_models():
    search = ProbeSearch()
    engine = make_engine(search, model="deepseek-r1-671b")

    await engine.run_research("q", breadth=4, depth=1, concurrency=4)

    assert search.peak == 1


@pytest.mark.asyncio
async def test_branches_run_in_parallel_when_allowed():
    search = ProbeSearch()
    engine = make_engine(search, model="gpt-4o")

    await engine.run_research("q", breadth=4, depth=1, concurrency=4)

    assert search.peak > 1


@pytest.mark.asyncio
async def test_progress_callback_receives_updates():
    messages = []
    engine = make_engine(progress_callback=messages.append)

    await engine.run_research("q", breadth=1, depth=1)

    assert messages[0] == "Depth: 1, Breadth: 1"
    assert any(m.startswith('Searching "q #0"') for m in messages)


def test_build_follow_up_query():
    assert build_follow_up_query("Compare costs", ["Why?", "How much?"]) == (
        "Previous research goal: Compare costs\nFollow-up research directions: \nWhy?\nHow much?"
    )
    assert build_follow_up_query("Goal", []) == "Previous research goal: Goal\nFollow-up research directions:"
