"""
Shared test doubles.

In-memory stand-ins for the HTTP transport, the retrieval collaborator,
the extraction collaborator and a model client. Nothing here touches the
network.
"""

from __future__ import annotations

import re
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from deepdive.core.state_manager import Learning, ScrapeOutcome, SubQuery
from deepdive.extraction.extractor import ExtractionOutcome, Feedback, ProcessedResult
from deepdive.search.endpoints import EndpointPool
from deepdive.search.executor import HttpResponse, SearchExecutor


def slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")[:40]


class FakeTransport:
    """
    Scripted transport.

    `handler(call)` decides the answer for each request; without a
    handler the queued `responses` are returned in order. Returning an
    exception instance raises it.
    """

    def __init__(self, responses: Optional[List[Any]] = None, handler: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []

    async def request(self, method, url, headers=None, params=None, json_body=None, timeout=None):
        call = {
            "method": method,
            "url": url,
            "headers": dict(headers or {}),
            "params": list(params or []),
            "json": json_body,
        }
        self.calls.append(call)

        result = self.handler(call) if self.handler else self.responses.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def search_response(urls: List[str]) -> HttpResponse:
    return HttpResponse(status=200, payload={"results": list(urls)})


def scrape_item(url: str, summary: str = "", related: bool = True, related_urls=None, status: int = 200, error=None):
    item = {"url": url, "status": status, "Summary": summary or f"summary of {url}", "IsQueryRelated": related}
    if related_urls is not None:
        item["relatedURLs"] = list(related_urls)
    if error:
        item["error"] = error
    return item


def scrape_response(items: List[Dict[str, Any]]) -> HttpResponse:
    return HttpResponse(status=200, payload={"scraped": items})


@pytest.fixture
def pool():
    return EndpointPool(["a.example.com", "b.example.com"])


@pytest.fixture
def make_executor(pool):
    def factory(transport: FakeTransport, api_key: Optional[str] = "test-key", min_results: int = 3) -> SearchExecutor:
        return SearchExecutor(
            api_key=api_key,
            endpoint_pool=pool,
            transport=transport,
            min_results=min_results,
            search_timeout=5,
            scrape_timeout=5,
        )
    return factory


class FakeSearchExecutor:
    """Retrieval double: a few URLs per query, every page query-related."""

    def __init__(self, urls_per_query: int = 2, fail_on: Optional[Callable[[str], bool]] = None):
        self.urls_per_query = urls_per_query
        self.fail_on = fail_on
        self.searches: List[Dict[str, Any]] = []
        self.scrapes: List[Dict[str, Any]] = []

    async def search(self, query, max_results=10, sites=None):
        self.searches.append({"query": query, "max_results": max_results, "sites": sites})
        if self.fail_on and self.fail_on(query):
            raise RuntimeError(f"boom: {query}")
        return [f"https://example.com/{slug(query)}/{i}" for i in range(self.urls_per_query)]

    async def scrape(self, urls, query):
        self.scrapes.append({"urls": list(urls), "query": query})
        return [ScrapeOutcome(url=u, summary=f"summary of {u}", is_query_related=True) for u in urls]


class FakeExtractor:
    """Extraction double: numbered sub-queries, one learning per processed batch."""

    def __init__(self, sub_queries: Optional[Callable[[str, int], List[SubQuery]]] = None, top_urls=None):
        self.sub_queries = sub_queries
        self.top_urls = top_urls or []
        self.client = None
        self.sub_query_calls: List[Dict[str, Any]] = []
        self.process_calls: List[Dict[str, Any]] = []
        self.report_calls: List[Dict[str, Any]] = []

    async def generate_sub_queries(self, query, num_queries=3, learnings=None):
        self.sub_query_calls.append({"query": query, "num_queries": num_queries, "learnings": list(learnings or [])})
        if self.sub_queries is not None:
            return ExtractionOutcome.success(self.sub_queries(query, num_queries))
        return ExtractionOutcome.success([
            SubQuery(query=f"{query} #{i}", research_goal=f"goal {i}") for i in range(num_queries)
        ])

    async def process_result(self, query, contents, num_learnings=3, num_follow_ups=3, include_top_urls=False):
        self.process_calls.append({
            "query": query,
            "contents": list(contents),
            "num_learnings": num_learnings,
            "num_follow_ups": num_follow_ups,
            "include_top_urls": include_top_urls,
        })
        return ExtractionOutcome.success(ProcessedResult(
            learnings=[Learning(insight=f"insight about {query}", source_title="Title", source_url="https://example.com")],
            follow_up_questions=[f"follow-up {i}" for i in range(num_follow_ups)],
            top_urls=list(self.top_urls),
        ))

    async def write_final_report(self, prompt, learnings, language=None):
        self.report_calls.append({"prompt": prompt, "learnings": list(learnings), "language": language})
        return ExtractionOutcome.success(f"# Report\n\n{len(learnings)} learnings")

    async def generate_feedback(self, query, num_questions=3):
        return ExtractionOutcome.success(Feedback(questions=["Budget?", "Region?"][:num_questions], language="English"))


class FakeModelClient:
    """
    Model client double.

    `replies` is either a list consumed in order or a dict keyed by
    TaskType. Each call adds 10 prompt and 5 completion tokens.
    """

    def __init__(self, replies=None, error: Optional[BaseException] = None):
        self.replies = replies if isinstance(replies, dict) else list(replies or [])
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.config = SimpleNamespace(prompt_tokens=0, completion_tokens=0)

    async def call(self, prompt, system_prompt=None, task_type=None, **kwargs):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "task_type": task_type, **kwargs})
        if self.error is not None:
            raise self.error

        reply = self.replies[task_type] if isinstance(self.replies, dict) else self.replies.pop(0)
        self.config.prompt_tokens += 10
        self.config.completion_tokens += 5
        return SimpleNamespace(content=reply)


__all__ = [
    "FakeTransport",
    "FakeSearchExecutor",
    "FakeExtractor",
    "FakeModelClient",
    "search_response",
    "scrape_item",
    "scrape_response",
    "slug",
]
