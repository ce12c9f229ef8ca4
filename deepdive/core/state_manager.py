"""
Research State Management

This module defines the data that flows through a research run: the task
handed to every recursion level, the values the retrieval and extraction
collaborators exchange with the engine, and the aggregate a level returns.

Design Decisions:
-----------------
1. Dataclasses with to_dict(): results are written to JSON by the CLI
2. Learnings are immutable and never deduplicated (order carries meaning)
3. Visited and relevant URLs keep first-seen order
4. Top-URL candidates merge by URL, last write wins
5. Cancellation is a shared set-once token, checked cooperatively

Architecture Pattern:
--------------------
  ResearchTask (entry) → per sub-query branch → ResearchTask (depth - 1,
  breadth halved) → ... → ResearchResult per branch → merge_results()
  → ResearchResult for the level
"""

import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


# ============================================================================
# ENUMS & EXCEPTIONS
# ============================================================================

class ResearchStage(str, Enum):
    """Stages bracketed in the execution log of a run."""
    DEEP_RESEARCH = "deep_research"
    REPORT_GENERATION = "report_generation"


class ResearchError(Exception):
    """Base class for research engine errors."""


class ResearchCancelledError(ResearchError):
    """The run's cancellation token was signalled."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(f"Research cancelled: {reason}" if reason else "Research cancelled")


# ============================================================================
# CANCELLATION
# ============================================================================

class CancellationToken:
    """
    Shared, set-once cancellation flag for one research run.

    Every level and branch of the research tree holds the same token.
    Once cancelled it stays cancelled; a second cancel() keeps the
    first reason.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel("user abort")
        >>> token.raise_if_cancelled()
        Traceback (most recent call last):
        ...
        ResearchCancelledError: Research cancelled: user abort
    """

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ResearchCancelledError(self._reason)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class SubQuery:
    """A generated search query and the goal it serves."""
    query: str
    research_goal: str

    def to_dict(self) -> Dict[str, Any]:
        return {"query": self.query, "research_goal": self.research_goal}


@dataclass(frozen=True)
class Learning:
    """
    One insight extracted from scraped content, with its source.

    Attributes:
        insight: The finding itself
        source_title: Title of the page it came from
        source_url: URL it came from
    """
    insight: str
    source_title: str
    source_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "insight": self.insight,
            "source_title": self.source_title,
            "source_url": self.source_url
        }


@dataclass
class ScrapeOutcome:
    """
    Result of scraping one URL.

    `summary` is None when the page could not be fetched or summarized;
    an empty string is a successful scrape with nothing to say.
    """
    url: str
    summary: Optional[str] = None
    is_query_related: bool = False
    related_urls: Tuple[str, ...] = ()

    @classmethod
    def failed(cls, url: str, related_urls: Tuple[str, ...] = ()) -> "ScrapeOutcome":
        return cls(url=url, related_urls=related_urls)

    @property
    def succeeded(self) -> bool:
        return self.summary is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "summary": self.summary,
            "is_query_related": self.is_query_related,
            "related_urls": list(self.related_urls)
        }


@dataclass
class TopUrlCandidate:
    """A source recommended to the user, with a short description."""
    url: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "description": self.description}


@dataclass
class ResearchTask:
    """
    Input of one recursion level.

    Invariants:
        breadth >= 1, depth >= 0 (checked on construction)
    """
    query: str
    breadth: int
    depth: int
    learnings: List[Learning] = field(default_factory=list)
    visited_urls: List[str] = field(default_factory=list)
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    concurrency: int = 1
    sites: Optional[List[str]] = None

    def __post_init__(self):
        if self.breadth < 1:
            raise ValueError(f"breadth must be >= 1, got {self.breadth}")
        if self.depth < 0:
            raise ValueError(f"depth must be >= 0, got {self.depth}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")

    def child(
        self,
        query: str,
        learnings: List[Learning],
        visited_urls: List[str]
    ) -> "ResearchTask":
        """Task for the next level down: depth - 1, breadth halved (rounded up)."""
        return ResearchTask(
            query=query,
            breadth=next_breadth(self.breadth),
            depth=self.depth - 1,
            learnings=learnings,
            visited_urls=visited_urls,
            cancellation_token=self.cancellation_token,
            concurrency=self.concurrency,
            sites=self.sites
        )


@dataclass
class ResearchResult:
    """Aggregate returned by a branch or a level."""
    learnings: List[Learning] = field(default_factory=list)
    visited_urls: List[str] = field(default_factory=list)
    top_urls: List[TopUrlCandidate] = field(default_factory=list)
    relevant_urls: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "ResearchResult":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.learnings or self.visited_urls or self.top_urls or self.relevant_urls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learnings": [l.to_dict() for l in self.learnings],
            "visited_urls": list(self.visited_urls),
            "top_urls": [t.to_dict() for t in self.top_urls],
            "relevant_urls": list(self.relevant_urls)
        }


# ============================================================================
# HELPERS
# ============================================================================

TOP_N_PATTERN = re.compile(r"top\s+(\d+)", re.IGNORECASE)
DEFAULT_TOP_N = 5


def next_breadth(breadth: int) -> int:
    """Breadth of the next level: ceil(b / 2), never below 1."""
    return max(1, math.ceil(breadth / 2))


def unique_in_order(items: Iterable[str]) -> List[str]:
    """Drop repeats, keeping the first occurrence of each item."""
    seen = set()
    ordered = []
    for item in items:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def merge_top_urls(candidates: Iterable[TopUrlCandidate]) -> List[TopUrlCandidate]:
    """
    Merge candidates keyed by URL.

    A later candidate for the same URL replaces the earlier description
    but keeps the URL's original position.
    """
    merged: Dict[str, TopUrlCandidate] = {}
    for candidate in candidates:
        merged[candidate.url] = candidate
    return list(merged.values())


def merge_results(results: Iterable[ResearchResult]) -> ResearchResult:
    """
    Combine sibling branch results.

    Learnings are concatenated, visited and relevant URLs are unioned in
    first-seen order, top URLs are merged last-write-wins.
    """
    results = list(results)
    return ResearchResult(
        learnings=[l for r in results for l in r.learnings],
        visited_urls=unique_in_order(u for r in results for u in r.visited_urls),
        top_urls=merge_top_urls(t for r in results for t in r.top_urls),
        relevant_urls=unique_in_order(u for r in results for u in r.relevant_urls)
    )


def recommended_count(query: str, default: int = DEFAULT_TOP_N) -> int:
    """
    How many top URLs to keep: "top N" in the query, else the default.

    Example:
        >>> recommended_count("Top 3 budget laptops")
        3
        >>> recommended_count("budget laptops")
        5
    """
    match = TOP_N_PATTERN.search(query or "")
    if match:
        return int(match.group(1))
    return default


def wants_top_urls(query: str) -> bool:
    """Recommendation queries: mention "best" together with price or quality."""
    lowered = (query or "").lower()
    return "best" in lowered and ("price" in lowered or "quality" in lowered)


__all__ = [
    "ResearchStage",
    "ResearchError",
    "ResearchCancelledError",
    "CancellationToken",
    "SubQuery",
    "Learning",
    "ScrapeOutcome",
    "TopUrlCandidate",
    "ResearchTask",
    "ResearchResult",
    "next_breadth",
    "unique_in_order",
    "merge_top_urls",
    "merge_results",
    "recommended_count",
    "wants_top_urls",
]
