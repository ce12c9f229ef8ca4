"""
Research Engine - Recursive Research Orchestration

Walks the research tree for a query:

    query ──► sub-queries (breadth) ──► per sub-query branch:
                                          search → scrape → extract
                                          depth left? ──► recurse with
                                          follow-up directions,
                                          breadth halved, depth - 1
          ◄── merge sibling results ◄──────────────┘

Algorithm Overview:
1. Check the cancellation token
2. Cap concurrency for the selected model
3. Generate up to `breadth` sub-queries (prior learnings as context)
4. Run every sub-query branch, at most `concurrency` at a time
5. Merge branch results (learnings concatenated, URLs unioned, top URLs
   last-write-wins) and keep the top N recommendations

Failure Handling:
- Cancellation raises ResearchCancelledError through every level
- Any other error inside a branch is logged and the branch contributes
  an empty result; siblings are unaffected
- Retrieval and extraction never raise; they return empty/fallback values

Design Decisions:
- Plain async recursion, one asyncio.Semaphore per level
- Within a branch the steps are sequential; the token is checked
  before each retrieval or extraction step so siblings of a cancelled
  branch stop after their current call
- The "top N" count is read from the query in scope at each level
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from config.logging_config import get_logger, log_event, log_search_execution
from config.settings import settings
from deepdive.core.concurrency import effective_concurrency
from deepdive.core.state_manager import (
    CancellationToken,
    Learning,
    ResearchCancelledError,
    ResearchResult,
    ResearchTask,
    SubQuery,
    TopUrlCandidate,
    merge_results,
    merge_top_urls,
    next_breadth,
    recommended_count,
    unique_in_order,
    wants_top_urls,
)
from deepdive.extraction.extractor import InsightExtractor, fallback_sub_queries
from deepdive.search.executor import SearchExecutor

logger = get_logger(__name__)

LEARNINGS_PER_QUERY = 3


def build_follow_up_query(research_goal: str, follow_up_questions: List[str]) -> str:
    """
    Query for the next level of a branch.

    Example:
        >>> build_follow_up_query("Compare costs", ["What drives cell prices?"])
        'Previous research goal: Compare costs\\nFollow-up research directions: \\nWhat drives cell prices?'
    """
    directions = "".join(f"\n{q}" for q in follow_up_questions)
    return f"Previous research goal: {research_goal}\nFollow-up research directions: {directions}".strip()


class ResearchEngine:
    """
    Recursive research orchestrator.

    Example:
        >>> engine = create_engine(model="gpt-4o")
        >>> result = await engine.run_research("solid state batteries", breadth=4, depth=2)
        >>> print(len(result.learnings), len(result.visited_urls))
    """

    def __init__(
        self,
        search_executor: SearchExecutor,
        extractor: InsightExtractor,
        model: Optional[str] = None,
        max_results_per_query: int = 10,
        execution_logger: Optional[logging.Logger] = None,
        run_id: Optional[str] = None,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize research engine.

        Args:
            search_executor: Retrieval collaborator (search + scrape)
            extractor: Insight extraction collaborator
            model: Selected model id, used for the concurrency cap
                   (None allows no parallelism)
            max_results_per_query: URLs requested per sub-query search
            execution_logger: JSONL execution log for this run
            run_id: Identifier written with every execution log event
            progress_callback: Receives short human-readable progress lines
        """
        self.search_executor = search_executor
        self.extractor = extractor
        self.model = model
        self.max_results_per_query = max_results_per_query
        self.execution_logger = execution_logger
        self.run_id = run_id
        self.progress_callback = progress_callback

        self.stats = {
            "levels": 0,
            "branches": 0,
            "failed_branches": 0,
            "searches": 0
        }

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def run_research(
        self,
        query: str,
        breadth: int,
        depth: int,
        *,
        prior_learnings: Optional[List[Learning]] = None,
        visited_urls: Optional[List[str]] = None,
        concurrency: int = 1,
        sites: Optional[List[str]] = None,
        cancellation_token: Optional[CancellationToken] = None
    ) -> ResearchResult:
        """
        Research `query` to the given breadth and depth.

        Raises:
            ResearchCancelledError: The token was signalled during the run
            ValueError: breadth < 1, depth < 0 or concurrency < 1
        """
        task = ResearchTask(
            query=query,
            breadth=breadth,
            depth=depth,
            learnings=list(prior_learnings or []),
            visited_urls=list(visited_urls or []),
            cancellation_token=cancellation_token or CancellationToken(),
            concurrency=concurrency,
            sites=sites
        )
        return await self.run(task)

    async def run(self, task: ResearchTask) -> ResearchResult:
        """Run one level of the research tree (and everything below it)."""
        task.cancellation_token.raise_if_cancelled()

        self.stats["levels"] += 1
        limit = effective_concurrency(task.concurrency, self.model)

        logger.info(
            "Research level started",
            extra={"query": task.query, "breadth": task.breadth, "depth": task.depth, "concurrency": limit}
        )
        self._progress(f"Depth: {task.depth}, Breadth: {task.breadth}")

        sub_queries = await self._plan(task)

        semaphore = asyncio.Semaphore(limit)

        async def bounded(sub_query: SubQuery) -> ResearchResult:
            async with semaphore:
                return await self._run_branch(task, sub_query)

        outcomes = await asyncio.gather(
            *(bounded(sq) for sq in sub_queries),
            return_exceptions=True
        )

        # Branches only let cancellation (or loop-level cancellation) escape
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        merged = merge_results(outcomes)
        if merged.top_urls:
            merged.top_urls = merged.top_urls[:recommended_count(task.query)]

        logger.info(
            "Research level completed",
            extra={
                "depth": task.depth,
                "learnings": len(merged.learnings),
                "visited_urls": len(merged.visited_urls),
                "top_urls": len(merged.top_urls),
                "relevant_urls": len(merged.relevant_urls)
            }
        )
        return merged

    def get_statistics(self):
        return dict(self.stats)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    async def _plan(self, task: ResearchTask) -> List[SubQuery]:
        try:
            outcome = await self.extractor.generate_sub_queries(
                task.query, task.breadth, task.learnings
            )
            sub_queries = outcome.value[:task.breadth]
        except Exception as e:
            logger.error("Sub-query generation failed", extra={"error": str(e)})
            sub_queries = []

        if not sub_queries:
            sub_queries = fallback_sub_queries(task.query, task.breadth)

        log_event(self.execution_logger, "subqueries_generated", self.run_id, {
            "query": task.query,
            "depth": task.depth,
            "sub_queries": [sq.to_dict() for sq in sub_queries]
        })
        return sub_queries

    async def _run_branch(self, task: ResearchTask, sub_query: SubQuery) -> ResearchResult:
        task.cancellation_token.raise_if_cancelled()
        self.stats["branches"] += 1

        try:
            return await self._explore(task, sub_query)
        except ResearchCancelledError:
            raise
        except Exception as e:
            self.stats["failed_branches"] += 1
            logger.error(
                "Research branch failed",
                extra={"query": sub_query.query, "error": str(e), "error_type": type(e).__name__}
            )
            log_event(self.execution_logger, "subquery_failed", self.run_id, {
                "query": sub_query.query,
                "error": str(e)
            }, level=logging.ERROR)
            return ResearchResult.empty()

    async def _explore(self, task: ResearchTask, sub_query: SubQuery) -> ResearchResult:
        self._progress(f'Searching "{sub_query.query}"...')

        start = time.time()
        urls = await self.search_executor.search(
            sub_query.query,
            max_results=self.max_results_per_query,
            sites=task.sites
        )
        self.stats["searches"] += 1
        log_search_execution(self.execution_logger, self.run_id, sub_query.query, len(urls), time.time() - start)
        self._progress(f'Found {len(urls)} results for "{sub_query.query}". Processing...')

        task.cancellation_token.raise_if_cancelled()
        outcomes = await self.search_executor.scrape(urls, sub_query.query)
        task.cancellation_token.raise_if_cancelled()

        valid = [o for o in outcomes if o.summary is not None]
        flagged = [o for o in outcomes if o.is_query_related]
        visited = [o.url for o in valid]
        relevant = unique_in_order(o.url for o in flagged)
        candidates = merge_top_urls(
            TopUrlCandidate(url=o.url, description=o.summary or "") for o in flagged
        )

        processed = await self.extractor.process_result(
            sub_query.query,
            [o.summary for o in valid if o.summary],
            num_learnings=LEARNINGS_PER_QUERY,
            num_follow_ups=next_breadth(task.breadth),
            include_top_urls=wants_top_urls(sub_query.query)
        )
        task.cancellation_token.raise_if_cancelled()

        result = processed.value
        top_urls = result.top_urls or candidates

        self._progress(f'Processed "{sub_query.query}": {len(result.learnings)} learnings.')
        log_event(self.execution_logger, "subquery_completed", self.run_id, {
            "query": sub_query.query,
            "urls": len(urls),
            "visited": len(visited),
            "relevant": len(relevant),
            "learnings": len(result.learnings),
            "used_fallback": processed.used_fallback
        })

        all_learnings = [*task.learnings, *result.learnings]
        all_urls = unique_in_order([*task.visited_urls, *visited])

        if task.depth - 1 > 0:
            next_task = task.child(
                build_follow_up_query(sub_query.research_goal, result.follow_up_questions),
                all_learnings,
                all_urls
            )
            logger.info(
                "Researching deeper",
                extra={"next_breadth": next_task.breadth, "next_depth": next_task.depth}
            )
            deeper = await self.run(next_task)
            return ResearchResult(
                learnings=deeper.learnings,
                visited_urls=deeper.visited_urls,
                top_urls=[*top_urls, *deeper.top_urls],
                relevant_urls=[*relevant, *deeper.relevant_urls]
            )

        return ResearchResult(
            learnings=all_learnings,
            visited_urls=all_urls,
            top_urls=list(top_urls),
            relevant_urls=relevant
        )

    def _progress(self, message: str) -> None:
        if self.progress_callback is not None:
            self.progress_callback(message)


def create_engine(
    model: Optional[str] = None,
    search_executor: Optional[SearchExecutor] = None,
    extractor: Optional[InsightExtractor] = None,
    **kwargs
) -> ResearchEngine:
    """
    Factory function to create a research engine from settings.

    Example:
        >>> engine = create_engine(model="deepseek-r1-671b")
    """
    from deepdive.search.executor import create_search_executor

    return ResearchEngine(
        search_executor=search_executor or create_search_executor(),
        extractor=extractor or InsightExtractor(model=model),
        model=model,
        max_results_per_query=kwargs.pop("max_results_per_query", settings.SEARCH_MAX_RESULTS),
        **kwargs
    )


__all__ = ["ResearchEngine", "create_engine", "build_follow_up_query"]
