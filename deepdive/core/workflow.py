"""
Research Workflow

End-to-end research run around the engine:
- Clarification: follow-up questions for the user's query
- Deep research: the recursive engine under a time limit
- Report generation: Markdown report under its own time limit
- Abort: cooperative cancellation of an ongoing run by research id
- Execution log: JSONL audit trail with a token usage summary

Time limits never fail a run: an expired research stage yields an empty
result and an expired report stage yields a plain fallback report.
Cancellation is the one outcome that surfaces as an exception.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from config.logging_config import (
    close_execution_logging,
    get_logger,
    log_event,
    log_run_summary,
    log_stage,
    setup_execution_logging,
)
from config.settings import settings
from deepdive.core.engine import ResearchEngine
from deepdive.core.state_manager import (
    CancellationToken,
    Learning,
    ResearchCancelledError,
    ResearchResult,
    ResearchStage,
)
from deepdive.extraction.extractor import Feedback, InsightExtractor
from deepdive.search.executor import SearchExecutor, create_search_executor

logger = get_logger(__name__)


def timeout_report(query: str, learnings: List[Learning]) -> str:
    """Report used when report writing runs out of time."""
    insights = ", ".join(l.insight for l in learnings)
    return f"# Research Report\n\nQuery: {query}\n\nFallback report generated due to timeout. Learnings: {insights}"


@dataclass
class ResearchReport:
    """
    Everything a finished run produced.

    Attributes:
        research_id: Id the run was registered under
        query: Query the engine researched
        result: Merged research result
        report: Markdown report
        language: Report language
        research_timed_out: The research stage hit its time limit
        report_fallback: The report is a fallback, not model output
        duration_seconds: Wall time of the run
        prompt_tokens: Prompt tokens spent during the run
        completion_tokens: Completion tokens spent during the run
    """
    research_id: str
    query: str
    result: ResearchResult
    report: str
    language: str = "English"
    research_timed_out: bool = False
    report_fallback: bool = False
    duration_seconds: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "research_id": self.research_id,
            "query": self.query,
            **self.result.to_dict(),
            "report": self.report,
            "language": self.language,
            "research_timed_out": self.research_timed_out,
            "report_fallback": self.report_fallback,
            "duration_seconds": round(self.duration_seconds, 3),
            "tokens": {
                "prompt": self.prompt_tokens,
                "completion": self.completion_tokens,
                "total": self.prompt_tokens + self.completion_tokens
            },
            "metadata": self.metadata
        }


class ResearchWorkflow:
    """
    Primary entry point for a full research run.

    Example:
        >>> workflow = ResearchWorkflow(model="gpt-4o")
        >>> feedback = await workflow.clarify("Best budget e-bikes")
        >>> query = ResearchWorkflow.combine_query("Best budget e-bikes", feedback.questions, answers)
        >>> report = await workflow.execute(query, breadth=4, depth=2)
        >>> print(report.report)
    """

    def __init__(
        self,
        model: Optional[str] = None,
        search_executor: Optional[SearchExecutor] = None,
        extractor: Optional[InsightExtractor] = None,
        research_timeout: Optional[float] = None,
        report_timeout: Optional[float] = None,
        log_dir: Optional[str] = None
    ):
        """
        Initialize research workflow.

        Args:
            model: Selected model id (settings.DEFAULT_MODEL when None)
            search_executor: Retrieval collaborator (built from settings if None)
            extractor: Extraction collaborator (built for `model` if None)
            research_timeout: Seconds for the research stage
            report_timeout: Seconds for the report stage
            log_dir: Write a JSONL execution log per run here (None = no log)
        """
        self.model = model or settings.DEFAULT_MODEL
        self.search_executor = search_executor or create_search_executor()
        self.extractor = extractor or InsightExtractor(model=self.model)
        self.research_timeout = research_timeout or settings.RESEARCH_TIMEOUT
        self.report_timeout = report_timeout or settings.REPORT_TIMEOUT
        self.log_dir = log_dir

        self.ongoing: Dict[str, CancellationToken] = {}

        logger.info(
            "Research workflow initialized",
            extra={
                "model": self.model,
                "research_timeout": self.research_timeout,
                "report_timeout": self.report_timeout
            }
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def clarify(self, query: str, num_questions: int = 3) -> Feedback:
        """Clarifying questions for `query` and the language it is written in."""
        outcome = await self.extractor.generate_feedback(query, num_questions)
        return outcome.value

    @staticmethod
    def combine_query(query: str, questions: List[str], answers: List[str]) -> str:
        """
        Fold the user's answers into the research query.

        Example:
            >>> print(ResearchWorkflow.combine_query("e-bikes", ["Budget?"], ["Under $1000"]))
            Initial Query: e-bikes
            Follow-up Questions and Answers:
            Q: Budget?
            A: Under $1000
        """
        pairs = "\n".join(
            f"Q: {q}\nA: {answers[i] if i < len(answers) else ''}"
            for i, q in enumerate(questions)
        )
        return f"Initial Query: {query}\nFollow-up Questions and Answers:\n{pairs}"

    async def execute(
        self,
        query: str,
        breadth: int = None,
        depth: int = None,
        *,
        concurrency: int = None,
        sites: Optional[List[str]] = None,
        prior_learnings: Optional[List[Learning]] = None,
        language: Optional[str] = None,
        research_id: Optional[str] = None,
        progress_callback: Optional[Callable[[str], None]] = None
    ) -> ResearchReport:
        """
        Research `query` and write the report.

        The run is registered under `research_id` until it finishes so
        abort() can reach it.

        Raises:
            ResearchCancelledError: The run was aborted
            ValueError: Invalid breadth/depth/concurrency, or a duplicate research id
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")

        breadth = settings.DEFAULT_BREADTH if breadth is None else breadth
        depth = settings.DEFAULT_DEPTH if depth is None else depth
        concurrency = settings.DEFAULT_CONCURRENCY if concurrency is None else concurrency
        research_id = research_id or uuid.uuid4().hex[:12]

        if breadth < 1:
            raise ValueError(f"breadth must be >= 1, got {breadth}")
        if depth < 0:
            raise ValueError(f"depth must be >= 0, got {depth}")
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")

        if research_id in self.ongoing:
            raise ValueError(f"research {research_id} is already running")

        token = CancellationToken()
        self.ongoing[research_id] = token

        exec_logger = (
            setup_execution_logging(research_id, log_dir=self.log_dir)
            if self.log_dir else None
        )
        start_tokens = self._token_usage()
        start_time = time.time()

        log_event(exec_logger, "research_started", research_id, {
            "query": query,
            "breadth": breadth,
            "depth": depth,
            "concurrency": concurrency,
            "model": self.model,
            "sites": sites or []
        })

        try:
            engine = ResearchEngine(
                search_executor=self.search_executor,
                extractor=self.extractor,
                model=self.model,
                max_results_per_query=settings.SEARCH_MAX_RESULTS,
                execution_logger=exec_logger,
                run_id=research_id,
                progress_callback=progress_callback
            )

            research_timed_out = False
            with log_stage(exec_logger, ResearchStage.DEEP_RESEARCH.value, research_id):
                try:
                    result = await asyncio.wait_for(
                        engine.run_research(
                            query,
                            breadth,
                            depth,
                            prior_learnings=prior_learnings,
                            concurrency=concurrency,
                            sites=sites,
                            cancellation_token=token
                        ),
                        timeout=self.research_timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Research timed out, continuing with an empty result",
                        extra={"research_id": research_id, "timeout": self.research_timeout}
                    )
                    research_timed_out = True
                    result = ResearchResult.empty()

            token.raise_if_cancelled()

            with log_stage(exec_logger, ResearchStage.REPORT_GENERATION.value, research_id):
                try:
                    outcome = await asyncio.wait_for(
                        self.extractor.write_final_report(query, result.learnings, language),
                        timeout=self.report_timeout
                    )
                    report, report_fallback = outcome.value, outcome.used_fallback
                except asyncio.TimeoutError:
                    logger.warning(
                        "Report writing timed out, using fallback report",
                        extra={"research_id": research_id, "timeout": self.report_timeout}
                    )
                    report, report_fallback = timeout_report(query, result.learnings), True

            prompt_tokens, completion_tokens = self._token_usage_since(start_tokens)
            duration = time.time() - start_time

            log_run_summary(exec_logger, research_id, duration, prompt_tokens, completion_tokens)
            logger.info(
                "Research completed",
                extra={
                    "research_id": research_id,
                    "learnings": len(result.learnings),
                    "visited_urls": len(result.visited_urls),
                    "duration_seconds": round(duration, 1),
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens
                }
            )

            return ResearchReport(
                research_id=research_id,
                query=query,
                result=result,
                report=report,
                language=language or "English",
                research_timed_out=research_timed_out,
                report_fallback=report_fallback,
                duration_seconds=duration,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                metadata={
                    "model": self.model,
                    "breadth": breadth,
                    "depth": depth,
                    "engine": engine.get_statistics()
                }
            )

        except ResearchCancelledError as e:
            log_event(exec_logger, "research_cancelled", research_id, {"reason": e.reason})
            logger.warning("Research cancelled", extra={"research_id": research_id, "reason": e.reason})
            raise

        finally:
            self.ongoing.pop(research_id, None)
            if exec_logger is not None:
                close_execution_logging(exec_logger)

    def abort(self, research_id: str, reason: str = "aborted by user") -> bool:
        """
        Signal an ongoing run to stop.

        Returns:
            True if a run with that id was ongoing
        """
        token = self.ongoing.get(research_id)
        if token is None:
            return False

        token.cancel(reason)
        logger.info("Research abort requested", extra={"research_id": research_id})
        return True

    @property
    def ongoing_research(self) -> List[str]:
        return list(self.ongoing)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _token_usage(self) -> Tuple[int, int]:
        config = getattr(getattr(self.extractor, "client", None), "config", None)
        if config is None:
            return 0, 0
        return config.prompt_tokens, config.completion_tokens

    def _token_usage_since(self, start: Tuple[int, int]) -> Tuple[int, int]:
        prompt, completion = self._token_usage()
        return prompt - start[0], completion - start[1]


__all__ = ["ResearchWorkflow", "ResearchReport", "timeout_report"]
