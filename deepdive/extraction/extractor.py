"""
Insight Extractor - Language-Model Boundary of the Research Engine

Every language-model task the research engine needs, each with a
deterministic local fallback:
- generate_sub_queries: search queries (+ research goal) for a query
- process_result: learnings, follow-up questions and recommended URLs
  from scraped summaries
- summarize: executive summary of learnings
- write_final_report: Markdown report
- generate_feedback: clarifying questions and the query's language

Contract:
- No operation raises. Each returns an ExtractionOutcome telling the
  caller whether the value came from the model or from the fallback.
- The backing client is resolved once, at construction. A model without
  a credential is "unavailable" and every operation goes straight to its
  fallback without attempting a call.

Features:
- Prompt budgeting with tiktoken (learnings and scraped contents trimmed
  to the model's context window)
- Tolerant JSON parsing (reasoning blocks, code fences, surrounding prose)
- Payload validation with pydantic
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from config.logging_config import get_logger
from config.settings import settings
from deepdive.core.state_manager import Learning, SubQuery, TopUrlCandidate
from deepdive.extraction import prompts
from deepdive.extraction.text import (
    count_tokens,
    max_context_tokens,
    normalize_newlines,
    parse_json_reply,
    strip_reasoning,
    trim_contents,
    trim_prompt,
)
from deepdive.models.base_client import BaseModelClient, TaskType
from deepdive.models.router import ModelRouter

logger = get_logger(__name__)

T = TypeVar("T")

_UNSET = object()

RESERVED_RESPONSE_TOKENS = 1000
SUMMARY_FAILED_NOTICE = "The executive summary could not be generated due to an error."
UNKNOWN_SOURCE_TITLE = "Unknown"
UNKNOWN_SOURCE_URL = "http://example.com"


# ============================================================================
# RESULT TYPES
# ============================================================================

@dataclass
class ExtractionOutcome(Generic[T]):
    """
    Tagged result of an extraction operation.

    Attributes:
        value: Model output, or the deterministic fallback
        used_fallback: True when `value` is the fallback
        error: Why the fallback was used
    """
    value: T
    used_fallback: bool = False
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "ExtractionOutcome[T]":
        return cls(value=value)

    @classmethod
    def fallback(cls, value: T, error: str) -> "ExtractionOutcome[T]":
        return cls(value=value, used_fallback=True, error=error)


@dataclass
class ProcessedResult:
    """Output of process_result()."""
    learnings: List[Learning] = field(default_factory=list)
    follow_up_questions: List[str] = field(default_factory=list)
    top_urls: List[TopUrlCandidate] = field(default_factory=list)


@dataclass
class Feedback:
    """Clarifying questions for a query and the language it is written in."""
    questions: List[str] = field(default_factory=list)
    language: str = "English"


# ============================================================================
# PAYLOAD MODELS (model replies)
# ============================================================================

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubQueryPayload(_Payload):
    query: str
    research_goal: str = Field(default="", alias="researchGoal")


class SubQueriesPayload(_Payload):
    queries: List[SubQueryPayload] = Field(default_factory=list)


class LearningPayload(_Payload):
    insight: str
    source_title: str = Field(default=UNKNOWN_SOURCE_TITLE, alias="sourceTitle")
    source_url: str = Field(default="", alias="sourceUrl")


class TopUrlPayload(_Payload):
    url: str
    description: str = ""


class ProcessResultPayload(_Payload):
    learnings: List[LearningPayload] = Field(default_factory=list)
    follow_up_questions: List[str] = Field(default_factory=list, alias="followUpQuestions")
    top_urls: Optional[List[TopUrlPayload]] = Field(default=None, alias="topUrls")


class ReportPayload(_Payload):
    report_markdown: str = Field(alias="reportMarkdown")


class FeedbackPayload(_Payload):
    questions: List[str] = Field(default_factory=list)
    language: str = "English"


# ============================================================================
# FALLBACKS
# ============================================================================

def fallback_sub_queries(query: str, num_queries: int) -> List[SubQuery]:
    """Three template queries, truncated to `num_queries`."""
    templates = [
        SubQuery(query=query, research_goal="Explore basic concepts and current trends"),
        SubQuery(query=f"{query} latest developments", research_goal="Focus on recent innovations and updates"),
        SubQuery(query=f"{query} detailed analysis", research_goal="Deep dive into specific aspects and implications"),
    ]
    return templates[:max(num_queries, 0)]


def fallback_learnings(query: str, num_learnings: int = 3) -> List[Learning]:
    insights = [
        f"Found preliminary insights about {query}",
        "Additional research may be needed for deeper analysis",
        "Consider exploring related areas for further information",
    ]
    return [
        Learning(insight=i, source_title=UNKNOWN_SOURCE_TITLE, source_url=UNKNOWN_SOURCE_URL)
        for i in insights[:num_learnings]
    ]


def fallback_follow_ups(query: str, num_follow_ups: int = 3) -> List[str]:
    questions = [
        f"What are the most critical aspects of {query}?",
        "What recent developments impact this topic?",
        "How does this compare with alternative perspectives?",
    ]
    return questions[:num_follow_ups]


def fallback_feedback(num_questions: int = 3) -> Feedback:
    questions = [
        "Could you provide more specific details about what you want to learn?",
        "What is your main goal with this research?",
        "Are there any specific aspects you want to focus on?",
    ]
    return Feedback(questions=questions[:num_questions], language="English")


def format_learnings(learnings: List[Learning]) -> str:
    """Markdown bullet per learning: "- insight ([title](url))"."""
    return "\n".join(f"- {l.insight} ([{l.source_title}]({l.source_url}))" for l in learnings)


def fallback_report(prompt: str, formatted_learnings: str) -> str:
    return f"# Research Report\n\nUser Input: {prompt}\n\nKey Learnings:\n{formatted_learnings}"


# ============================================================================
# INSIGHT EXTRACTOR
# ============================================================================

class InsightExtractor:
    """
    Language-model operations with deterministic fallbacks.

    Example:
        >>> extractor = InsightExtractor(model="deepseek-r1-671b")
        >>> outcome = await extractor.generate_sub_queries("solid state batteries", 4)
        >>> if outcome.used_fallback:
        ...     print("template queries:", outcome.error)
        >>> [q.query for q in outcome.value]
    """

    def __init__(
        self,
        router: Optional[ModelRouter] = None,
        model: Optional[str] = None,
        client: Any = _UNSET
    ):
        """
        Initialize extractor.

        Args:
            router: Model router used to resolve `model` (created if None)
            model: Model id (settings.DEFAULT_MODEL when None)
            client: Explicit client, bypassing the router (None = unavailable)
        """
        self.model = model or settings.DEFAULT_MODEL

        if client is _UNSET:
            self.router = router or ModelRouter()
            client = self.router.resolve(self.model)
        else:
            self.router = router

        self.client: Optional[BaseModelClient] = client
        self.context_tokens = max_context_tokens(self.model)

        self.stats = {
            "calls": 0,
            "fallbacks": 0,
            "unavailable": 0
        }

        logger.info(
            "Insight extractor initialized",
            extra={"model": self.model, "available": self.available}
        )

    @property
    def available(self) -> bool:
        return self.client is not None

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    async def generate_sub_queries(
        self,
        query: str,
        num_queries: int = 3,
        learnings: Optional[List[Learning]] = None
    ) -> ExtractionOutcome[List[SubQuery]]:
        """
        Up to `num_queries` search queries for `query`.

        Prior learnings are given as context; when the prompt would not
        fit the context window only the last three are kept.
        """
        fallback = fallback_sub_queries(query, num_queries)
        if not self.available:
            return self._unavailable(fallback)

        try:
            insights = [l.insight for l in learnings or []]
            prompt = prompts.sub_queries_prompt(query, num_queries, insights)

            if count_tokens(prompt) > self.context_tokens:
                logger.warning(
                    "Sub-query prompt too long, keeping last 3 learnings",
                    extra={"learnings": len(insights)}
                )
                prompt = prompts.sub_queries_prompt(query, num_queries, insights[-3:])
                prompt = trim_prompt(prompt, self.context_tokens - RESERVED_RESPONSE_TOKENS)

            reply = await self._call(prompt, prompts.system_prompt(), TaskType.QUERY_GENERATION, json_mode=True)
            payload = SubQueriesPayload.model_validate(parse_json_reply(reply))

            queries = [
                SubQuery(query=q.query.strip(), research_goal=q.research_goal)
                for q in payload.queries
                if q.query.strip()
            ][:num_queries]

            if not queries:
                return self._fallback(fallback, "model returned no queries")

            logger.info("Sub-queries generated", extra={"count": len(queries)})
            return ExtractionOutcome.success(queries)

        except Exception as e:
            return self._fallback(fallback, e)

    async def process_result(
        self,
        query: str,
        contents: List[str],
        num_learnings: int = 3,
        num_follow_ups: int = 3,
        include_top_urls: bool = False
    ) -> ExtractionOutcome[ProcessedResult]:
        """
        Learnings and follow-up questions from scraped summaries.

        Contents over the context budget are trimmed per item through
        8000/4000/2000/1000/500 tokens; if still too long the fallback
        is used.
        """
        fallback = ProcessedResult(
            learnings=fallback_learnings(query, num_learnings),
            follow_up_questions=fallback_follow_ups(query, num_follow_ups),
            top_urls=[]
        )
        if not self.available:
            return self._unavailable(fallback)

        try:
            budget = self.context_tokens - RESERVED_RESPONSE_TOKENS
            joined = trim_contents(contents, budget)
            if joined is None:
                return self._fallback(fallback, "scraped content too long even after trimming")

            prompt = prompts.process_result_prompt(
                query, joined, num_learnings, num_follow_ups, include_top_urls
            )
            reply = await self._call(prompt, prompts.system_prompt(), TaskType.RESULT_PROCESSING, json_mode=True)
            payload = ProcessResultPayload.model_validate(parse_json_reply(reply))

            result = ProcessedResult(
                learnings=[
                    Learning(
                        insight=l.insight,
                        source_title=l.source_title or UNKNOWN_SOURCE_TITLE,
                        source_url=l.source_url
                    )
                    for l in payload.learnings
                    if l.insight.strip()
                ][:num_learnings],
                follow_up_questions=[q for q in payload.follow_up_questions if q.strip()][:num_follow_ups],
                top_urls=[
                    TopUrlCandidate(url=t.url, description=t.description)
                    for t in payload.top_urls or []
                    if t.url
                ]
            )

            logger.info(
                "Search result processed",
                extra={
                    "query": query,
                    "learnings": len(result.learnings),
                    "follow_ups": len(result.follow_up_questions),
                    "top_urls": len(result.top_urls)
                }
            )
            return ExtractionOutcome.success(result)

        except Exception as e:
            return self._fallback(fallback, e)

    async def summarize(self, content: str) -> ExtractionOutcome[str]:
        """Executive summary. Empty input gives an empty summary."""
        if not content or not content.strip():
            logger.warning("summarize called with empty content")
            return ExtractionOutcome.success("")

        if not self.available:
            return self._unavailable(SUMMARY_FAILED_NOTICE)

        try:
            prompt = prompts.summary_prompt(trim_prompt(content, self.context_tokens - RESERVED_RESPONSE_TOKENS))
            reply = await self._call(prompt, prompts.system_prompt(), TaskType.SUMMARIZATION)
            summary = strip_reasoning(reply)
            if not summary:
                return self._fallback(SUMMARY_FAILED_NOTICE, "empty summary")
            return ExtractionOutcome.success(summary)
        except Exception as e:
            return self._fallback(SUMMARY_FAILED_NOTICE, e)

    async def write_final_report(
        self,
        prompt: str,
        learnings: List[Learning],
        language: Optional[str] = None
    ) -> ExtractionOutcome[str]:
        """
        Markdown report from the learnings.

        The learnings are first condensed into an executive summary; the
        report falls back to a plain Markdown listing of the prompt and
        the learnings.
        """
        formatted = format_learnings(learnings)
        fallback = fallback_report(prompt, formatted)

        if not self.available:
            return self._unavailable(fallback)

        summary = await self.summarize("\n".join(l.insight for l in learnings))

        try:
            task_prompt = prompts.final_report_prompt(
                prompt,
                summary.value,
                trim_prompt(formatted, self.context_tokens - RESERVED_RESPONSE_TOKENS)
            )
            reply = await self._call(
                task_prompt,
                prompts.report_system_prompt(language),
                TaskType.REPORT_WRITING,
                json_mode=True
            )

            try:
                report = ReportPayload.model_validate(parse_json_reply(reply)).report_markdown
            except ValueError:
                # Some models ignore the JSON instruction and answer in Markdown
                report = strip_reasoning(reply)

            report = normalize_newlines(report).strip()
            if not report:
                return self._fallback(fallback, "empty report")
            return ExtractionOutcome.success(report)

        except Exception as e:
            return self._fallback(fallback, e)

    async def generate_feedback(self, query: str, num_questions: int = 3) -> ExtractionOutcome[Feedback]:
        """Clarifying questions for `query`, in the query's language."""
        fallback = fallback_feedback(num_questions)
        if not self.available:
            return self._unavailable(fallback)

        try:
            reply = await self._call(
                prompts.feedback_prompt(query, num_questions),
                prompts.feedback_system_prompt(),
                TaskType.FEEDBACK,
                json_mode=True
            )
            payload = FeedbackPayload.model_validate(parse_json_reply(reply))

            questions = [q for q in payload.questions if q.strip()][:num_questions]
            if not questions:
                return self._fallback(fallback, "model returned no questions")

            return ExtractionOutcome.success(
                Feedback(questions=questions, language=payload.language or "English")
            )
        except Exception as e:
            return self._fallback(fallback, e)

    # ========================================================================
    # HELPERS
    # ========================================================================

    async def _call(self, prompt: str, system: str, task_type: TaskType, json_mode: bool = False) -> str:
        self.stats["calls"] += 1
        kwargs = {"response_format": "json"} if json_mode else {}
        response = await self.client.call(prompt, system_prompt=system, task_type=task_type, **kwargs)
        return response.content

    def _unavailable(self, value: T) -> ExtractionOutcome[T]:
        self.stats["unavailable"] += 1
        return ExtractionOutcome.fallback(value, f"model {self.model} unavailable")

    def _fallback(self, value: T, error: Any) -> ExtractionOutcome[T]:
        self.stats["fallbacks"] += 1
        message = str(error) if not isinstance(error, Exception) else f"{type(error).__name__}: {error}"
        logger.error("Extraction failed, using fallback", extra={"model": self.model, "error": message})
        return ExtractionOutcome.fallback(value, message)

    def get_statistics(self) -> Dict[str, Any]:
        """Call and fallback counters."""
        return {
            **self.stats,
            "model": self.model,
            "available": self.available,
            "fallback_rate": self.stats["fallbacks"] / max(self.stats["calls"], 1)
        }


__all__ = [
    "InsightExtractor",
    "ExtractionOutcome",
    "ProcessedResult",
    "Feedback",
    "fallback_sub_queries",
    "fallback_learnings",
    "fallback_follow_ups",
    "fallback_feedback",
    "fallback_report",
    "format_learnings",
    "SUMMARY_FAILED_NOTICE",
]
