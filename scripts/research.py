#!/usr/bin/env python3
"""
Research Script - Deep Research from the Command Line

Usage examples:
    python scripts/research.py "Solid state batteries"
    python scripts/research.py "Best e-bike under $1500 price quality" --breadth 6 --depth 3
    python scripts/research.py "Top 3 vector databases" --model gpt-4o --concurrency 4 --save
    python scripts/research.py "Latest EU AI Act news" --site europa.eu --site reuters.com --no-clarify

Features:
- Clarifying follow-up questions before research (skip with --no-clarify)
- Live progress lines while the research tree is walked
- Learnings, visited URLs and recommendations printed by section
- Markdown report written to --output (default report.md)
- Optional JSON export of the full result
- Ctrl-C aborts the run cleanly
"""

import sys
import json
import signal
import asyncio
from pathlib import Path
from datetime import datetime
from typing import Optional, List

# Setup Python path BEFORE any imports
script_dir = Path(__file__).parent.absolute()
project_root = script_dir.parent
sys.path.insert(0, str(project_root))

from config.logging_config import get_logger
from config.settings import settings, validate_settings
from deepdive.core.state_manager import ResearchCancelledError
from deepdive.core.workflow import ResearchWorkflow, ResearchReport

logger = get_logger(__name__)


# ============================================================================
# FORMATTING UTILITIES
# ============================================================================

def format_header(text: str, char: str = "=") -> str:
    """Format a header with decorative lines (80 chars)"""
    line = char * 80
    return f"\n{line}\n{text}\n{line}\n"


def format_section(text: str) -> str:
    """Format a section header (80 chars)"""
    return f"\n{text}\n{'-' * 80}"


def print_progress(message: str) -> None:
    print(f"  … {message}")


# ============================================================================
# CLARIFICATION
# ============================================================================

async def clarify_query(workflow: ResearchWorkflow, query: str) -> tuple:
    """Ask the follow-up questions and fold the answers into the query."""
    feedback = await workflow.clarify(query)

    print(format_section("❓ FOLLOW-UP QUESTIONS"))
    print("To better understand your research needs, please answer these questions:")

    answers = []
    for question in feedback.questions:
        answers.append(input(f"\n{question}\nYour answer: ").strip())

    return ResearchWorkflow.combine_query(query, feedback.questions, answers), feedback.language


# ============================================================================
# RESEARCH
# ============================================================================

async def run_research_async(
    query: str,
    breadth: int,
    depth: int,
    concurrency: int,
    model: Optional[str],
    sites: Optional[List[str]],
    clarify: bool,
    report_path: Path,
    save: bool,
    json_path: Optional[Path]
) -> Optional[ResearchReport]:
    """Run the full research flow (async implementation)."""

    print(format_header("🔍 DEEP RESEARCH"))

    print(f"Query:        {query}")
    print(f"Breadth:      {breadth}")
    print(f"Depth:        {depth}")
    print(f"Concurrency:  {concurrency}")
    print(f"Model:        {model or settings.DEFAULT_MODEL}")
    if sites:
        print(f"Sites:        {', '.join(sites)}")

    print(format_section("🔧 INITIALIZATION"))
    missing = validate_settings()
    if missing:
        for key in missing:
            print(f"⚠️  {key} not set (affected steps will use fallbacks)")
    else:
        print("✅ Settings validated")

    workflow = ResearchWorkflow(model=model, log_dir="logs")
    print("✅ Workflow initialized")

    language = None
    research_query = query
    if clarify:
        research_query, language = await clarify_query(workflow, query)

    research_id = datetime.now().strftime("run_%Y%m%d_%H%M%S")

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, workflow.abort, research_id, "interrupted by user")
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers not supported, Ctrl-C will not abort cleanly")

    print(format_section(f"🔍 RESEARCHING: {query}"))

    try:
        report = await workflow.execute(
            research_query,
            breadth,
            depth,
            concurrency=concurrency,
            sites=sites,
            language=language,
            research_id=research_id,
            progress_callback=print_progress
        )
    except ResearchCancelledError as e:
        print(f"\n⚠️  Research aborted: {e.reason}")
        return None
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    display_results(report)

    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report.report, encoding="utf-8")
    print(f"\n📝 Report saved to {report_path}")

    if save:
        save_results(report, json_path or generate_output_path(query))

    return report


# ============================================================================
# RESULT DISPLAY
# ============================================================================

def display_results(report: ResearchReport):
    """Display research results section by section."""
    result = report.result

    print(format_header("📊 RESEARCH RESULTS"))

    print(format_section("📈 SUMMARY STATISTICS"))
    print(f"  Learnings:         {len(result.learnings):,}")
    print(f"  Visited URLs:      {len(result.visited_urls):,}")
    print(f"  Relevant URLs:     {len(result.relevant_urls):,}")
    print(f"  Recommendations:   {len(result.top_urls)}")
    print(f"  Duration:          {report.duration_seconds:.1f}s ({report.duration_seconds / 60:.1f} min)")
    print(f"  Tokens:            {report.prompt_tokens:,} prompt / {report.completion_tokens:,} completion")
    if report.research_timed_out:
        print("  ⚠️  Research stage timed out")
    if report.report_fallback:
        print("  ⚠️  Report is a fallback")

    if result.learnings:
        print(format_section("💡 LEARNINGS"))
        for i, learning in enumerate(result.learnings, 1):
            print(f"  {i}. {learning.insight}")
            print(f"     {learning.source_title} - {learning.source_url}")

    if result.top_urls:
        print(format_section("⭐ RECOMMENDATIONS"))
        for i, candidate in enumerate(result.top_urls, 1):
            print(f"  {i}. {candidate.url}")
            if candidate.description:
                print(f"     {candidate.description[:200]}")

    if result.visited_urls:
        print(format_section(f"🌐 VISITED URLS ({len(result.visited_urls)})"))
        for url in result.visited_urls:
            print(f"  {url}")

    print(format_header("✅ RESEARCH COMPLETE", "="))
    print(report.report)


# ============================================================================
# FILE PERSISTENCE
# ============================================================================

def generate_output_path(query: str, output_dir: str = "research_results") -> Path:
    """Generate output file path with timestamp."""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    safe_query = "".join(c if c.isalnum() or c in (' ', '-', '_') else '_' for c in query[:60])
    safe_query = safe_query.replace(' ', '_').strip('_')
    filename = f"{safe_query}_{timestamp}.json"

    return output_path / filename


def save_results(report: ResearchReport, filepath: Path) -> bool:
    """Save research results to JSON file."""
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)

        output_data = {
            "metadata": {
                "timestamp": datetime.now().isoformat(),
                "agent": "deepdive-research"
            },
            "results": report.to_dict()
        }

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False, default=str)

        print(f"\n💾 Results saved: {filepath} ({filepath.stat().st_size / 1024:.1f} KB)")
        return True
    except OSError as e:
        print(f"\n❌ Failed to save results: {e}")
        return False


# ============================================================================
# CLI INTERFACE
# ============================================================================

def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Deep Research - recursive web research with a language model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/research.py "Solid state batteries"
  python scripts/research.py "Top 3 vector databases" --model gpt-4o --concurrency 4 --save
  python scripts/research.py "Latest EU AI Act news" --site europa.eu --no-clarify
        """
    )

    parser.add_argument('query', help='What to research')
    parser.add_argument('-b', '--breadth', type=int, default=settings.DEFAULT_BREADTH,
                        help=f'Sub-queries per level (default: {settings.DEFAULT_BREADTH})')
    parser.add_argument('-d', '--depth', type=int, default=settings.DEFAULT_DEPTH,
                        help=f'Recursion depth (default: {settings.DEFAULT_DEPTH})')
    parser.add_argument('-c', '--concurrency', type=int, default=settings.DEFAULT_CONCURRENCY,
                        help='Parallel sub-queries per level (capped per model)')
    parser.add_argument('-m', '--model', type=str, default=None,
                        help=f'Model id (default: {settings.DEFAULT_MODEL})')
    parser.add_argument('--site', action='append', dest='sites', default=None,
                        help='Restrict search to a site (repeatable)')
    parser.add_argument('--no-clarify', action='store_true', help='Skip the follow-up questions')
    parser.add_argument('-o', '--output', type=str, default='report.md', help='Report path (default: report.md)')
    parser.add_argument('-s', '--save', action='store_true', help='Save full results to JSON')
    parser.add_argument('--json-output', type=str, help='Specific JSON file path (with --save)')

    args = parser.parse_args()

    if not args.query or not args.query.strip():
        parser.error("Query cannot be empty")
    if args.breadth < 1 or args.breadth > 20:
        parser.error("Breadth must be between 1 and 20")
    if args.depth < 0 or args.depth > 10:
        parser.error("Depth must be between 0 and 10")
    if args.concurrency < 1:
        parser.error("Concurrency must be at least 1")

    report = asyncio.run(run_research_async(
        query=args.query.strip(),
        breadth=args.breadth,
        depth=args.depth,
        concurrency=args.concurrency,
        model=args.model,
        sites=args.sites,
        clarify=not args.no_clarify,
        report_path=Path(args.output),
        save=args.save,
        json_path=Path(args.json_output) if args.json_output else None
    ))

    sys.exit(0 if report else 1)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user")
        sys.exit(130)
