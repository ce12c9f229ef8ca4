"""
Search Strategy - Temporal Widening

Decides which timeframe a search starts with and how it widens when too
few results come back.

Algorithm Overview:
1. Queries asking for fresh material ("latest", "new", "current") start
   at the recent timeframe (24h); everything else starts at a week
2. While fewer than the minimum number of unique URLs are known, widen
   one step at a time to the next broader window, then to no timeframe
3. Each step is one request; results merge in first-seen order

Design Decisions:
- Recency keywords match anywhere in the query, case-insensitive, so
  "newest", "news" and "currently" count as recent
- Widening steps are derived from a single ordered ladder so a custom
  starting timeframe still widens sensibly
"""

import re
from enum import Enum
from typing import List, Optional

from config.settings import settings


# ============================================================================
# ENUMS & CONSTANTS
# ============================================================================

class Timeframe(str, Enum):
    """Timeframes accepted by the search provider, narrowest first."""
    DAY = "24h"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


TIMEFRAME_LADDER = tuple(tf.value for tf in Timeframe)

RECENCY_PATTERN = re.compile(r"latest|new|current", re.IGNORECASE)


# ============================================================================
# HEURISTICS
# ============================================================================

def wants_recent(query: str) -> bool:
    """True when the query asks for fresh material."""
    return bool(RECENCY_PATTERN.search(query or ""))


def select_timeframe(query: str) -> str:
    """
    Starting timeframe for a query.

    Example:
        >>> select_timeframe("latest solid state battery news")
        '24h'
        >>> select_timeframe("history of lithium mining")
        'week'
    """
    if wants_recent(query):
        return settings.SEARCH_RECENT_TIMEFRAME
    return settings.SEARCH_DEFAULT_TIMEFRAME


def widening_steps(timeframe: str) -> List[Optional[str]]:
    """
    Timeframes to try after `timeframe`, ending with None (no filter).

    Each step is the next broader window of the ladder; the last step
    drops the timeframe entirely. An unknown timeframe only widens to None.

    Example:
        >>> widening_steps("week")
        ['month', 'year', None]
        >>> widening_steps("24h")
        ['week', 'month', 'year', None]
    """
    steps: List[Optional[str]] = []
    if timeframe in TIMEFRAME_LADDER:
        start = TIMEFRAME_LADDER.index(timeframe)
        steps.extend(TIMEFRAME_LADDER[start + 1:])
    steps.append(None)
    return steps


def search_plan(query: str) -> List[Optional[str]]:
    """The full ladder for a query: starting timeframe plus widening steps."""
    start = select_timeframe(query)
    return [start, *widening_steps(start)]


__all__ = [
    "Timeframe",
    "TIMEFRAME_LADDER",
    "wants_recent",
    "select_timeframe",
    "widening_steps",
    "search_plan",
]
