"""Heuristic query parser for natural-language search input.

Turns free text such as ``"priority 1 bugs in Lerum closed last week"`` into
residual search text plus structured ``SearchFilters``. Parsing runs a fixed
pipeline of stages, each a pure ``(text, filters) -> (text, filters)``
function that records a filter and strips the text it consumed, so later
stages only see what earlier stages left behind.

Stage order
1. Source type: PR keywords are checked before work-item keywords
2. Priority: ``priority N`` (kept when 1-4) and ``p1``-``p4``
3. Item type: bug, task, user story; infers work items when type is unset
4. Status: normalized keywords (``closed``/``resolved`` -> ``completed``)
5. Date range: ``last|past week|month|year|N days|weeks|months``
6. Draft: sets ``is_draft`` and always forces the PR source type
7. Project: fixed synonym table

The parser never raises; anything it does not recognize stays in the search
text.
"""

import re
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable, List, Optional, Tuple

import structlog

from .models import ParsedQuery, SearchFilters, SearchSource

logger = structlog.get_logger("query_parser")

Stage = Callable[[str, SearchFilters], Tuple[str, SearchFilters]]

PR_PATTERN = re.compile(r"\b(PRs?|pull\s*requests?)\b", re.IGNORECASE)
WORK_ITEM_PATTERN = re.compile(r"\b(work\s*items?|WIs?)\b", re.IGNORECASE)

PRIORITY_PATTERN = re.compile(r"\bpriority\s*(\d+)\b", re.IGNORECASE)
PRIORITY_SHORT_PATTERN = re.compile(r"\bp([1-4])\b", re.IGNORECASE)

BUG_PATTERN = re.compile(r"\b(bugs?)\b", re.IGNORECASE)
TASK_PATTERN = re.compile(r"\b(tasks?)\b", re.IGNORECASE)
STORY_PATTERN = re.compile(r"\b(user\s*stor(?:y|ies)|stor(?:y|ies))\b", re.IGNORECASE)

STATUS_PATTERN = re.compile(
    r"\b(active|completed|closed|resolved|abandoned|new|open)\b", re.IGNORECASE
)

DATE_PATTERN = re.compile(
    r"\b(last|past)\s+(week|month|year|(\d+)\s*(days?|weeks?|months?))\b", re.IGNORECASE
)

DRAFT_PATTERN = re.compile(r"\b(drafts?|draft\s+PRs?)\b", re.IGNORECASE)

# Checked in order; the first synonym found wins.
PROJECT_SYNONYMS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b(in\s+)?lerum\b", re.IGNORECASE), "Lerums Djursjukhus"),
    (re.compile(r"\b(in\s+)?evidensia\b", re.IGNORECASE), "Evidensia"),
)

ITEM_TYPE_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (BUG_PATTERN, "Bug"),
    (TASK_PATTERN, "Task"),
    (STORY_PATTERN, "User Story"),
)

STATUS_ALIASES = {
    "closed": "completed",
    "resolved": "completed",
    "open": "active",
}

STOP_WORDS = frozenset({"in", "the", "for", "with", "from", "about"})

PRIORITY_RANGE = range(1, 5)

_UNIT_DAYS = {"day": 1, "week": 7, "month": 30}
_PERIOD_DAYS = {"week": 7, "month": 30, "year": 365}


def _strip(pattern: re.Pattern, text: str) -> str:
    return pattern.sub("", text)


def extract_source_type(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Detect explicit PR or work-item keywords."""
    if PR_PATTERN.search(text):
        return _strip(PR_PATTERN, text), replace(filters, source_type=SearchSource.PR)
    if WORK_ITEM_PATTERN.search(text):
        return _strip(WORK_ITEM_PATTERN, text), replace(filters, source_type=SearchSource.WORK_ITEM)
    return text, filters


def extract_priority(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Collect ``priority N`` and ``pN`` mentions into a sorted, unique list."""
    priorities = set()

    for match in PRIORITY_PATTERN.finditer(text):
        value = int(match.group(1))
        if value in PRIORITY_RANGE:
            priorities.add(value)
    text = _strip(PRIORITY_PATTERN, text)

    for match in PRIORITY_SHORT_PATTERN.finditer(text):
        priorities.add(int(match.group(1)))
    text = _strip(PRIORITY_SHORT_PATTERN, text)

    if not priorities:
        return text, filters
    return text, replace(filters, priority=sorted(priorities))


def extract_item_types(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Map bug/task/story keywords to canonical work item types.

    An explicit source type from an earlier stage is kept; otherwise a
    matched item type implies work items.
    """
    item_types: List[str] = []
    for pattern, canonical in ITEM_TYPE_PATTERNS:
        if pattern.search(text):
            item_types.append(canonical)
            text = _strip(pattern, text)

    if not item_types:
        return text, filters

    source_type = filters.source_type or SearchSource.WORK_ITEM
    return text, replace(filters, item_type=item_types, source_type=source_type)


def extract_status(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Collect status keywords, normalized and de-duplicated in query order."""
    statuses: List[str] = []
    for match in STATUS_PATTERN.finditer(text):
        keyword = match.group(1).lower()
        status = STATUS_ALIASES.get(keyword, keyword)
        if status not in statuses:
            statuses.append(status)

    if not statuses:
        return text, filters
    return _strip(STATUS_PATTERN, text), replace(filters, status=statuses)


def _relative_days(match: re.Match) -> int:
    count = match.group(3)
    if count is not None:
        unit = match.group(4).lower().rstrip("s")
        return int(count) * _UNIT_DAYS[unit]
    return _PERIOD_DAYS[match.group(2).lower()]


def extract_date_range(
    text: str,
    filters: SearchFilters,
    now: Optional[datetime] = None,
) -> Tuple[str, SearchFilters]:
    """Convert the first relative date expression into ``updated_after``.

    Only the first expression is used and only that occurrence is removed.
    Ranges reaching past the earliest representable date are clamped to it.
    """
    match = DATE_PATTERN.search(text)
    if match is None:
        return text, filters

    now = now or datetime.now(timezone.utc)
    try:
        updated_after = now - timedelta(days=_relative_days(match))
    except OverflowError:
        updated_after = datetime.min.replace(tzinfo=timezone.utc)
    text = text[:match.start()] + text[match.end():]
    return text, replace(filters, updated_after=updated_after)


def extract_draft(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Handle ``draft``; drafts only exist for PRs so the source type is forced."""
    if not DRAFT_PATTERN.search(text):
        return text, filters
    return _strip(DRAFT_PATTERN, text), replace(
        filters, is_draft=True, source_type=SearchSource.PR
    )


def extract_project(text: str, filters: SearchFilters) -> Tuple[str, SearchFilters]:
    """Resolve a known project synonym, consuming a leading ``in``."""
    for pattern, project in PROJECT_SYNONYMS:
        if pattern.search(text):
            return _strip(pattern, text), replace(filters, project=project)
    return text, filters


def clean_search_text(text: str) -> str:
    """Collapse whitespace and drop stop words from the residual text."""
    return " ".join(word for word in text.split() if word.lower() not in STOP_WORDS)


def build_stages(now: Optional[datetime] = None) -> List[Stage]:
    """Return the extraction stages in execution order."""
    return [
        extract_source_type,
        extract_priority,
        extract_item_types,
        extract_status,
        partial(extract_date_range, now=now),
        extract_draft,
        extract_project,
    ]


class QueryParser:
    """Parses free-text queries into a ``ParsedQuery``.

    ``clock`` supplies the reference time for relative date expressions and
    can be replaced in tests.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def parse(self, query: str) -> ParsedQuery:
        """Run all stages over ``query`` and return text plus filters."""
        text = query
        filters = SearchFilters()
        for stage in build_stages(self.clock()):
            text, filters = stage(text, filters)

        parsed = ParsedQuery(search_text=clean_search_text(text), filters=filters)
        logger.debug(
            "Parsed search query",
            query=query,
            search_text=parsed.search_text,
            filters_set=not filters.is_empty(),
        )
        return parsed


_default_parser = QueryParser()


def parse_query(query: str, now: Optional[datetime] = None) -> ParsedQuery:
    """Parse ``query`` with the default clock, or with a fixed ``now``."""
    if now is None:
        return _default_parser.parse(query)
    return QueryParser(clock=lambda: now).parse(query)
