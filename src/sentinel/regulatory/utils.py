"""
Helpers shared by the regulatory stages: cursors, URL-keyed merging,
hashing and snippet construction.
"""

import hashlib
import re
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Set, TypeVar
from urllib.parse import urlparse

from dateutil import parser as date_parser

from ..models import (
    ContentType,
    RegulatoryCandidate,
    RegulatoryDocument,
    RegulatorySnippet,
    RegulatoryVersionRecord,
    RuleProposal,
    SnippetLevel,
)
from .constants import DEFAULT_LOOKBACK_DAYS

T = TypeVar("T")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]+")


def to_date_only(value: Optional[str]) -> Optional[str]:
    """Normalize an ISO-ish timestamp to YYYY-MM-DD, or None if unparseable."""
    if not value:
        return None
    try:
        return date_parser.isoparse(value).date().isoformat()
    except (ValueError, OverflowError):
        try:
            return date_parser.parse(value).date().isoformat()
        except (ValueError, OverflowError):
            return None


def get_lookback_cursor(current: Optional[str], now: Optional[datetime] = None) -> str:
    """Return the scan start date: the cursor's date, or today minus the lookback window."""
    from_cursor = to_date_only(current)
    if from_cursor:
        return from_cursor
    now = now or datetime.now(timezone.utc)
    return (now - timedelta(days=DEFAULT_LOOKBACK_DAYS)).date().isoformat()


def is_before(published_at: Optional[str], start_date: str) -> bool:
    """True when a publish date is known and falls before ``start_date``."""
    published = to_date_only(published_at)
    if not published:
        return False
    return date.fromisoformat(published) < date.fromisoformat(start_date)


def merge_by_key(existing: Iterable[T], incoming: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """
    Merge two keyed collections, right-biased.

    Existing order is preserved; an incoming entry with a known key replaces
    the existing value in place, unknown keys are appended.
    """
    merged = {}
    for item in existing:
        merged[key(item)] = item
    for item in incoming:
        merged[key(item)] = item
    return list(merged.values())


def merge_by_url(existing, incoming):
    return merge_by_key(existing, incoming, lambda item: item.url)


def merge_proposals(existing: Iterable[RuleProposal], incoming: Iterable[RuleProposal]) -> List[RuleProposal]:
    return merge_by_key(existing, incoming, lambda item: item.id)


def merge_versions(
    existing: Iterable[RegulatoryVersionRecord],
    incoming: Iterable[RegulatoryVersionRecord],
) -> List[RegulatoryVersionRecord]:
    return merge_by_key(existing, incoming, lambda item: item.rule_version_id)


def dedupe_by_url(items: Iterable[RegulatoryCandidate]) -> List[RegulatoryCandidate]:
    """Keep the first occurrence of each URL; drop items without one."""
    seen: Set[str] = set()
    result = []
    for item in items:
        if not item.url or item.url in seen:
            continue
        seen.add(item.url)
        result.append(item)
    return result


def new_by_key(existing: Iterable[T], candidates: Iterable[T], key: Callable[[T], str]) -> List[T]:
    """Items whose key is not present in ``existing``."""
    known = {key(item) for item in existing}
    return [item for item in candidates if key(item) not in known]


def detect_content_type(url: str) -> ContentType:
    lowered = url.lower()
    if lowered.endswith(".pdf"):
        return "pdf"
    if lowered.startswith("http://") or lowered.startswith("https://"):
        return "html"
    return "unknown"


def url_domain(url: str) -> Optional[str]:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def slug_from_url(url: str) -> str:
    """Scheme-less, dash-separated slug, at most 60 characters."""
    stripped = _SCHEME_RE.sub("", url)
    return _NON_ALNUM_RE.sub("-", stripped).strip("-")[:60]


def hash_content(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


def make_rule_id(regulator: Optional[str], url: str) -> str:
    return f"{(regulator or 'reg').lower()}_{slug_from_url(url)}"


def make_snippet(
    rule_id: str,
    text: str,
    source_url: Optional[str] = None,
    level: SnippetLevel = "info",
) -> RegulatorySnippet:
    return RegulatorySnippet(rule_id=rule_id, text=text, source_url=source_url, level=level)


def find_document(documents: Iterable[RegulatoryDocument], url: str) -> Optional[RegulatoryDocument]:
    for document in documents:
        if document.url == url:
            return document
    return None
