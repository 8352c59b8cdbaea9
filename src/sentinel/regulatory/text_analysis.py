"""Sentence splitting, criteria extraction and effective-date detection."""

import re
from typing import Any, Dict, List, Optional

from .constants import CRITERIA_KEYWORDS

MONTHS = [
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
]
_MONTH_ALT = "|".join(month.capitalize() for month in MONTHS)

ISO_DATE_RE = re.compile(r"\b20\d{2}-\d{2}-\d{2}\b")
LONG_DATE_RE = re.compile(rf"\b(\d{{1,2}})\s+({_MONTH_ALT})\s+(20\d{{2}})\b", re.IGNORECASE)
MONTH_YEAR_RE = re.compile(rf"\b({_MONTH_ALT})\s+(\d{{4}})\b", re.IGNORECASE)
SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")
WHITESPACE_RE = re.compile(r"\s+")

EFFECTIVE_WINDOW = 200
MAX_REQUIREMENTS = 6
FALLBACK_NOTES = 3


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text).strip()


def sentences_from_content(content: str) -> List[str]:
    cleaned = collapse_whitespace(content)
    return [sentence.strip() for sentence in SENTENCE_SPLIT_RE.split(cleaned) if sentence.strip()]


def extract_criteria(content: str, rationale: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Pull normative sentences out of a document.

    Up to six sentences containing a normative keyword become requirements.
    When none match, the first three sentences are kept as notes so the
    proposal is never empty.
    """
    sentences = sentences_from_content(content)
    requirements = [
        sentence
        for sentence in sentences
        if any(keyword in sentence.lower() for keyword in CRITERIA_KEYWORDS)
    ][:MAX_REQUIREMENTS]

    if requirements:
        return [
            {"type": "requirement", "requirement": sentence, "rationale": rationale}
            for sentence in requirements
        ]

    return [
        {"type": "note", "requirement": sentence, "rationale": rationale}
        for sentence in sentences[:FALLBACK_NOTES]
    ]


def extract_effective_date(content: str) -> Optional[str]:
    """
    Find the effective date near the word "effective".

    Scans a 200-character window for, in order: an ISO date, a "1 May 2024"
    long-form date, then a "May 2024" month-year (mapped to the 1st).
    """
    idx = content.lower().find("effective")
    window = content[idx:idx + EFFECTIVE_WINDOW] if idx >= 0 else content[:EFFECTIVE_WINDOW]

    iso = ISO_DATE_RE.search(window)
    if iso:
        return iso.group(0)

    long_form = LONG_DATE_RE.search(window)
    if long_form:
        day, month_name, year = long_form.groups()
        month = MONTHS.index(month_name.lower()) + 1
        return f"{year}-{month:02d}-{int(day):02d}"

    month_year = MONTH_YEAR_RE.search(window)
    if month_year:
        month_name, year = month_year.groups()
        month = MONTHS.index(month_name.lower()) + 1
        return f"{year}-{month:02d}-01"

    return None
