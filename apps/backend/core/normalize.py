"""
Normalization of raw listings into canonical job candidates.

normalize_listing() is a pure function of (raw listing, source config, now):
given the same inputs it always returns the same candidate, which is what
makes the content hash in core.dedup meaningful.

Field defaults come from the source's config (defaultOrg, defaultState,
defaultCategory, defaultDistrict, defaultQualification). Missing detail
fields are filled by small regex heuristics over the title/description:
- apply_end_date from "Last Date: 15/08/2025" style phrases
- vacancies from "1200 Posts" / "Vacancies: 1,200"
- qualification from 10th / 12th / ITI / Diploma / Graduate / Post Graduate
"""
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from core.errors import ListingRejected

DEFAULT_ORGANISATION = "Unknown"
DEFAULT_STATUS = "open"
MAX_DESCRIPTION_LENGTH = 5000

CANONICAL_FIELDS = (
    "source_id", "title", "organisation", "source_url", "official_notification_url",
    "category", "qualification", "status", "state", "district",
    "lat", "lon", "location_label", "vacancies", "description", "age_limit", "salary",
    "apply_start_date", "apply_end_date", "exam_date", "published_at",
)

DATE_FIELDS = ("apply_start_date", "apply_end_date", "exam_date")

DEADLINE_PATTERNS = [
    re.compile(
        r'(?:last\s+date(?:\s+(?:to|for)\s+\w+)?|closing\s+date|apply\s+by|deadline)'
        r'\s*[:\-–]?\s*'
        r'(\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{1,2}(?:st|nd|rd|th)?\s+[A-Za-z]{3,9},?\s+\d{4}|[A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4})',
        re.IGNORECASE,
    ),
]

VACANCY_PATTERNS = [
    re.compile(r'(\d[\d,]*)\s+(?:posts?|vacanc(?:y|ies)|seats)\b', re.IGNORECASE),
    re.compile(r'(?:total\s+)?(?:posts?|vacanc(?:y|ies))\s*[:\-]\s*(\d[\d,]*)', re.IGNORECASE),
]

# Ordered most specific first; first match wins
QUALIFICATION_PATTERNS = [
    ("Post Graduate", re.compile(r"\b(?:post[\s-]?graduat\w*|master'?s?\s+degree|mba|m\.\s?tech|m\.\s?sc|m\.\s?com)\b", re.IGNORECASE)),
    ("Graduate", re.compile(r"\b(?:graduat\w*|bachelor'?s?\s+degree|b\.\s?tech|b\.\s?sc|b\.\s?com|b\.\s?ed)\b", re.IGNORECASE)),
    ("Diploma", re.compile(r"\bdiploma\b", re.IGNORECASE)),
    ("ITI", re.compile(r"\biti\b", re.IGNORECASE)),
    ("12th", re.compile(r"\b(?:12th|intermediate|higher\s+secondary|10\s*\+\s*2)\b", re.IGNORECASE)),
    ("10th", re.compile(r"\b(?:10th|matric\w*|high\s+school)\b", re.IGNORECASE)),
]


def clean_text(value: Any) -> Optional[str]:
    """Collapse internal whitespace and trim; blank becomes None"""
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _coerce_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return None


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(str(value), dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        try:
            value = date_parser.parse(str(value), dayfirst=True)
        except (ValueError, OverflowError):
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def extract_deadline(text: Optional[str]) -> Optional[date]:
    """Find an application deadline phrase in free text"""
    if not text:
        return None
    for pattern in DEADLINE_PATTERNS:
        match = pattern.search(text)
        if match:
            parsed = _coerce_date(match.group(1))
            if parsed:
                return parsed
    return None


def extract_vacancies(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    for pattern in VACANCY_PATTERNS:
        match = pattern.search(text)
        if match:
            count = _coerce_int(match.group(1))
            if count and 0 < count < 1_000_000:
                return count
    return None


def extract_qualification(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for label, pattern in QUALIFICATION_PATTERNS:
        if pattern.search(text):
            return label
    return None


def normalize_listing(raw: Dict, source: Dict, now: Optional[datetime] = None) -> Dict:
    """
    Map a raw listing to an unpersisted canonical job candidate.

    Args:
        raw: Listing produced by a source adapter
        source: JobSource row (id, base_url, config, ...)
        now: Clock used for published_at when the adapter supplied no date

    Returns:
        Candidate dict with every canonical field present

    Raises:
        ListingRejected: title is empty after trimming
    """
    config = source.get("config") or {}

    title = clean_text(raw.get("title"))
    if not title:
        raise ListingRejected("Listing has no title")

    organisation = (
        clean_text(raw.get("organisation"))
        or clean_text(config.get("defaultOrg"))
        or clean_text(raw.get("feed_title"))
        or DEFAULT_ORGANISATION
    )

    source_url = clean_text(raw.get("link")) or source.get("base_url")
    official_url = clean_text(raw.get("official_notification_url")) or source_url

    description = clean_text(raw.get("description"))
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[:MAX_DESCRIPTION_LENGTH].rstrip()

    haystack = " ".join(part for part in (title, description) if part)

    lat = _coerce_float(raw.get("lat"))
    lon = _coerce_float(raw.get("lon"))
    if lat is None or lon is None or not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        lat = lon = None

    published_at = _coerce_datetime(raw.get("published"))
    if published_at is None:
        published_at = now or datetime.now(timezone.utc)

    candidate = {
        "source_id": source.get("id"),
        "title": title,
        "organisation": organisation,
        "source_url": source_url,
        "official_notification_url": official_url,
        "category": clean_text(raw.get("category")) or clean_text(config.get("defaultCategory")),
        "qualification": (
            clean_text(raw.get("qualification"))
            or clean_text(config.get("defaultQualification"))
            or extract_qualification(haystack)
        ),
        "status": DEFAULT_STATUS,
        "state": clean_text(raw.get("state")) or clean_text(config.get("defaultState")),
        "district": clean_text(raw.get("district")) or clean_text(config.get("defaultDistrict")),
        "lat": lat,
        "lon": lon,
        "location_label": clean_text(raw.get("location_label")),
        "vacancies": _coerce_int(raw.get("vacancies")) or extract_vacancies(haystack),
        "description": description,
        "age_limit": clean_text(raw.get("age_limit")),
        "salary": clean_text(raw.get("salary")),
        "apply_start_date": _coerce_date(raw.get("apply_start_date")),
        "apply_end_date": _coerce_date(raw.get("apply_end_date")) or extract_deadline(haystack),
        "exam_date": _coerce_date(raw.get("exam_date")),
        "published_at": published_at,
    }

    return candidate
