"""
Content-addressed deduplication.

A job's real-world identity is (title, organisation, link). The signature
normalizes each field so cosmetic differences between runs (case,
punctuation, spacing, tracking parameters) never mint a new row:

- title / organisation: NFKC, casefold, Unicode punctuation and symbols
  replaced by a space, whitespace collapsed
- link: lowercase scheme and host, default port dropped, trailing slash
  dropped, fragment dropped, utm_*/ref/fbclid/gclid dropped, query sorted

Fields are joined in that fixed order with '||' and hashed with SHA-256.
"""
import hashlib
import unicodedata
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

SIGNATURE_FIELDS = ("title", "organisation", "source_url")
SIGNATURE_SEPARATOR = "||"

# Fields refreshed in place when a known hash is seen again
MUTABLE_FIELDS = ("status", "description", "apply_start_date", "apply_end_date", "exam_date")

TRACKING_KEYS = {"ref", "fbclid", "gclid"}


def normalize_text(value: Optional[str]) -> str:
    if not value:
        return ""
    folded = unicodedata.normalize("NFKC", value).casefold()
    chars = [
        " " if unicodedata.category(ch)[0] in ("P", "S") else ch
        for ch in folded
    ]
    return " ".join("".join(chars).split())


def _is_tracking_param(key: str) -> bool:
    return key.startswith("utm_") or key in TRACKING_KEYS


def normalize_url(raw_url: Optional[str]) -> str:
    """Conservative URL normalization used for dedupe signatures"""
    if not raw_url:
        return ""
    parsed = urlparse(raw_url.strip())

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()

    if ":" in netloc:
        host, port = netloc.rsplit(":", maxsplit=1)
        if (scheme == "http" and port == "80") or (scheme == "https" and port == "443"):
            netloc = host

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query_pairs.sort()
    query = urlencode(query_pairs, doseq=True)

    return urlunparse((scheme, netloc, path, "", query, ""))


def build_signature(job: Dict) -> str:
    """Canonical identity signature of a candidate job"""
    return SIGNATURE_SEPARATOR.join([
        normalize_text(job.get("title")),
        normalize_text(job.get("organisation")),
        normalize_url(job.get("source_url")),
    ])


def compute_source_hash(job: Dict) -> str:
    """SHA-256 hex digest (64 chars) of the job's identity signature"""
    return hashlib.sha256(build_signature(job).encode("utf-8")).hexdigest()


def decide(existing: Optional[Dict], candidate: Dict) -> str:
    """
    Decide what an upsert does with a candidate.

    Returns 'insert' when the hash is unknown, 'update' when any mutable
    field changed, 'skip' otherwise.
    """
    if existing is None:
        return "insert"
    for field in MUTABLE_FIELDS:
        if existing.get(field) != candidate.get(field):
            return "update"
    return "skip"
