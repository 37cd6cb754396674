"""
Error taxonomy for ingestion and query paths.

Ingestion errors never abort a whole run: the orchestrator catches
SourceError per source and drops ListingRejected per listing. Query errors
are mapped to HTTP status codes by the routers.
"""


class GovJobsError(Exception):
    """Base class for all govjobs errors"""


class SourceError(GovJobsError):
    """A whole source could not be ingested"""

    def __init__(self, message: str, source_id=None):
        super().__init__(message)
        self.source_id = source_id


class SourceFetchError(SourceError):
    """Network or HTTP failure reaching a source"""


class SourceParseError(SourceError):
    """Source responded but the document could not be parsed"""


class ListingRejected(GovJobsError):
    """A single listing is missing a required field and is dropped"""


class DuplicateConflict(GovJobsError):
    """Concurrent upsert raced on the same source_hash"""


class InvalidQueryParameter(GovJobsError):
    """Client supplied a malformed or missing query parameter"""

    def __init__(self, param: str, message: str):
        super().__init__(message)
        self.param = param
        self.message = message


class GeoProviderUnavailable(GovJobsError):
    """Reverse geocoding provider is unconfigured, unreachable or timed out"""


class GeoProviderError(GovJobsError):
    """Provider answered with a non-retryable error"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
