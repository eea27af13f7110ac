"""Typed error hierarchy for the crawl-job engine.

Every error carries a stable string ``code`` that callers can branch on and
that is persisted as a job's ``error_code`` when the error ends a job.

Caller errors are reported synchronously and never retried. Site errors are
split into transient (page is skipped) and fatal (job is aborted). Resource
errors are retried with backoff by the job runner.
"""

from typing import Any, Optional


class CrawlError(Exception):
    """Base class for all crawl-job engine errors."""

    code = "CRAWL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"code": self.code, "message": self.message, "details": self.details}


# =============================================================================
# Caller errors
# =============================================================================

class CallerError(CrawlError):
    """Error caused by the request itself."""
    code = "BAD_REQUEST"


class InvalidJobConfig(CallerError):
    code = "INVALID_JOB_CONFIG"


class UnsupportedSite(CallerError):
    code = "UNSUPPORTED_SITE"


class LicenseInvalid(CallerError):
    code = "LICENSE_INVALID"


class JobAlreadyRunning(CallerError):
    code = "JOB_ALREADY_RUNNING"


class JobNotFound(CallerError):
    code = "JOB_NOT_FOUND"


class InvalidJobState(CallerError):
    code = "INVALID_JOB_STATE"


# =============================================================================
# Resource errors
# =============================================================================

class SessionUnavailable(CrawlError):
    """Browser session is terminating or at its concurrent-page ceiling."""
    code = "SESSION_UNAVAILABLE"


class LicenseCheckFailed(CrawlError):
    """The license lookup raised; the start is rejected without a verdict."""
    code = "LICENSE_CHECK_FAILED"


# =============================================================================
# Site errors
# =============================================================================

class NavigationTimeout(CrawlError):
    """The wait strategy's condition was not met within the timeout."""
    code = "NAVIGATION_TIMEOUT"


class NavigationError(CrawlError):
    """Transport-level navigation failure (DNS, reset, non-2xx)."""
    code = "NAVIGATION_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(message, **kwargs)


class ExtractionError(CrawlError):
    """Page structure did not match the expected selectors."""
    code = "EXTRACTION_ERROR"


class ExtractionFatal(CrawlError):
    """The site signalled permanent denial; the job must abort."""
    code = "SITE_BLOCKED"
