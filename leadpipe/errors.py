"""
Error taxonomy for the scrape and scoring tasks.

Scrape failures carry a FailureKind so the domain tracker can decide whether
they count against a domain's health. Every error carries an ErrorCode so it
renders into the run envelope through common.build_error.
"""

from enum import Enum
from typing import Optional

from leadpipe.common import ErrorCode


class FailureKind(str, Enum):
    """Classification of a failed fetch attempt."""

    NETWORK = "network"
    BLOCKED = "blocked"
    RENDER = "render"
    EXTRACTION = "extraction"
    CAPACITY = "capacity"


class PipelineError(Exception):
    """Base class for all classified pipeline failures."""

    default_code = ErrorCode.UNKNOWN
    retryable = False

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.code = code or self.default_code


# ============================================================================
# Scrape failures
# ============================================================================


class ScrapeError(PipelineError):
    kind = FailureKind.NETWORK

    @property
    def reason(self) -> str:
        """Human-readable terminal reason stored on the lead."""
        return f"{self.kind.value}: {self}"


class NetworkError(ScrapeError):
    """DNS failure, refused connection, timeout or unusable HTTP status."""

    default_code = ErrorCode.NETWORK_ERROR
    kind = FailureKind.NETWORK
    retryable = True


class BlockedError(ScrapeError):
    """Anti-bot challenge page or a suspicious status code."""

    default_code = ErrorCode.BLOCKED
    kind = FailureKind.BLOCKED

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[ErrorCode] = None):
        super().__init__(message, code)
        self.status_code = status_code


class RenderError(ScrapeError):
    """Browser crash or navigation timeout."""

    default_code = ErrorCode.RENDER_ERROR
    kind = FailureKind.RENDER
    retryable = True


class PoolExhaustedError(RenderError):
    """No render context freed up in time. Local capacity, not the site's fault."""

    kind = FailureKind.CAPACITY


class ExtractionError(ScrapeError):
    """Malformed markup or nothing usable on the page. Never fatal."""

    default_code = ErrorCode.EXTRACT_ERROR
    kind = FailureKind.EXTRACTION


# ============================================================================
# Scoring failures
# ============================================================================


class ClassifierError(PipelineError):
    """LLM timeout, provider error, or a response that fails validation."""

    default_code = ErrorCode.CLASSIFIER_ERROR
    retryable = True


# ============================================================================
# Storage failures
# ============================================================================


class StorageError(PipelineError):
    """Database or artifact store unreachable. Fatal for the batch."""

    default_code = ErrorCode.STORAGE_ERROR


class LeadNotFoundError(PipelineError):
    """The lead row is gone. Ends the item as not_found, never the batch."""

    default_code = ErrorCode.LEAD_NOT_FOUND

    def __init__(self, lead_id: str):
        super().__init__(f"lead {lead_id} not found")
        self.lead_id = lead_id


class WriteConflictError(StorageError):
    """A lead row kept changing underneath an optimistic write."""

    default_code = ErrorCode.WRITE_CONFLICT

    def __init__(self, lead_id: str, attempts: int, message: Optional[str] = None):
        super().__init__(message or f"lead {lead_id} changed concurrently ({attempts} attempts)")
        self.lead_id = lead_id
        self.attempts = attempts
