"""
Common utilities for the leadpipe tasks.

This module provides cross-cutting functionality shared by the scrape and
scoring tasks: error codes and error objects, run metrics, domain and URL
normalization, timestamps, and logging with secret redaction.
"""

import json
import logging
import os
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse, urlunparse

import publicsuffix2


# ============================================================================
# Constants and Configuration
# ============================================================================


class ErrorCode(Enum):
    """Authoritative error codes for all tasks."""

    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_TIMEOUT = "HTTP_TIMEOUT"
    BLOCKED = "BLOCKED"
    RENDER_ERROR = "RENDER_ERROR"
    EXTRACT_ERROR = "EXTRACT_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    CLASSIFIER_ERROR = "CLASSIFIER_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    WRITE_CONFLICT = "WRITE_CONFLICT"
    DEADLINE_EXCEEDED = "DEADLINE_EXCEEDED"
    MISSING_WEBSITE = "MISSING_WEBSITE"
    LEAD_NOT_FOUND = "LEAD_NOT_FOUND"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES = (
    ErrorCode.NETWORK_ERROR,
    ErrorCode.HTTP_TIMEOUT,
    ErrorCode.RENDER_ERROR,
    ErrorCode.CLASSIFIER_ERROR,
    ErrorCode.PARSE_ERROR,
    ErrorCode.DEADLINE_EXCEEDED,
)


# ============================================================================
# Data & URL Conventions
# ============================================================================


def normalize_domain(domain: str) -> str:
    """
    Normalize domain to eTLD+1 using Public Suffix List.

    Args:
        domain: Raw domain or URL (e.g., "https://shop.foo.co.uk:8443/x")

    Returns:
        Normalized eTLD+1 domain (e.g., "foo.co.uk")
    """
    if not domain:
        return domain

    # Remove protocol and path if present
    if "://" in domain:
        domain = urlparse(domain).netloc

    # Remove credentials and port if present
    domain = domain.rsplit("@", 1)[-1].split(":")[0]

    domain = domain.lower().strip().rstrip(".")
    if domain.startswith("www."):
        domain = domain[4:]

    return publicsuffix2.get_sld(domain) or domain


def normalize_url(raw_url: Optional[str]) -> Optional[str]:
    """
    Normalize a lead website into an absolute http(s) URL.

    Adds a scheme when missing, lowercases the host and drops fragments.
    Returns None for values that cannot be a website.
    """
    if not raw_url:
        return None

    candidate = raw_url.strip()
    if not candidate:
        return None
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", candidate):
        candidate = f"https://{candidate.lstrip('/')}"

    try:
        parsed = urlparse(candidate)
    except ValueError:
        return None

    host = parsed.hostname or ""
    if parsed.scheme not in ("http", "https") or "." not in host:
        return None

    return urlunparse(
        (parsed.scheme, parsed.netloc.lower(), parsed.path or "/", "", parsed.query, "")
    )


def now_z() -> str:
    """
    Get current timestamp in ISO-8601 UTC format with Z suffix.

    Returns:
        ISO-8601 UTC timestamp string
    """
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def current_year() -> int:
    return datetime.now(timezone.utc).year


def round4(f: float) -> float:
    """Round float to 4 decimal places."""
    return round(f, 4)


def mask_email(email: str) -> str:
    """
    Mask an email address for logs: "jane.doe@acme.com" -> "j***@acme.com".
    """
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits of a phone number."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 4:
        return "***"
    return f"***-***-{digits[-4:]}"


# ============================================================================
# Error Handling
# ============================================================================


def build_error(
    code: ErrorCode,
    exc: Optional[Exception] = None,
    tool: str = "",
    lead_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build error object with PII masking.

    Args:
        code: Error code from ErrorCode enum
        exc: Exception that caused the error
        tool: Task name ("scrape" or "scoring")
        lead_id: Lead ID if available
        context: Additional context

    Returns:
        Error object for the run envelope
    """
    error = {
        "code": code.value,
        "tool": tool,
        "retryable": code in RETRYABLE_CODES,
    }

    if lead_id:
        error["lead_id"] = lead_id

    if exc:
        # Truncate exception message to prevent overly long error messages
        message = str(exc) or exc.__class__.__name__
        if len(message) > 200:
            message = message[:197] + "..."
        error["message"] = message
    else:
        error["message"] = f"Error: {code.value}"

    if context:
        masked_context = {}
        for key, value in context.items():
            if isinstance(value, str) and "email" in key.lower():
                masked_context[key] = mask_email(value)
            elif isinstance(value, str) and "phone" in key.lower():
                masked_context[key] = mask_phone(value)
            else:
                masked_context[key] = value
        error["context"] = masked_context

    return error


# ============================================================================
# Metrics
# ============================================================================


def build_metrics(
    count_in: int,
    count_out: int,
    duration_ms: int,
    outcomes: Optional[Dict[str, int]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build metrics structure for a run envelope.

    Args:
        count_in: Number of batch items received
        count_out: Number of items that reached a successful terminal state
        duration_ms: Run time in milliseconds
        outcomes: Terminal status -> count
        extra: Task specific counters

    Returns:
        Metrics dictionary
    """
    metrics = {
        "count_in": count_in,
        "count_out": count_out,
        "duration_ms": duration_ms,
        "pass_rate": round4(count_out / count_in) if count_in else None,
        "outcomes": dict(outcomes or {}),
    }
    if extra:
        metrics.update(extra)
    return metrics


# ============================================================================
# Logging & Secret Redaction
# ============================================================================


class PIIMaskingFormatter(logging.Formatter):
    """Log formatter that masks PII and secrets."""

    EMAIL_PATTERN = re.compile(r"\b([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
    SECRET_PATTERN = re.compile(
        r"(?i)\b(api[_-]?key|token|secret|password|authorization)\b(\s*[=:]\s*)([^\s,;\"']+)"
    )
    PHONE_PATTERN = re.compile(r"\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?(\d{4})\b")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.secret_keys = {"key", "token", "secret", "password", "authorization"}

    def format(self, record):
        msg = record.getMessage()

        # Structured messages are masked field by field
        try:
            log_data = json.loads(msg)
            record.msg = json.dumps(self._mask_json(log_data))
        except (json.JSONDecodeError, TypeError):
            record.msg = self._mask_text(msg)
        record.args = None

        return super().format(record)

    def _mask_json(self, data):
        """Mask PII and secrets in JSON data."""
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                if isinstance(value, (dict, list)):
                    masked[key] = self._mask_json(value)
                elif isinstance(value, str):
                    masked[key] = self._mask_value(key, value)
                else:
                    masked[key] = value
            return masked
        if isinstance(data, list):
            return [self._mask_json(item) for item in data]
        return data

    def _mask_value(self, key: str, value: str) -> str:
        key_lower = key.lower()

        if any(secret_key in key_lower for secret_key in self.secret_keys):
            return "***REDACTED***"
        if "email" in key_lower and "@" in value:
            return mask_email(value)
        if "phone" in key_lower and any(c.isdigit() for c in value):
            return mask_phone(value)
        if len(value) > 2048:
            return f"{value[:100]}...***TRUNCATED***"

        return value

    def _mask_text(self, text: str) -> str:
        text = self.SECRET_PATTERN.sub(r"\1\2***REDACTED***", text)
        text = self.EMAIL_PATTERN.sub(r"\1***@\2", text)
        # Scraped phone numbers keep only their last four digits
        return self.PHONE_PATTERN.sub(r"***-***-\1", text)


def setup_logging(
    tool_name: str,
    level: int = logging.INFO,
    data_dir: Optional[str] = None,
    log_file_path: Optional[str] = None,
) -> logging.Logger:
    """
    Setup logging with PII masking and JSON formatting.

    Creates a console handler and, when a log file or data directory is
    given, a file handler under {data_dir}/logs.

    Args:
        tool_name: Name of the task ("scrape", "scoring", "cli")
        level: Logging level
        data_dir: Optional data directory path for log files
        log_file_path: Optional shared run log file

    Returns:
        Configured logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(f"leadpipe.{tool_name}")
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter = PIIMaskingFormatter(
        '{"ts": "%(asctime)s", "level": "%(levelname)s", "tool": "%(name)s", "msg": "%(message)s"}'
    )
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if not log_file_path and data_dir:
        logs_dir = os.path.join(data_dir, "logs")
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M")
        log_file_path = os.path.join(logs_dir, f"{tool_name}_{timestamp}.log")

    if log_file_path:
        try:
            os.makedirs(os.path.dirname(log_file_path) or ".", exist_ok=True)
            file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            logger.info(f"File logging enabled: {log_file_path}")
        except OSError as e:
            # Console logging keeps working without the file
            logger.warning(f"Failed to setup file logging: {e}")

    logger.propagate = False
    return logger


def summarize_outcomes(statuses: List[str]) -> Dict[str, int]:
    """Count terminal statuses for the metrics block."""
    counts: Dict[str, int] = {}
    for status in statuses:
        counts[status] = counts.get(status, 0) + 1
    return counts
