"""
Pipeline Configuration
======================

Loads all environment variables for the scrape and scoring tasks.

Environment variables should be set in .env file in project root.
Every value is collected into a single PipelineSettings object that the
CLI builds once and hands to each orchestrator.
"""

import os
import warnings
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================
# Supabase PostgreSQL (lead rows, scrape runs, task runs)
# ============================================================
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

if not SUPABASE_URL:
    warnings.warn("SUPABASE_URL environment variable not set - lead storage will fail")
if not SUPABASE_SERVICE_ROLE_KEY:
    warnings.warn("SUPABASE_SERVICE_ROLE_KEY environment variable not set - lead storage will fail")

# ============================================================
# AWS S3 (page documents and run summaries)
# ============================================================
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_S3_BUCKET = os.getenv("AWS_S3_BUCKET", "leadpipe-campaign-data")
AWS_S3_REGION = os.getenv("AWS_S3_REGION", "us-east-2")

# ============================================================
# LLM Classifier (OpenRouter, OpenAI-compatible API)
# ============================================================
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
CLASSIFIER_MODEL = os.getenv("LEADPIPE_CLASSIFIER_MODEL", "openai/gpt-4o-mini")
CLASSIFIER_FALLBACK_MODEL = os.getenv("LEADPIPE_CLASSIFIER_FALLBACK_MODEL", "openai/gpt-3.5-turbo")

if not OPENROUTER_API_KEY:
    warnings.warn("OPENROUTER_API_KEY environment variable not set - scoring will fail")

# ============================================================
# Scrape Settings
# ============================================================
SCRAPE_CONCURRENCY = _env_int("LEADPIPE_SCRAPE_CONCURRENCY", 5)
FETCH_TIMEOUT = _env_float("LEADPIPE_FETCH_TIMEOUT", 15.0)  # seconds per lightweight fetch
RENDER_TIMEOUT = _env_float("LEADPIPE_RENDER_TIMEOUT", 30.0)  # seconds per headless navigation
ITEM_DEADLINE = _env_float("LEADPIPE_ITEM_DEADLINE", 120.0)  # seconds per lead attempt
SCRAPE_MAX_ATTEMPTS = _env_int("LEADPIPE_MAX_ATTEMPTS", 3)
RETRY_BASE_DELAY = _env_float("LEADPIPE_RETRY_BASE_DELAY", 2.0)
MAX_PAGES_PER_LEAD = _env_int("LEADPIPE_MAX_PAGES_PER_LEAD", 6)
IMPERSONATE_PROFILE = os.getenv("LEADPIPE_IMPERSONATE", "chrome124")
FAST_MODE = _env_bool("LEADPIPE_FAST_MODE")  # skip the headless fallback entirely

# ============================================================
# Page Pool
# ============================================================
PAGE_POOL_SIZE = _env_int("LEADPIPE_PAGE_POOL_SIZE", 3)
PAGE_POOL_WAIT_TIMEOUT = _env_float("LEADPIPE_PAGE_POOL_WAIT_TIMEOUT", 45.0)

# ============================================================
# Domain Tracker
# ============================================================
DOMAIN_FAILURE_THRESHOLD = _env_int("LEADPIPE_DOMAIN_FAILURE_THRESHOLD", 3)
DOMAIN_BACKOFF_BASE = _env_float("LEADPIPE_DOMAIN_BACKOFF_BASE", 5.0)
DOMAIN_BACKOFF_MAX = _env_float("LEADPIPE_DOMAIN_BACKOFF_MAX", 300.0)
DOMAIN_HEALTHY_CONCURRENCY = _env_int("LEADPIPE_DOMAIN_CONCURRENCY", 2)
DOMAIN_DEGRADED_CONCURRENCY = _env_int("LEADPIPE_DOMAIN_DEGRADED_CONCURRENCY", 1)
DEFER_POLL_INTERVAL = _env_float("LEADPIPE_DEFER_POLL_INTERVAL", 0.5)

# ============================================================
# Scoring Settings
# ============================================================
SCORING_CONCURRENCY = _env_int("LEADPIPE_SCORING_CONCURRENCY", 5)
CLASSIFIER_TIMEOUT = _env_float("LEADPIPE_CLASSIFIER_TIMEOUT", 60.0)
CLASSIFIER_MAX_ATTEMPTS = _env_int("LEADPIPE_CLASSIFIER_MAX_ATTEMPTS", 3)
CLASSIFIER_BACKOFF_BASE = _env_float("LEADPIPE_CLASSIFIER_BACKOFF_BASE", 5.0)
CLASSIFIER_BACKOFF_MAX = _env_float("LEADPIPE_CLASSIFIER_BACKOFF_MAX", 45.0)
RESCORE = _env_bool("LEADPIPE_RESCORE")

# ============================================================
# Batch & Persistence
# ============================================================
BATCH_BUDGET = _env_float("LEADPIPE_BATCH_BUDGET", 3600.0)  # last-resort wall clock per run
WRITE_CONFLICT_RETRIES = _env_int("LEADPIPE_WRITE_CONFLICT_RETRIES", 3)
PERSIST_ARTIFACTS = _env_bool("LEADPIPE_PERSIST_ARTIFACTS", True)

# ============================================================
# Logging
# ============================================================
LOG_LEVEL = os.getenv("LEADPIPE_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LEADPIPE_LOG_FILE")
DATA_DIR = os.getenv("LEADPIPE_DATA_DIR")


@dataclass(frozen=True)
class PipelineSettings:
    """Immutable snapshot of every tunable the pipeline reads."""

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_s3_bucket: str = "leadpipe-campaign-data"
    aws_s3_region: str = "us-east-2"

    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    classifier_model: str = "openai/gpt-4o-mini"
    classifier_fallback_model: Optional[str] = "openai/gpt-3.5-turbo"

    scrape_concurrency: int = 5
    fetch_timeout: float = 15.0
    render_timeout: float = 30.0
    item_deadline: float = 120.0
    scrape_max_attempts: int = 3
    retry_base_delay: float = 2.0
    max_pages_per_lead: int = 6
    impersonate: str = "chrome124"
    fast_mode: bool = False

    page_pool_size: int = 3
    page_pool_wait_timeout: float = 45.0

    domain_failure_threshold: int = 3
    domain_backoff_base: float = 5.0
    domain_backoff_max: float = 300.0
    domain_healthy_concurrency: int = 2
    domain_degraded_concurrency: int = 1
    defer_poll_interval: float = 0.5

    scoring_concurrency: int = 5
    classifier_timeout: float = 60.0
    classifier_max_attempts: int = 3
    classifier_backoff_base: float = 5.0
    classifier_backoff_max: float = 45.0
    rescore: bool = False

    batch_budget: float = 3600.0
    write_conflict_retries: int = 3
    persist_artifacts: bool = True

    log_level: str = "INFO"
    log_file: Optional[str] = None
    data_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from the module-level environment values."""
        return cls(
            supabase_url=SUPABASE_URL,
            supabase_service_role_key=SUPABASE_SERVICE_ROLE_KEY,
            aws_access_key_id=AWS_ACCESS_KEY_ID,
            aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
            aws_s3_bucket=AWS_S3_BUCKET,
            aws_s3_region=AWS_S3_REGION,
            openrouter_api_key=OPENROUTER_API_KEY,
            openrouter_base_url=OPENROUTER_BASE_URL,
            classifier_model=CLASSIFIER_MODEL,
            classifier_fallback_model=CLASSIFIER_FALLBACK_MODEL or None,
            scrape_concurrency=SCRAPE_CONCURRENCY,
            fetch_timeout=FETCH_TIMEOUT,
            render_timeout=RENDER_TIMEOUT,
            item_deadline=ITEM_DEADLINE,
            scrape_max_attempts=SCRAPE_MAX_ATTEMPTS,
            retry_base_delay=RETRY_BASE_DELAY,
            max_pages_per_lead=MAX_PAGES_PER_LEAD,
            impersonate=IMPERSONATE_PROFILE,
            fast_mode=FAST_MODE,
            page_pool_size=PAGE_POOL_SIZE,
            page_pool_wait_timeout=PAGE_POOL_WAIT_TIMEOUT,
            domain_failure_threshold=DOMAIN_FAILURE_THRESHOLD,
            domain_backoff_base=DOMAIN_BACKOFF_BASE,
            domain_backoff_max=DOMAIN_BACKOFF_MAX,
            domain_healthy_concurrency=DOMAIN_HEALTHY_CONCURRENCY,
            domain_degraded_concurrency=DOMAIN_DEGRADED_CONCURRENCY,
            defer_poll_interval=DEFER_POLL_INTERVAL,
            scoring_concurrency=SCORING_CONCURRENCY,
            classifier_timeout=CLASSIFIER_TIMEOUT,
            classifier_max_attempts=CLASSIFIER_MAX_ATTEMPTS,
            classifier_backoff_base=CLASSIFIER_BACKOFF_BASE,
            classifier_backoff_max=CLASSIFIER_BACKOFF_MAX,
            rescore=RESCORE,
            batch_budget=BATCH_BUDGET,
            write_conflict_retries=WRITE_CONFLICT_RETRIES,
            persist_artifacts=PERSIST_ARTIFACTS,
            log_level=LOG_LEVEL,
            log_file=LOG_FILE,
            data_dir=DATA_DIR,
        )

    def with_overrides(self, **changes) -> "PipelineSettings":
        """Return a copy with the given fields replaced (CLI flags, tests)."""
        return replace(self, **changes)
