import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from leadpipe.config import PipelineSettings  # noqa: E402
from leadpipe.context import PipelineContext  # noqa: E402
from tests.fakes import FakeArtifactStore, InMemoryLeadStore  # noqa: E402


@pytest.fixture
def settings():
    """Settings with every delay shrunk so batches finish in milliseconds."""
    return PipelineSettings(
        scrape_concurrency=3,
        fetch_timeout=1.0,
        render_timeout=1.0,
        item_deadline=2.0,
        scrape_max_attempts=2,
        retry_base_delay=0.01,
        max_pages_per_lead=3,
        page_pool_size=2,
        page_pool_wait_timeout=1.0,
        domain_failure_threshold=3,
        domain_backoff_base=0.01,
        domain_backoff_max=0.05,
        defer_poll_interval=0.01,
        scoring_concurrency=2,
        classifier_timeout=1.0,
        classifier_max_attempts=3,
        classifier_backoff_base=0.0,
        classifier_backoff_max=0.0,
        batch_budget=10.0,
        write_conflict_retries=3,
        persist_artifacts=True,
    )


@pytest.fixture
def store():
    return InMemoryLeadStore()


@pytest.fixture
def artifacts():
    return FakeArtifactStore()


@pytest.fixture
def ctx(settings, store, artifacts):
    return PipelineContext(settings=settings, store=store, artifacts=artifacts)
