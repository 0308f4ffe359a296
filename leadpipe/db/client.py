"""
Supabase Client
===============

Builds the Supabase client used for lead reads and writes. Writes need the
SERVICE_ROLE key; the client is created once per CLI invocation and passed
down through the PipelineContext.
"""

import logging

from supabase import Client, create_client

from leadpipe.config import PipelineSettings

logger = logging.getLogger(__name__)


def create_write_client(settings: PipelineSettings) -> Client:
    """
    Create a Supabase client for WRITE operations (uses SERVICE_ROLE key).

    Raises:
        RuntimeError: Supabase is not configured
    """
    if not settings.supabase_url:
        raise RuntimeError("SUPABASE_URL not configured")

    if not settings.supabase_service_role_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY not configured")

    client = create_client(settings.supabase_url, settings.supabase_service_role_key)
    logger.info("✅ Supabase WRITE client initialized (SERVICE_ROLE_KEY)")
    return client
