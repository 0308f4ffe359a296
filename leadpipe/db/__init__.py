"""
Lead Storage Module
===================

Supabase client construction and the LeadStore read/write collaborator.
"""

from leadpipe.db.client import create_write_client
from leadpipe.db.leads import LeadStore

__all__ = ["create_write_client", "LeadStore"]
