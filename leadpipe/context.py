"""
Explicit runtime context.

Built once by the CLI (or by a test) and handed to every orchestrator, so no
module keeps a process-wide client.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from leadpipe.common import setup_logging
from leadpipe.config import PipelineSettings


@dataclass
class PipelineContext:
    settings: PipelineSettings
    store: Any
    artifacts: Optional[Any] = None

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> "PipelineContext":
        """Wire the Supabase lead store and, when enabled, the S3 artifact store."""
        from leadpipe.db.client import create_write_client
        from leadpipe.db.leads import LeadStore
        from leadpipe.utils.storage import ArtifactStore

        store = LeadStore(create_write_client(settings), settings.write_conflict_retries)
        artifacts = ArtifactStore.from_settings(settings) if settings.persist_artifacts else None
        return cls(settings=settings, store=store, artifacts=artifacts)

    def logger(self, tool_name: str) -> logging.Logger:
        return setup_logging(
            tool_name,
            level=self.settings.log_level,
            data_dir=self.settings.data_dir,
            log_file_path=self.settings.log_file,
        )
