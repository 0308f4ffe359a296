"""
Lead Store
==========

Storage collaborator for both tasks, backed by Supabase PostgreSQL.

Tables:
- leads:          one row per lead; every write bumps row_version and is
                  conditional on the version the caller loaded
- scrape_runs:    append-only audit record per lead scrape attempt
- pipeline_tasks: one row per task run (status + metrics), keyed by task_id

The supabase client is synchronous; the orchestrators call these methods
through asyncio.to_thread.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from leadpipe.common import now_z
from leadpipe.errors import LeadNotFoundError, StorageError, WriteConflictError
from leadpipe.models import BatchItem, ExtractionResult, Lead, LeadStatus, ScoringResult

logger = logging.getLogger(__name__)

LEADS_TABLE = "leads"
SCRAPE_RUNS_TABLE = "scrape_runs"
TASKS_TABLE = "pipeline_tasks"

LEAD_COLUMNS = (
    "lead_id, place_id, website, name, business_type, review_count, rating, "
    "pipeline_status, scraped_at, scored_at, extraction, row_version"
)
DISTRIBUTION_PAGE_SIZE = 1000


class LeadStore:
    """Lead reads and optimistic-concurrency writes."""

    def __init__(self, client: Client, write_conflict_retries: int = 3):
        self.client = client
        self.write_conflict_retries = max(1, write_conflict_retries)

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except APIError as e:
            raise StorageError(f"{action} failed: {e.message or e}") from e
        except httpx.HTTPError as e:
            raise StorageError(f"{action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_lead(self, lead_id: str) -> Optional[Lead]:
        result = self._execute(
            self.client.table(LEADS_TABLE).select(LEAD_COLUMNS).eq("lead_id", lead_id).limit(1),
            f"get_lead({lead_id})",
        )
        rows = result.data or []
        return Lead.model_validate(rows[0]) if rows else None

    def list_unscraped(self, limit: int) -> List[BatchItem]:
        """Leads with a website that have not been scraped yet, oldest first."""
        result = self._execute(
            self.client.table(LEADS_TABLE)
            .select("lead_id, place_id")
            .not_.is_("website", "null")
            .is_("scraped_at", "null")
            .in_("pipeline_status", [LeadStatus.IDLE.value, LeadStatus.QUEUED_FOR_SCRAPE.value])
            .order("created_at")
            .limit(limit),
            "list_unscraped",
        )
        return [BatchItem.model_validate(row) for row in result.data or []]

    def list_scraped(self, limit: int) -> List[BatchItem]:
        """Leads waiting for scoring, oldest first."""
        result = self._execute(
            self.client.table(LEADS_TABLE)
            .select("lead_id, place_id")
            .in_("pipeline_status", [LeadStatus.SCRAPED.value, LeadStatus.QUEUED_FOR_SCORING.value])
            .order("scraped_at")
            .limit(limit),
            "list_scraped",
        )
        return [BatchItem.model_validate(row) for row in result.data or []]

    def segment_distribution(self, business_type: Optional[str]) -> Tuple[List[int], List[float]]:
        """
        Review counts and ratings of every lead in a segment.

        business_type=None reads the whole lead table.
        """
        review_counts: List[int] = []
        ratings: List[float] = []
        offset = 0

        while True:
            query = self.client.table(LEADS_TABLE).select("review_count, rating")
            if business_type:
                query = query.eq("business_type", business_type)
            query = query.order("lead_id").range(offset, offset + DISTRIBUTION_PAGE_SIZE - 1)
            rows = self._execute(query, f"segment_distribution({business_type})").data or []

            for row in rows:
                if row.get("review_count") is not None:
                    review_counts.append(int(row["review_count"]))
                if row.get("rating") is not None:
                    ratings.append(float(row["rating"]))

            if len(rows) < DISTRIBUTION_PAGE_SIZE:
                break
            offset += DISTRIBUTION_PAGE_SIZE

        return review_counts, ratings

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _update_versioned(self, lead_id: str, fields: Dict[str, Any], expected_version: Optional[int] = None) -> int:
        """
        Apply `fields` only if row_version still matches.

        With expected_version the write is conditional on the version the
        caller loaded, and a mismatch raises WriteConflictError at once. The
        version is read back only to tell a deleted row from a moved one.
        Without expected_version (a blind write) the current version is read
        just before the update, and the pair is retried up to
        write_conflict_retries times.

        Returns the new row_version.

        Raises:
            LeadNotFoundError: the lead row does not exist
            WriteConflictError: the version moved
            StorageError: the database is unreachable
        """
        if expected_version is not None:
            if self._conditional_update(lead_id, fields, expected_version):
                return expected_version + 1
            if self._read_version(lead_id) is None:
                raise LeadNotFoundError(lead_id)
            raise WriteConflictError(lead_id, 1, f"lead {lead_id} changed since version {expected_version} was read")

        for attempt in range(1, self.write_conflict_retries + 1):
            version = self._read_version(lead_id)
            if version is None:
                raise LeadNotFoundError(lead_id)
            if self._conditional_update(lead_id, fields, version):
                return version + 1
            logger.debug(f"row_version moved for {lead_id} (attempt {attempt})")

        raise WriteConflictError(lead_id, self.write_conflict_retries)

    def _read_version(self, lead_id: str) -> Optional[int]:
        current = self._execute(
            self.client.table(LEADS_TABLE).select("row_version").eq("lead_id", lead_id).limit(1),
            f"read row_version({lead_id})",
        )
        rows = current.data or []
        if not rows:
            return None
        return rows[0].get("row_version") or 0

    def _conditional_update(self, lead_id: str, fields: Dict[str, Any], version: int) -> bool:
        payload = dict(fields, row_version=version + 1, updated_at=now_z())
        result = self._execute(
            self.client.table(LEADS_TABLE).update(payload).eq("lead_id", lead_id).eq("row_version", version),
            f"update lead({lead_id})",
        )
        return bool(result.data)

    def set_status(self, lead_id: str, status: LeadStatus, expected_version: Optional[int] = None) -> int:
        return self._update_versioned(lead_id, {"pipeline_status": status.value}, expected_version)

    def save_extraction(
        self,
        lead_id: str,
        extraction: ExtractionResult,
        status: LeadStatus,
        reason: Optional[str] = None,
        document_key: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> int:
        fields = {
            "extraction": extraction.model_dump(mode="json"),
            "pipeline_status": status.value,
            "scraped_at": now_z(),
            "scrape_error": reason,
        }
        if document_key:
            fields["scrape_document_key"] = document_key
        return self._update_versioned(lead_id, fields, expected_version)

    def save_scoring(
        self, lead_id: str, result: ScoringResult, status: LeadStatus, expected_version: Optional[int] = None
    ) -> int:
        return self._update_versioned(
            lead_id,
            {
                "scoring": result.model_dump(mode="json"),
                "ownership_type": result.ownership_type.value,
                "controlling_owner": result.controlling_owner,
                "is_excluded": result.is_excluded,
                "exclusion_reason": result.exclusion_reason,
                "business_quality_score": result.business_quality_score,
                "sell_likelihood_score": result.sell_likelihood_score,
                "priority_score": result.priority_score,
                "priority_tier": result.priority_tier,
                "pipeline_status": status.value,
                "scored_at": now_z(),
            },
            expected_version,
        )

    def record_scrape_run(self, record: Dict[str, Any]) -> None:
        self._execute(self.client.table(SCRAPE_RUNS_TABLE).insert(record), "record_scrape_run")

    def record_task_run(self, task_id: str, task_type: str, status: str, metrics: Dict[str, Any]) -> None:
        self._execute(
            self.client.table(TASKS_TABLE).upsert(
                {
                    "task_id": task_id,
                    "task_type": task_type,
                    "status": status,
                    "metrics": metrics,
                    "completed_at": now_z(),
                },
                on_conflict="task_id",
            ),
            "record_task_run",
        )
