"""
Scoring Orchestrator
====================

Scores one batch of scraped leads:

1. Load the lead and its stored ExtractionResult
2. Build MarketStats once per business_type segment seen in the batch
3. Render the facts summary + market context prompt and call the classifier
4. Retry malformed or failed classifications with exponential backoff
5. Persist the ScoringResult, or an excluded scoring_failed result

Status transitions: scraped -> queued_for_scoring -> scoring -> (scored | scoring_failed)
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from leadpipe.common import ErrorCode
from leadpipe.context import PipelineContext
from leadpipe.errors import ClassifierError
from leadpipe.models import BatchItem, ExtractionResult, Lead, LeadStatus, MarketStats, ScoringResult
from leadpipe.orchestrator import BatchOrchestrator, Job
from leadpipe.scoring.classifier import (
    Classification,
    LLMClassifier,
    build_facts_summary,
    build_lead_context,
    evidence_from_quotes,
)
from leadpipe.scoring.market import build_market_context, build_market_stats
from leadpipe.scoring.prompts import build_scoring_prompt

OUTCOME_ALREADY_SCORED = "already_scored"


class ScoringOrchestrator(BatchOrchestrator):
    """Bounded worker pool for one scoring batch."""

    tool_name = "scoring"
    task_type = "scoring"
    success_statuses = (LeadStatus.SCORED.value, OUTCOME_ALREADY_SCORED)
    failed_status = LeadStatus.SCORING_FAILED.value

    def __init__(
        self,
        ctx: PipelineContext,
        classifier: Optional[LLMClassifier] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(ctx, ctx.settings.scoring_concurrency, logger)
        self.classifier = classifier

        self._stats: Dict[str, MarketStats] = {}
        self._stats_locks: Dict[str, asyncio.Lock] = {}
        self._already_scored: Set[str] = set()
        self._leads: Dict[str, Lead] = {}
        self._counters: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        self._stats = {}
        self._stats_locks = {}
        self._already_scored = set()
        self._leads = {}
        self._counters = {"skipped": 0, "repaired": 0, "classifier_retries": 0, "fallback_used": 0}
        if self.classifier is None:
            self.classifier = LLMClassifier.from_settings(self.settings, self.logger)

    def run_metrics(self) -> Dict[str, Any]:
        return {**self._counters, "segments": sorted(self._stats)}

    # ------------------------------------------------------------------
    # Per-item flow
    # ------------------------------------------------------------------

    async def mark_queued(self, item: BatchItem) -> None:
        lead = await self.load_lead(item.lead_id)
        if not self.settings.rescore and lead.pipeline_status == LeadStatus.SCORED:
            self._already_scored.add(item.lead_id)
            return
        self._leads[item.lead_id] = lead
        await self.write_lead("set_status", item.lead_id, LeadStatus.QUEUED_FOR_SCORING)

    async def handle(self, job: Job) -> Optional[float]:
        if job.lead_id in self._already_scored:
            self._counters["skipped"] += 1
            self.logger.info(f"⏸️ {job.lead_id} already scored, skipping (rescore disabled)")
            self.finish(job.item, OUTCOME_ALREADY_SCORED)
            return None

        lead = self._leads.pop(job.lead_id)
        await self.write_lead("set_status", job.lead_id, LeadStatus.SCORING)

        facts = ExtractionResult.from_stored(lead.extraction)
        stats = await self.segment_stats(lead.business_type)
        prompt = build_scoring_prompt(
            build_facts_summary(facts),
            build_market_context(stats, lead.review_count, lead.rating),
            build_lead_context(lead, facts),
        )

        try:
            classification = await self._classify(job, prompt, facts)
        except ClassifierError as e:
            await self._persist_failure(job, str(e), e.code)
            return None

        result = classification.result
        await self.write_lead("save_scoring", job.lead_id, result, LeadStatus.SCORED)
        self.logger.info(
            f"✅ {job.lead_id}: quality={result.business_quality_score:g} "
            f"sell={result.sell_likelihood_score:g} priority={result.priority_score} "
            f"tier={result.priority_tier} ({classification.model_used})"
        )
        self.finish(
            job.item,
            LeadStatus.SCORED.value,
            ownership_type=result.ownership_type.value,
            is_excluded=result.is_excluded,
            priority_score=result.priority_score,
            priority_tier=result.priority_tier,
            model=classification.model_used,
            prompt_sha256=classification.prompt_fingerprint,
            attempts=job.attempts,
        )
        return None

    async def segment_stats(self, segment: Optional[str]) -> Optional[MarketStats]:
        """MarketStats for a business_type, computed at most once per run."""
        if not segment:
            return None
        if segment in self._stats:
            return self._stats[segment]

        lock = self._stats_locks.setdefault(segment, asyncio.Lock())
        async with lock:
            if segment not in self._stats:
                review_counts, ratings = await self.call_store("segment_distribution", segment)
                stats = build_market_stats(review_counts, ratings, segment)
                self._stats[segment] = stats
                self.logger.info(
                    f"📊 Market stats for '{segment}': {stats.lead_count} leads, "
                    f"median reviews {stats.at(50):.0f}, median rating {stats.rating_median:.1f}"
                )
        return self._stats[segment]

    def _log_retry(self, retry_state: RetryCallState) -> None:
        self._counters["classifier_retries"] += 1
        exc = retry_state.outcome.exception()
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        self.logger.warning(
            f"🔄 Classifier attempt {retry_state.attempt_number} failed ({exc}), retrying in {wait:.1f}s"
        )

    async def _classify(self, job: Job, prompt: str, facts: ExtractionResult) -> Classification:
        evidence = evidence_from_quotes(facts)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.settings.classifier_max_attempts)),
            wait=wait_exponential(
                multiplier=self.settings.classifier_backoff_base, max=self.settings.classifier_backoff_max
            ),
            retry=retry_if_exception_type(ClassifierError),
            before_sleep=self._log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                job.attempts += 1
                classification = await self.classifier.classify(prompt, evidence)

        if classification.repaired:
            self._counters["repaired"] += 1
        if classification.model_used != self.classifier.primary_model:
            self._counters["fallback_used"] += 1
        return classification

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_failure(self, job: Job, reason: str, code: ErrorCode) -> None:
        await self.fail_item(job.item, reason, code)
        self.record_error(code, ClassifierError(reason, code), lead_id=job.lead_id)
        self.logger.info(f"❌ {job.lead_id}: scoring failed after {job.attempts} attempt(s): {reason}")
        self.finish(job.item, LeadStatus.SCORING_FAILED.value, reason=reason, attempts=job.attempts)

    async def fail_item(self, item: BatchItem, reason: str, code: ErrorCode) -> None:
        await self.write_lead(
            "save_scoring", item.lead_id, ScoringResult.scoring_failed(reason), LeadStatus.SCORING_FAILED
        )
