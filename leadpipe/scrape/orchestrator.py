"""
Scrape Orchestrator
===================

Drives one batch of leads through fetch -> extract -> persist:

1. Resolve the lead's website and registrable domain
2. Wait for the domain tracker to grant a slot (deferred, never dropped)
3. Crawl the homepage plus prioritized internal pages under a per-lead deadline
4. Run the content extractor and store the page document
5. Persist the ExtractionResult, or the empty default with the failure reason

Status transitions: idle -> queued_for_scrape -> scraping -> (scraped | scrape_failed)
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from leadpipe.common import ErrorCode, normalize_domain, normalize_url, now_z
from leadpipe.context import PipelineContext
from leadpipe.errors import ExtractionError, FailureKind, NetworkError, ScrapeError
from leadpipe.models import BatchItem, ExtractionResult, Lead, LeadStatus
from leadpipe.orchestrator import BatchOrchestrator, Job
from leadpipe.scrape.document import build_page_document
from leadpipe.scrape.domain_tracker import DomainTracker
from leadpipe.scrape.extractor import ContentExtractor
from leadpipe.scrape.fetcher import CurlCffiFetcher
from leadpipe.scrape.html import select_internal_links
from leadpipe.scrape.page_pool import PagePool
from leadpipe.scrape.render import RENDERED_VIA_RENDER, PageContent, RenderStrategySelector


class ScrapeOrchestrator(BatchOrchestrator):
    """Bounded worker pool for one scrape batch."""

    tool_name = "scrape"
    task_type = "scrape"
    success_statuses = (LeadStatus.SCRAPED.value,)
    failed_status = LeadStatus.SCRAPE_FAILED.value

    def __init__(
        self,
        ctx: PipelineContext,
        selector: Optional[RenderStrategySelector] = None,
        tracker: Optional[DomainTracker] = None,
        extractor: Optional[ContentExtractor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(ctx, ctx.settings.scrape_concurrency, logger)
        settings = self.settings

        self.selector = selector
        self.tracker = tracker or DomainTracker(
            failure_threshold=settings.domain_failure_threshold,
            backoff_base=settings.domain_backoff_base,
            backoff_max=settings.domain_backoff_max,
            healthy_concurrency=settings.domain_healthy_concurrency,
            degraded_concurrency=settings.domain_degraded_concurrency,
            defer_interval=settings.defer_poll_interval,
            logger=self.logger,
        )
        self.extractor = extractor or ContentExtractor(self.logger)

        self._owned_fetcher: Optional[CurlCffiFetcher] = None
        self._owned_pool: Optional[PagePool] = None
        self._counters: Dict[str, int] = {}
        self._leads: Dict[str, Lead] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        self._counters = {"deferrals": 0, "pages_fetched": 0, "pages_rendered": 0, "subpage_failures": 0}
        self._leads = {}
        if self.selector is not None:
            return

        self._owned_fetcher = CurlCffiFetcher(impersonate=self.settings.impersonate)
        if not self.settings.fast_mode:
            self._owned_pool = PagePool(
                size=self.settings.page_pool_size,
                wait_timeout=self.settings.page_pool_wait_timeout,
                logger=self.logger,
            )
            await self._owned_pool.start()
        else:
            self.logger.info("⚡ Fast mode: headless rendering disabled")

        self.selector = RenderStrategySelector(
            self._owned_fetcher,
            page_pool=self._owned_pool,
            fetch_timeout=self.settings.fetch_timeout,
            render_timeout=self.settings.render_timeout,
            logger=self.logger,
        )

    async def teardown(self) -> None:
        if self._owned_pool is not None:
            await self._owned_pool.close()
            self._owned_pool = None
        if self._owned_fetcher is not None:
            await self._owned_fetcher.close()
            self._owned_fetcher = None
            self.selector = None

    def run_metrics(self) -> Dict[str, Any]:
        return {**self._counters, "domains": self.tracker.snapshot()}

    # ------------------------------------------------------------------
    # Per-item flow
    # ------------------------------------------------------------------

    async def mark_queued(self, item: BatchItem) -> None:
        self._leads[item.lead_id] = await self.load_lead(item.lead_id)
        await self.write_lead("set_status", item.lead_id, LeadStatus.QUEUED_FOR_SCRAPE)

    async def handle(self, job: Job) -> Optional[float]:
        if "url" not in job.state and not await self._resolve(job):
            return None

        domain = job.state["domain"]
        wait = await self.tracker.try_acquire(domain)
        if wait is not None:
            self._counters["deferrals"] += 1
            self.logger.debug(f"Deferring {job.lead_id} ({domain}) for {wait:.2f}s")
            return wait

        job.attempts += 1
        job.state["run_id"] = str(uuid.uuid4())
        started = time.time()
        failure: Optional[ScrapeError] = None
        pages: List[PageContent] = []

        try:
            pages = await self._crawl(job.state["url"])
        except asyncio.TimeoutError:
            failure = NetworkError(
                f"{job.state['url']}: deadline of {self.settings.item_deadline}s exceeded",
                code=ErrorCode.DEADLINE_EXCEEDED,
            )
        except ScrapeError as e:
            failure = e
        finally:
            await self.tracker.release(domain)

        if failure is not None:
            return await self._attempt_failed(job, failure, started)

        await self.tracker.record_success(domain)
        await self._persist_success(job, pages, started)
        return None

    async def _resolve(self, job: Job) -> bool:
        """Fix the lead's URL; False when the lead is already terminal."""
        lead = self._leads.pop(job.lead_id)
        url = normalize_url(lead.website)
        if url is None:
            await self._persist_failure(
                job, f"missing or invalid website: {lead.website!r}", ErrorCode.MISSING_WEBSITE, time.time()
            )
            return False

        job.state["url"] = url
        job.state["domain"] = normalize_domain(url)
        await self.write_lead("set_status", job.lead_id, LeadStatus.SCRAPING)
        return True

    async def _crawl(self, url: str) -> List[PageContent]:
        """
        Homepage plus prioritized internal pages within item_deadline.

        Only the homepage can miss the deadline (asyncio.TimeoutError); a
        sub-page still pending when the deadline passes is dropped and the
        pages already fetched are kept.
        """
        deadline = time.monotonic() + self.settings.item_deadline
        home = await asyncio.wait_for(self.selector.fetch_page(url), timeout=self.settings.item_deadline)
        pages = [home]

        for link in select_internal_links(home.links, home.url, self.settings.max_pages_per_lead - 1):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.debug(f"Deadline reached, not fetching {link}")
                break
            try:
                pages.append(await asyncio.wait_for(self.selector.fetch_page(link), timeout=remaining))
            except asyncio.TimeoutError:
                self._counters["subpage_failures"] += 1
                self.logger.debug(f"Sub-page {link} cut off by the {self.settings.item_deadline}s deadline")
                break
            except ScrapeError as e:
                # Sub-pages are best effort once the homepage answered
                self._counters["subpage_failures"] += 1
                self.logger.debug(f"Sub-page skipped {link}: {e.reason}")

        self._counters["pages_fetched"] += len(pages)
        self._counters["pages_rendered"] += sum(1 for p in pages if p.rendered_via == RENDERED_VIA_RENDER)
        return pages

    async def _attempt_failed(self, job: Job, failure: ScrapeError, started: float) -> Optional[float]:
        state = await self.tracker.record_failure(job.state["domain"], failure.kind)
        max_attempts = self.settings.scrape_max_attempts
        self.logger.warning(
            f"⚠️ {job.lead_id} attempt {job.attempts}/{max_attempts} failed "
            f"(domain {state.value}): {failure.reason}"
        )

        if not failure.retryable or job.attempts >= max_attempts:
            await self._persist_failure(job, failure.reason, failure.code, started)
            return None

        await self._record_run(job, "retrying", [], started, failure.reason)
        return self.settings.retry_base_delay * 2 ** (job.attempts - 1)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist_success(self, job: Job, pages: List[PageContent], started: float) -> None:
        try:
            extraction = self.extractor.extract(pages)
        except ExtractionError as e:
            await self.tracker.record_failure(job.state["domain"], FailureKind.EXTRACTION)
            self.record_error(e.code, e, lead_id=job.lead_id)
            self.logger.info(f"📭 {job.lead_id}: nothing extracted ({e})")
            extraction = ExtractionResult.empty()

        document_key = None
        if self.ctx.artifacts is not None and self.settings.persist_artifacts:
            markdown = build_page_document(pages)
            if markdown:
                document_key = await asyncio.to_thread(
                    self.ctx.artifacts.put_page_document, job.lead_id, job.state["run_id"], markdown
                )

        await self.write_lead("save_extraction", job.lead_id, extraction, LeadStatus.SCRAPED, None, document_key)
        await self._record_run(job, "success", pages, started)

        rendered = sum(1 for p in pages if p.rendered_via == RENDERED_VIA_RENDER)
        self.logger.info(
            f"✅ {job.lead_id}: {len(pages)} page(s), {rendered} rendered, "
            f"quality={extraction.website_quality.value}"
        )
        self.finish(
            job.item,
            LeadStatus.SCRAPED.value,
            url=job.state["url"],
            pages=len(pages),
            rendered_pages=rendered,
            attempts=job.attempts,
            document_key=document_key,
        )

    async def _persist_failure(self, job: Job, reason: str, code: ErrorCode, started: float) -> None:
        await self.fail_item(job.item, reason, code)
        self.record_error(code, ScrapeError(reason, code), lead_id=job.lead_id)
        await self._record_run(job, "failed", [], started, reason)
        self.logger.info(f"❌ {job.lead_id}: scrape failed after {job.attempts} attempt(s): {reason}")
        self.finish(job.item, LeadStatus.SCRAPE_FAILED.value, reason=reason, attempts=job.attempts)

    async def fail_item(self, item: BatchItem, reason: str, code: ErrorCode) -> None:
        await self.write_lead(
            "save_extraction", item.lead_id, ExtractionResult.empty(), LeadStatus.SCRAPE_FAILED, reason
        )

    async def _record_run(
        self, job: Job, status: str, pages: List[PageContent], started: float, error: Optional[str] = None
    ) -> None:
        await self.call_store(
            "record_scrape_run",
            {
                "run_id": job.state.get("run_id") or str(uuid.uuid4()),
                "task_id": self.task_id,
                "lead_id": job.lead_id,
                "place_id": job.item.place_id,
                "url": job.state.get("url"),
                "status": status,
                "attempt": job.attempts,
                "pages_scraped": len(pages),
                "rendered_pages": sum(1 for p in pages if p.rendered_via == RENDERED_VIA_RENDER),
                "page_urls": [p.url for p in pages],
                "error": error,
                "duration_ms": int((time.time() - started) * 1000),
                "created_at": now_z(),
            },
        )
