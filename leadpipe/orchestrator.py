"""
Batch Worker Pool
=================

Shared driver for the scrape and scoring orchestrators: a bounded set of
asyncio workers draining one batch from a queue, deferred requeue, a
batch-level wall-clock budget, and the {"data", "errors", "metrics"} run
envelope.

Subclasses implement handle(), which either finishes the job (finish()) and
returns None, or returns a delay in seconds after which the job is requeued.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from leadpipe.common import ErrorCode, build_error, build_metrics, summarize_outcomes
from leadpipe.context import PipelineContext
from leadpipe.errors import LeadNotFoundError, PipelineError, StorageError, WriteConflictError
from leadpipe.models import BatchItem, Lead

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

OUTCOME_WRITE_CONFLICT = "write_conflict"
OUTCOME_NOT_FOUND = "not_found"


@dataclass
class Job:
    """One batch item plus the retry state carried across requeues."""

    item: BatchItem
    attempts: int = 0
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def lead_id(self) -> str:
        return self.item.lead_id


class BatchOrchestrator:
    """Base class for one-shot batch runs."""

    tool_name = "batch"
    task_type = "batch"
    success_statuses: tuple = ()
    failed_status = "failed"

    def __init__(self, ctx: PipelineContext, concurrency: int, logger: Optional[logging.Logger] = None):
        self.ctx = ctx
        self.settings = ctx.settings
        self.concurrency = max(1, concurrency)
        self.logger = logger or ctx.logger(self.tool_name)

        self.task_id: Optional[str] = None
        self.errors: List[Dict[str, Any]] = []
        self.results: Dict[str, Dict[str, Any]] = {}
        self._items: Dict[str, BatchItem] = {}
        self._remaining = 0
        self._done: Optional[asyncio.Event] = None
        self._fatal: Optional[StorageError] = None
        self._timers: List[asyncio.TimerHandle] = []
        self._versions: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def setup(self) -> None:
        """Acquire run-scoped resources."""

    async def teardown(self) -> None:
        """Release run-scoped resources."""

    async def mark_queued(self, item: BatchItem) -> None:
        """Persist the queued status of an accepted item."""

    async def handle(self, job: Job) -> Optional[float]:
        raise NotImplementedError

    async def fail_item(self, item: BatchItem, reason: str, code: ErrorCode) -> None:
        """Persist a terminal failure for an item the run could not finish."""
        raise NotImplementedError

    def run_metrics(self) -> Dict[str, Any]:
        """Task specific counters merged into the metrics block."""
        return {}

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def record_error(
        self,
        code: ErrorCode,
        exc: Optional[Exception] = None,
        lead_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.errors.append(build_error(code, exc, tool=self.tool_name, lead_id=lead_id, context=context))

    def finish(self, item: BatchItem, status: str, **details) -> None:
        """Record the single terminal state of an item."""
        if item.lead_id in self.results:
            self.logger.warning(f"⚠️ Lead {item.lead_id} already finished, ignoring {status}")
            return

        self.results[item.lead_id] = {"lead_id": item.lead_id, "place_id": item.place_id, "status": status, **details}
        self._remaining -= 1
        if self._remaining <= 0 and self._done is not None:
            self._done.set()

    def not_found(self, item: BatchItem, exc: Optional[LeadNotFoundError] = None) -> None:
        exc = exc or LeadNotFoundError(item.lead_id)
        self.logger.warning(f"⚠️ Lead {item.lead_id} not found")
        self.record_error(exc.code, exc, lead_id=item.lead_id)
        self.finish(item, OUTCOME_NOT_FOUND)

    def _abort(self, exc: StorageError) -> None:
        if self._fatal is None:
            self._fatal = exc
            self.logger.error(f"❌ Storage unavailable, aborting batch: {exc}")
        self._done.set()

    async def call_store(self, method: str, *args, **kwargs):
        """Run a synchronous storage call off the event loop."""
        return await asyncio.to_thread(getattr(self.ctx.store, method), *args, **kwargs)

    async def load_lead(self, lead_id: str) -> Lead:
        """Read a lead and remember the row_version later writes are conditional on."""
        lead = await self.call_store("get_lead", lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        self._versions[lead_id] = lead.row_version
        return lead

    async def write_lead(self, method: str, lead_id: str, *args) -> None:
        """
        Versioned lead write through the store.

        Raises WriteConflictError when another writer moved the row since
        load_lead(); a lead that was never loaded is written blind.
        """
        version = await self.call_store(method, lead_id, *args, expected_version=self._versions.get(lead_id))
        self._versions[lead_id] = version

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, batch: List[BatchItem], task_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Drive one batch to completion.

        Returns:
            {"data": [...], "errors": [...], "metrics": {...}}

        Raises:
            StorageError: storage became unreachable (batch-fatal); the task
                run is recorded as failed before the error propagates
        """
        task_id = task_id or str(uuid.uuid4())
        self.task_id = task_id
        start_time = time.time()

        self.errors = []
        self.results = {}
        self._items = {}
        self._fatal = None
        self._timers = []
        self._versions = {}
        self._done = asyncio.Event()

        for item in batch:
            if item.lead_id in self._items:
                self.logger.warning(f"⚠️ Duplicate lead {item.lead_id} in batch, skipping")
                continue
            self._items[item.lead_id] = item
        self._remaining = len(self._items)

        self.logger.info(
            f"🚀 {self.task_type} task {task_id}: {len(self._items)} leads, concurrency {self.concurrency}"
        )

        queue: asyncio.Queue = asyncio.Queue()
        try:
            await self.setup()
            await self._enqueue_all(queue)
            if self._remaining <= 0:
                self._done.set()
            await self._drain(queue)
        except StorageError as e:
            self._abort(e)
        finally:
            await self.teardown()

        if self._fatal is None:
            await self._fail_unfinished("batch budget exhausted", ErrorCode.DEADLINE_EXCEEDED)

        duration_ms = int((time.time() - start_time) * 1000)
        statuses = [r["status"] for r in self.results.values()]
        count_out = sum(1 for s in statuses if s in self.success_statuses)
        metrics = build_metrics(
            len(self._items),
            count_out,
            duration_ms,
            outcomes=summarize_outcomes(statuses),
            extra=self.run_metrics(),
        )

        if self._fatal is not None:
            await self._record_fatal(task_id, metrics)
            raise self._fatal

        envelope = {"data": list(self.results.values()), "errors": self.errors, "metrics": metrics}

        try:
            await self.call_store("record_task_run", task_id, self.task_type, STATUS_COMPLETED, metrics)
            if self.ctx.artifacts is not None:
                await asyncio.to_thread(
                    self.ctx.artifacts.put_run_summary, task_id, {"task_id": task_id, **envelope}
                )
        except StorageError as e:
            self._fatal = e
            await self._record_fatal(task_id, metrics)
            raise

        self.logger.info(
            f"✅ {self.task_type} task {task_id} finished: {count_out}/{len(self._items)} succeeded "
            f"in {duration_ms}ms"
        )
        return envelope

    async def _enqueue_all(self, queue: asyncio.Queue) -> None:
        for item in self._items.values():
            try:
                await self.mark_queued(item)
            except WriteConflictError as e:
                self.record_error(e.code, e, lead_id=item.lead_id)
                self.finish(item, OUTCOME_WRITE_CONFLICT, reason=str(e))
                continue
            except LeadNotFoundError as e:
                self.not_found(item, e)
                continue
            queue.put_nowait(Job(item=item))

    async def _drain(self, queue: asyncio.Queue) -> None:
        worker_count = min(self.concurrency, max(1, len(self._items)))
        workers = [asyncio.create_task(self._worker(queue, i)) for i in range(worker_count)]
        try:
            await asyncio.wait_for(self._done.wait(), timeout=self.settings.batch_budget)
        except asyncio.TimeoutError:
            self.logger.error(
                f"⏱️ Batch budget of {self.settings.batch_budget}s exhausted with {self._remaining} leads pending"
            )
        finally:
            for timer in self._timers:
                timer.cancel()
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(self, queue: asyncio.Queue, worker_id: int) -> None:
        loop = asyncio.get_running_loop()
        while True:
            job = await queue.get()
            try:
                delay = await self.handle(job)
            except WriteConflictError as e:
                self.logger.warning(f"⚠️ Worker {worker_id}: {e}")
                self.record_error(e.code, e, lead_id=job.lead_id)
                self.finish(job.item, OUTCOME_WRITE_CONFLICT, reason=str(e), attempts=job.attempts)
                continue
            except LeadNotFoundError as e:
                self.not_found(job.item, e)
                continue
            except StorageError as e:
                self._abort(e)
                return
            except Exception as e:
                # handle() classifies expected failures itself
                code = e.code if isinstance(e, PipelineError) else ErrorCode.UNKNOWN
                self.logger.error(
                    f"❌ Worker {worker_id}: unhandled {type(e).__name__} for {job.lead_id}: {e}", exc_info=True
                )
                await self._fail_job(job, f"{type(e).__name__}: {e}", code)
                continue
            finally:
                queue.task_done()

            if delay is not None:
                self._timers.append(loop.call_later(delay, queue.put_nowait, job))

    async def _fail_job(self, job: Job, reason: str, code: ErrorCode) -> None:
        try:
            await self.fail_item(job.item, reason, code)
        except WriteConflictError as e:
            self.record_error(e.code, e, lead_id=job.lead_id)
        except LeadNotFoundError as e:
            self.not_found(job.item, e)
            return
        except StorageError as e:
            self._abort(e)
            return
        self.record_error(code, PipelineError(reason, code), lead_id=job.lead_id)
        self.finish(job.item, self.failed_status, reason=reason, attempts=job.attempts)

    async def _fail_unfinished(self, reason: str, code: ErrorCode) -> None:
        for lead_id, item in self._items.items():
            if lead_id in self.results:
                continue
            try:
                await self.fail_item(item, reason, code)
            except WriteConflictError as e:
                self.record_error(e.code, e, lead_id=lead_id)
            except LeadNotFoundError as e:
                self.not_found(item, e)
                continue
            except StorageError as e:
                self._abort(e)
                return
            self.record_error(code, PipelineError(reason, code), lead_id=lead_id)
            self.finish(item, self.failed_status, reason=reason)

    async def _record_fatal(self, task_id: str, metrics: Dict[str, Any]) -> None:
        self.record_error(self._fatal.code, self._fatal)
        try:
            await self.call_store("record_task_run", task_id, self.task_type, STATUS_FAILED, metrics)
        except StorageError as e:
            self.logger.error(f"❌ Could not record failed task run {task_id}: {e}")
