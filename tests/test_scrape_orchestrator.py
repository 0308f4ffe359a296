import asyncio

import pytest

from leadpipe.context import PipelineContext
from leadpipe.errors import StorageError
from leadpipe.models import BatchItem, ExtractionResult
from leadpipe.scrape.orchestrator import ScrapeOrchestrator
from leadpipe.scrape.page_pool import PagePool
from leadpipe.scrape.render import RenderStrategySelector
from leadpipe.utils.storage import run_summary_key
from tests.fakes import ABOUT_TEXT, SPA_SHELL, FakeFetcher, FakeLauncher, lead_row, page_html

ROOFING_TEXT = (
    "Summit Roofing has been family owned since 1982. Our services include roof replacement, "
    "storm damage repair and gutter installation for homeowners and property managers. "
    "Licensed, bonded and insured with a team of 8 roofers and 4 office staff. "
    "Call Dana at (614) 555-2231 for a free inspection. Financing available on every roof. "
    "We back every installation with a 25-year workmanship warranty and stand behind our crews."
)


def items(*lead_ids):
    return [BatchItem(lead_id=lead_id, place_id=f"place-{lead_id}") for lead_id in lead_ids]


def run_scrape(ctx, fetcher, batch, rendered=None, fast=False, task_id="task-1"):
    async def main():
        pool = None
        launcher = FakeLauncher(rendered)
        if not fast:
            pool = PagePool(size=ctx.settings.page_pool_size, wait_timeout=1.0, launcher=launcher)
            await pool.start()
        selector = RenderStrategySelector(fetcher, page_pool=pool, fetch_timeout=1.0, render_timeout=1.0)
        orchestrator = ScrapeOrchestrator(ctx, selector=selector)
        try:
            envelope = await orchestrator.run(batch, task_id=task_id)
        finally:
            if pool is not None:
                await pool.close()
        return orchestrator, envelope

    return asyncio.run(main())


def with_settings(ctx, **changes):
    return PipelineContext(settings=ctx.settings.with_overrides(**changes), store=ctx.store, artifacts=ctx.artifacts)


def test_batch_with_fetch_render_and_unreachable_host(ctx, store, artifacts):
    store.rows.update(
        {
            "acme": lead_row("acme", "acmeplumbing.com"),
            "summit": lead_row("summit", "https://summitroofing.com"),
            "gone": lead_row("gone", "https://gone-business.net"),
        }
    )
    fetcher = FakeFetcher(
        {
            "https://acmeplumbing.com/": page_html(ABOUT_TEXT),
            "https://acmeplumbing.com/about": page_html(ABOUT_TEXT, title="About Acme"),
            "https://summitroofing.com/": SPA_SHELL,
        }
    )
    rendered = {"https://summitroofing.com/": page_html(ROOFING_TEXT, title="Summit Roofing")}

    _, envelope = run_scrape(ctx, fetcher, items("acme", "summit", "gone"), rendered=rendered)

    metrics = envelope["metrics"]
    assert metrics["count_in"] == 3
    assert metrics["count_out"] == 2
    assert metrics["outcomes"] == {"scraped": 2, "scrape_failed": 1}
    assert metrics["pages_rendered"] >= 1

    results = {r["lead_id"]: r for r in envelope["data"]}
    assert results["acme"]["status"] == "scraped"
    assert results["acme"]["pages"] == 2
    assert results["summit"]["status"] == "scraped"
    assert results["summit"]["rendered_pages"] == 1
    assert results["gone"]["status"] == "scrape_failed"
    assert results["gone"]["attempts"] == 2

    acme = store.rows["acme"]
    assert acme["pipeline_status"] == "scraped"
    assert acme["extraction"]["founded_year"] == 1995
    assert store.status_history["acme"] == ["queued_for_scrape", "scraping", "scraped"]

    summit = store.rows["summit"]
    assert summit["extraction"]["founded_year"] == 1982
    assert "roof replacement" in summit["extraction"]["services"]

    gone = store.rows["gone"]
    assert gone["pipeline_status"] == "scrape_failed"
    assert gone["extraction"] == ExtractionResult.empty().model_dump(mode="json")
    assert gone["scrape_error"].startswith("network:")
    assert store.status_history["gone"] == ["queued_for_scrape", "scraping", "scrape_failed"]

    assert [e["lead_id"] for e in envelope["errors"]] == ["gone"]
    assert envelope["errors"][0]["code"] == "NETWORK_ERROR"

    gone_runs = [r["status"] for r in store.scrape_runs if r["lead_id"] == "gone"]
    assert gone_runs == ["retrying", "failed"]
    assert store.task_runs["task-1"]["status"] == "completed"
    assert run_summary_key("task-1") in artifacts.objects
    assert any(key.startswith("scrape-markdown/acme/") for key in artifacts.objects)
    assert any(key.startswith("scrape-markdown/summit/") for key in artifacts.objects)


def test_every_item_reaches_one_terminal_state(ctx, store):
    store.rows.update({f"l{i}": lead_row(f"l{i}", f"https://shop{i}.com") for i in range(6)})
    fetcher = FakeFetcher({f"https://shop{i}.com/": page_html(ABOUT_TEXT) for i in range(0, 6, 2)})

    _, envelope = run_scrape(ctx, fetcher, items(*[f"l{i}" for i in range(6)]), fast=True)

    assert sorted(r["lead_id"] for r in envelope["data"]) == [f"l{i}" for i in range(6)]
    assert envelope["metrics"]["outcomes"] == {"scraped": 3, "scrape_failed": 3}


def test_duplicate_batch_items_are_processed_once(ctx, store):
    store.rows["acme"] = lead_row("acme", "https://acmeplumbing.com")
    fetcher = FakeFetcher({"https://acmeplumbing.com/": page_html(ABOUT_TEXT)})

    _, envelope = run_scrape(ctx, fetcher, items("acme", "acme"), fast=True)

    assert envelope["metrics"]["count_in"] == 1
    assert len(envelope["data"]) == 1


def test_missing_website_fails_without_fetching(ctx, store):
    store.rows["nosite"] = lead_row("nosite", None)
    fetcher = FakeFetcher()

    _, envelope = run_scrape(ctx, fetcher, items("nosite"), fast=True)

    assert fetcher.calls == []
    assert envelope["data"][0]["status"] == "scrape_failed"
    assert envelope["errors"][0]["code"] == "MISSING_WEBSITE"
    assert store.rows["nosite"]["extraction"]["red_flags"] == ["No website data available"]


def test_unknown_lead_is_reported_not_found(ctx):
    _, envelope = run_scrape(ctx, FakeFetcher(), items("ghost"), fast=True)
    assert envelope["data"][0]["status"] == "not_found"
    assert envelope["metrics"]["count_out"] == 0
    assert envelope["errors"][0]["code"] == "LEAD_NOT_FOUND"


def test_same_domain_leads_are_deferred_not_dropped(ctx, store):
    ctx = with_settings(ctx, domain_healthy_concurrency=1)
    store.rows.update(
        {
            "a": lead_row("a", "https://acmeplumbing.com/"),
            "b": lead_row("b", "https://www.acmeplumbing.com/services"),
        }
    )
    fetcher = FakeFetcher(
        {
            "https://acmeplumbing.com/": page_html(ABOUT_TEXT),
            "https://www.acmeplumbing.com/services": page_html(ABOUT_TEXT),
        },
        delay=0.05,
    )

    _, envelope = run_scrape(ctx, fetcher, items("a", "b"), fast=True)

    assert envelope["metrics"]["outcomes"] == {"scraped": 2}
    assert envelope["metrics"]["deferrals"] >= 1
    assert envelope["metrics"]["domains"]["acmeplumbing.com"]["total_successes"] == 2


def test_failing_domain_is_tracked(ctx, store):
    ctx = with_settings(ctx, domain_failure_threshold=1, scrape_max_attempts=1)
    store.rows.update({"a": lead_row("a", "https://dead.com/a"), "b": lead_row("b", "https://dead.com/b")})

    _, envelope = run_scrape(ctx, FakeFetcher(), items("a", "b"), fast=True)

    domain = envelope["metrics"]["domains"]["dead.com"]
    assert envelope["metrics"]["outcomes"] == {"scrape_failed": 2}
    assert domain["total_failures"] == 2
    assert domain["state"] in ("degraded", "suspended")


def test_item_deadline_fails_slow_sites(ctx, store):
    ctx = with_settings(ctx, item_deadline=0.05)
    store.rows["slow"] = lead_row("slow", "https://slow.com")
    fetcher = FakeFetcher({"https://slow.com/": page_html(ABOUT_TEXT)}, delay=0.5)

    _, envelope = run_scrape(ctx, fetcher, items("slow"), fast=True)

    result = envelope["data"][0]
    assert result["status"] == "scrape_failed"
    assert "deadline" in result["reason"]
    assert envelope["errors"][0]["code"] == "DEADLINE_EXCEEDED"


def test_page_without_text_is_scraped_with_empty_extraction(ctx, store):
    store.rows["blank"] = lead_row("blank", "https://blank.com")
    fetcher = FakeFetcher({"https://blank.com/": "<html><body></body></html>"})

    _, envelope = run_scrape(ctx, fetcher, items("blank"), fast=True)

    assert envelope["data"][0]["status"] == "scraped"
    assert envelope["data"][0]["document_key"] is None
    assert store.rows["blank"]["extraction"] == ExtractionResult.empty().model_dump(mode="json")
    assert envelope["errors"][0]["code"] == "EXTRACT_ERROR"


def test_write_conflict_is_isolated_to_its_lead(ctx, store):
    store.rows.update(
        {"a": lead_row("a", "https://acmeplumbing.com"), "b": lead_row("b", "https://summitroofing.com")}
    )
    store.conflict_leads.add("a")
    fetcher = FakeFetcher(
        {
            "https://acmeplumbing.com/": page_html(ABOUT_TEXT),
            "https://summitroofing.com/": page_html(ROOFING_TEXT + " " + ROOFING_TEXT),
        }
    )

    _, envelope = run_scrape(ctx, fetcher, items("a", "b"), fast=True)

    results = {r["lead_id"]: r["status"] for r in envelope["data"]}
    assert results == {"a": "write_conflict", "b": "scraped"}
    assert envelope["errors"][0]["code"] == "WRITE_CONFLICT"


def test_storage_outage_aborts_the_batch(ctx, store):
    store.rows["a"] = lead_row("a", "https://acmeplumbing.com")
    store.unavailable = True

    with pytest.raises(StorageError):
        run_scrape(ctx, FakeFetcher(), items("a"), fast=True)
    assert store.task_runs == {}


def test_failed_task_record_is_fatal(ctx, store):
    store.rows["a"] = lead_row("a", "https://acmeplumbing.com")
    store.fail_task_runs = True
    fetcher = FakeFetcher({"https://acmeplumbing.com/": page_html(ABOUT_TEXT)})

    with pytest.raises(StorageError):
        run_scrape(ctx, fetcher, items("a"), fast=True)
    assert store.rows["a"]["pipeline_status"] == "scraped"


def test_empty_batch(ctx, store):
    _, envelope = run_scrape(ctx, FakeFetcher(), [], fast=True)
    assert envelope["data"] == []
    assert envelope["metrics"]["count_in"] == 0
    assert envelope["metrics"]["pass_rate"] is None


def test_slow_subpage_keeps_the_homepage(ctx, store):
    ctx = with_settings(ctx, item_deadline=0.2)
    store.rows["acme"] = lead_row("acme", "https://acmeplumbing.com")
    fetcher = FakeFetcher(
        {
            "https://acmeplumbing.com/": page_html(ABOUT_TEXT),
            "https://acmeplumbing.com/about": page_html(ABOUT_TEXT, title="About Acme"),
        },
        delays={"https://acmeplumbing.com/about": 0.5},
    )

    _, envelope = run_scrape(ctx, fetcher, items("acme"), fast=True)

    result = envelope["data"][0]
    assert result["status"] == "scraped"
    assert result["pages"] == 1
    assert result["attempts"] == 1
    assert envelope["metrics"]["subpage_failures"] >= 1
    assert envelope["metrics"]["domains"]["acmeplumbing.com"]["state"] == "healthy"
    assert envelope["metrics"]["domains"]["acmeplumbing.com"]["total_failures"] == 0
    assert store.rows["acme"]["extraction"]["founded_year"] == 1995
    assert envelope["errors"] == []


def test_batch_budget_fails_unfinished_leads(ctx, store):
    ctx = with_settings(ctx, batch_budget=0.1)
    store.rows["slow"] = lead_row("slow", "https://slow.com")
    fetcher = FakeFetcher({"https://slow.com/": page_html(ABOUT_TEXT)}, delay=1.0)

    _, envelope = run_scrape(ctx, fetcher, items("slow"), fast=True)

    result = envelope["data"][0]
    assert result["status"] == "scrape_failed"
    assert result["reason"] == "batch budget exhausted"
    assert [e["code"] for e in envelope["errors"]] == ["DEADLINE_EXCEEDED"]
    assert store.rows["slow"]["pipeline_status"] == "scrape_failed"
    assert store.rows["slow"]["scrape_error"] == "batch budget exhausted"
    assert store.task_runs["task-1"]["status"] == "completed"


def test_suspended_domain_defers_retry_until_backoff_ends(ctx, store):
    ctx = with_settings(
        ctx, domain_failure_threshold=1, domain_backoff_base=0.2, domain_backoff_max=0.2, retry_base_delay=0.01
    )
    store.rows["flaky"] = lead_row("flaky", "https://flaky.com")
    fetcher = FakeFetcher()

    _, envelope = run_scrape(ctx, fetcher, items("flaky"), fast=True)

    assert fetcher.calls == ["https://flaky.com/", "https://flaky.com/"]
    assert envelope["metrics"]["deferrals"] >= 1
    assert envelope["data"][0]["status"] == "scrape_failed"
    assert envelope["data"][0]["attempts"] == 2
    assert envelope["metrics"]["domains"]["flaky.com"]["total_failures"] == 2


def test_stale_write_after_concurrent_update_is_a_conflict(ctx, store):
    store.rows["acme"] = lead_row("acme", "https://acmeplumbing.com")

    class RewritingFetcher(FakeFetcher):
        async def fetch(self, url, timeout):
            # Another worker rewrites the row while this one is crawling
            store.rows["acme"]["row_version"] += 1
            return await super().fetch(url, timeout)

    fetcher = RewritingFetcher({"https://acmeplumbing.com/": page_html(ABOUT_TEXT)})

    _, envelope = run_scrape(ctx, fetcher, items("acme"), fast=True)

    assert envelope["data"][0]["status"] == "write_conflict"
    assert [e["code"] for e in envelope["errors"]] == ["WRITE_CONFLICT"]
    assert store.rows["acme"]["pipeline_status"] == "scraping"
    assert store.rows["acme"]["extraction"] is None
