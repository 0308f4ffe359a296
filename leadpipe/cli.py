"""
CLI for Leadpipe
================

Commands:
    leadpipe scrape [--limit N] [--hint LEAD_ID ...] [--task-id ID] [--fast]
    leadpipe score LEAD_ID ... [--task-id ID] [--rescore]
    leadpipe score --from-scraped N
    leadpipe stats [--segment TYPE]

Each command builds settings and the pipeline context once, runs one batch
and prints the {"data", "errors", "metrics"} envelope as JSON. A batch-fatal
storage failure exits with status 1, missing configuration with status 2.
"""

import asyncio
import json
import sys
from typing import List, Optional, Tuple

import click

from leadpipe import __version__
from leadpipe.config import PipelineSettings
from leadpipe.context import PipelineContext
from leadpipe.errors import StorageError
from leadpipe.models import BatchItem


def _build_context(settings: PipelineSettings) -> PipelineContext:
    try:
        return PipelineContext.from_settings(settings)
    except RuntimeError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(2)


def _emit(payload, output: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if output:
        with open(output, "w") as f:
            f.write(text)
        click.echo(f"💾 Saved to {output}", err=True)
    else:
        click.echo(text)


def _run_batch(orchestrator, batch: List[BatchItem], task_id: Optional[str], output: Optional[str]) -> None:
    try:
        envelope = asyncio.run(orchestrator.run(batch, task_id=task_id))
    except StorageError as e:
        click.echo(f"❌ Batch aborted, storage unavailable: {e}", err=True)
        _emit({"data": list(orchestrator.results.values()), "errors": orchestrator.errors}, output)
        sys.exit(1)
    _emit(envelope, output)


@click.group()
@click.version_option(version=__version__)
def main():
    """
    Leadpipe - scrape lead websites and score them for acquisition fit

    Examples:
        leadpipe scrape --limit 100
        leadpipe score --from-scraped 50
        leadpipe stats --segment "Plumber"
    """


@main.command()
@click.option("--limit", "-n", default=50, show_default=True, type=int, help="Max unscraped leads to take")
@click.option("--hint", "hints", multiple=True, help="Lead ID that triggered this run (logged only)")
@click.option("--task-id", default=None, help="Task ID to record the run under")
@click.option("--fast", is_flag=True, default=False, help="Lightweight fetch only, no headless rendering")
@click.option("--output", "-o", default=None, help="Save the envelope to a JSON file")
def scrape(limit: int, hints: Tuple[str, ...], task_id: Optional[str], fast: bool, output: Optional[str]):
    """Scrape the oldest unscraped leads."""
    from leadpipe.scrape.orchestrator import ScrapeOrchestrator

    settings = PipelineSettings.from_env()
    if fast:
        settings = settings.with_overrides(fast_mode=True)

    ctx = _build_context(settings)
    logger = ctx.logger("cli")
    if hints:
        logger.info(f"🔔 Triggered by {len(hints)} lead(s): {', '.join(hints)}")

    try:
        batch = ctx.store.list_unscraped(limit)
    except StorageError as e:
        click.echo(f"❌ Could not load unscraped leads: {e}", err=True)
        sys.exit(1)

    if not batch:
        logger.info("📭 No unscraped leads")

    _run_batch(ScrapeOrchestrator(ctx), batch, task_id, output)


@main.command()
@click.argument("lead_ids", nargs=-1)
@click.option("--from-scraped", "from_scraped", default=None, type=int, help="Score the N oldest scraped leads")
@click.option("--task-id", default=None, help="Task ID to record the run under")
@click.option("--rescore", is_flag=True, default=False, help="Score leads that already have a score")
@click.option("--output", "-o", default=None, help="Save the envelope to a JSON file")
def score(
    lead_ids: Tuple[str, ...],
    from_scraped: Optional[int],
    task_id: Optional[str],
    rescore: bool,
    output: Optional[str],
):
    """Score LEAD_IDS, or the oldest scraped leads with --from-scraped."""
    from leadpipe.scoring.classifier import LLMClassifier
    from leadpipe.scoring.orchestrator import ScoringOrchestrator

    if not lead_ids and not from_scraped:
        raise click.UsageError("pass LEAD_ID arguments or --from-scraped N")

    settings = PipelineSettings.from_env()
    if rescore:
        settings = settings.with_overrides(rescore=True)
    ctx = _build_context(settings)

    try:
        if lead_ids:
            batch = []
            for lead_id in lead_ids:
                lead = ctx.store.get_lead(lead_id)
                # Unknown ids still go through the run so they show up as not_found
                batch.append(BatchItem(lead_id=lead_id, place_id=lead.place_id if lead else ""))
        else:
            batch = ctx.store.list_scraped(from_scraped)
    except StorageError as e:
        click.echo(f"❌ Could not load leads: {e}", err=True)
        sys.exit(1)

    logger = ctx.logger(ScoringOrchestrator.tool_name)
    try:
        classifier = LLMClassifier.from_settings(settings, logger)
    except RuntimeError as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(2)

    _run_batch(ScoringOrchestrator(ctx, classifier=classifier, logger=logger), batch, task_id, output)


@main.command()
@click.option("--segment", "-s", default=None, help="business_type to compute; all leads when omitted")
@click.option("--output", "-o", default=None, help="Save the stats to a JSON file")
def stats(segment: Optional[str], output: Optional[str]):
    """Print review-count percentile breakpoints for a market segment."""
    from leadpipe.scoring.market import build_market_stats

    ctx = _build_context(PipelineSettings.from_env())
    try:
        review_counts, ratings = ctx.store.segment_distribution(segment)
    except StorageError as e:
        click.echo(f"❌ Could not load segment distribution: {e}", err=True)
        sys.exit(1)

    _emit(build_market_stats(review_counts, ratings, segment).model_dump(mode="json"), output)


if __name__ == "__main__":
    main()
