"""
Market Statistics
=================

Review-count percentile breakpoints and rating aggregates for one market
segment, plus the "## Market Context" section handed to the classifier so it
can judge a lead's review count against its own trade rather than a global
threshold.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from leadpipe.models import RC_KEYS, RC_PERCENTILES, MarketStats

logger = logging.getLogger(__name__)


def build_market_stats(
    review_counts: Sequence[int],
    ratings: Sequence[float],
    segment: Optional[str] = None,
) -> MarketStats:
    """
    Compute the 23 review-count breakpoints for a segment.

    Breakpoints are non-decreasing in RC_KEYS order. An empty segment yields
    all-zero breakpoints and zero rating aggregates.
    """
    counts = np.asarray([c for c in review_counts if c is not None], dtype=float)
    rates = np.asarray([r for r in ratings if r is not None], dtype=float)

    if counts.size:
        values = np.percentile(counts, RC_PERCENTILES)
        values = np.maximum.accumulate(values)
        breakpoints = {key: float(v) for key, v in zip(RC_KEYS, values)}
    else:
        breakpoints = {key: 0.0 for key in RC_KEYS}

    rating_mean = float(np.mean(rates)) if rates.size else 0.0
    rating_median = float(np.median(rates)) if rates.size else 0.0

    stats = MarketStats(
        segment=segment,
        lead_count=int(counts.size),
        breakpoints=breakpoints,
        rating_mean=round(rating_mean, 4),
        rating_median=round(rating_median, 4),
    )
    logger.debug(f"Market stats for {segment or 'all'}: {stats.lead_count} leads, median={stats.at(50):.0f}")
    return stats


def _format_pct(pct: float) -> str:
    return f"{pct:g}"


def percentile_bucket(value: float, stats: MarketStats) -> str:
    """Name the percentile band a review count falls into, e.g. "75th-80th percentile"."""
    for i in range(len(RC_KEYS) - 1, -1, -1):
        if value >= stats.breakpoints[RC_KEYS[i]]:
            pct = RC_PERCENTILES[i]
            if pct >= 99.9:
                return "99.9th+ percentile"
            if pct >= 99:
                return "99th-99.9th percentile"
            return f"{_format_pct(pct)}th-{_format_pct(RC_PERCENTILES[i + 1])}th percentile"
    return "below minimum"


def build_market_context(
    stats: Optional[MarketStats],
    review_count: Optional[int],
    rating: Optional[float],
) -> str:
    """
    Render the market section of the scoring prompt.

    Returns an empty string when the lead has no segment or the segment has
    no leads with review counts.
    """
    if stats is None or not stats.segment or stats.lead_count == 0:
        return ""

    lines = [
        f'Among {stats.lead_count} "{stats.segment}" businesses in our database:',
        "- Review count distribution: "
        f"p25={round(stats.at(25))}, median={round(stats.at(50))}, p75={round(stats.at(75))}, "
        f"p90={round(stats.at(90))}, p99={round(stats.at(99))}",
    ]
    if review_count is not None:
        lines.append(f"- This lead's {review_count} reviews = {percentile_bucket(review_count, stats)} for this trade")

    rating_line = f"- Rating: median {stats.rating_median:.1f}"
    if rating is not None:
        position = "above" if rating >= stats.rating_median else "below"
        rating_line += f"; this lead's {rating:.1f} = {position} median"
    lines.append(rating_line)

    return "## Market Context\n\n" + "\n".join(lines)
