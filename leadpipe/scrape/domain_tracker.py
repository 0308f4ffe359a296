"""
Per-domain health tracking.

Shared by every scrape worker of a batch. Consecutive network, blocked and
render failures push a domain from healthy to degraded, and each failure at
or past the threshold opens an exponential backoff window during which the
domain is suspended. Extraction failures never count: the site answered.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from leadpipe.errors import FailureKind


class DomainState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    SUSPENDED = "suspended"


COUNTED_FAILURES = (FailureKind.NETWORK, FailureKind.BLOCKED, FailureKind.RENDER)


@dataclass
class DomainHealth:
    domain: str
    allowance: int
    consecutive_failures: int = 0
    backoff_until: float = 0.0
    in_flight: int = 0
    last_failure_kind: Optional[FailureKind] = None
    total_failures: int = 0
    total_successes: int = 0


class DomainTracker:
    """Backoff and concurrency gate keyed by registrable domain."""

    def __init__(
        self,
        failure_threshold: int = 3,
        backoff_base: float = 5.0,
        backoff_max: float = 300.0,
        healthy_concurrency: int = 2,
        degraded_concurrency: int = 1,
        defer_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.failure_threshold = failure_threshold
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.healthy_concurrency = healthy_concurrency
        self.degraded_concurrency = degraded_concurrency
        self.defer_interval = defer_interval
        self._clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._domains: Dict[str, DomainHealth] = {}
        self._lock = asyncio.Lock()

    def _get(self, domain: str) -> DomainHealth:
        health = self._domains.get(domain)
        if health is None:
            health = DomainHealth(domain=domain, allowance=self.healthy_concurrency)
            self._domains[domain] = health
        return health

    def _state_of(self, health: DomainHealth, now: float) -> DomainState:
        if health.backoff_until > now:
            return DomainState.SUSPENDED
        if health.consecutive_failures >= self.failure_threshold:
            return DomainState.DEGRADED
        return DomainState.HEALTHY

    def backoff_for(self, failures: int) -> float:
        """Backoff window after `failures` consecutive failures (0 below threshold)."""
        if failures < self.failure_threshold:
            return 0.0
        return min(self.backoff_base * 2 ** (failures - self.failure_threshold), self.backoff_max)

    async def try_acquire(self, domain: str) -> Optional[float]:
        """
        Claim a fetch slot for `domain`.

        Returns None when the caller may proceed (it must call release()),
        otherwise the number of seconds to wait before trying again.
        """
        async with self._lock:
            health = self._get(domain)
            now = self._clock()
            if health.backoff_until > now:
                return health.backoff_until - now
            if health.in_flight >= health.allowance:
                return self.defer_interval
            health.in_flight += 1
            return None

    async def release(self, domain: str) -> None:
        async with self._lock:
            health = self._get(domain)
            health.in_flight = max(0, health.in_flight - 1)

    async def record_success(self, domain: str) -> None:
        async with self._lock:
            health = self._get(domain)
            if health.consecutive_failures >= self.failure_threshold:
                self.logger.info(f"✅ Domain recovered: {domain}")
            health.consecutive_failures = 0
            health.backoff_until = 0.0
            health.allowance = self.healthy_concurrency
            health.last_failure_kind = None
            health.total_successes += 1

    async def record_failure(self, domain: str, kind: FailureKind) -> DomainState:
        """Count a failed attempt and return the domain's resulting state."""
        async with self._lock:
            health = self._get(domain)
            now = self._clock()
            health.last_failure_kind = kind
            if kind not in COUNTED_FAILURES:
                return self._state_of(health, now)

            health.consecutive_failures += 1
            health.total_failures += 1

            if health.consecutive_failures >= self.failure_threshold:
                delay = self.backoff_for(health.consecutive_failures)
                health.allowance = self.degraded_concurrency
                health.backoff_until = now + delay
                self.logger.warning(
                    f"⏸️ Domain {domain} suspended for {delay:.1f}s "
                    f"({health.consecutive_failures} consecutive {kind.value} failures)"
                )

            return self._state_of(health, now)

    def state(self, domain: str) -> DomainState:
        health = self._domains.get(domain)
        if health is None:
            return DomainState.HEALTHY
        return self._state_of(health, self._clock())

    def snapshot(self) -> Dict[str, Dict]:
        now = self._clock()
        result = {}
        for domain, health in self._domains.items():
            entry = asdict(health)
            entry["state"] = self._state_of(health, now).value
            entry["last_failure_kind"] = health.last_failure_kind.value if health.last_failure_kind else None
            entry["backoff_remaining"] = max(0.0, health.backoff_until - now)
            del entry["backoff_until"]
            result[domain] = entry
        return result
