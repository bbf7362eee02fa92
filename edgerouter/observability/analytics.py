"""
Routing analytics for EdgeRouter.

Records the outcome of every routing decision (provider, cost, latency,
tokens) and folds it into a read-only summary for dashboards and logs.
No windows or percentiles: totals and averages over everything recorded
since the router started.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from edgerouter.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class ProviderStats(BaseModel):
    """Per-provider slice of the analytics summary.

    Attributes:
        requests: Decisions that chose this provider.
        cost: Cumulative estimated cost (USD).
        tokens: Cumulative estimated tokens.
        average_latency_ms: Mean of the recorded latencies.
        errors: Failed hand-offs to this provider.
    """

    model_config = ConfigDict(frozen=True)

    requests: int = 0
    cost: float = 0.0
    tokens: int = 0
    average_latency_ms: float = 0.0
    errors: int = 0


class AnalyticsSummary(BaseModel):
    """Read-only snapshot of router analytics.

    Attributes:
        total_requests: Routing decisions recorded.
        total_cost: Sum of estimated cost across providers.
        total_tokens: Sum of estimated tokens across providers.
        average_latency_ms: Mean over every recorded latency.
        total_errors: Failed hand-offs across providers.
        by_provider: Per-provider breakdown.
        health_status: ``{provider: status}`` at snapshot time.
        budget_status: Budget tracker snapshot.
        started_at: When the aggregator (and router) started.
    """

    model_config = ConfigDict(frozen=True)

    total_requests: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    average_latency_ms: float = 0.0
    total_errors: int = 0
    by_provider: Dict[str, ProviderStats] = Field(default_factory=dict)
    health_status: Dict[str, str] = Field(default_factory=dict)
    budget_status: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime


class AnalyticsAggregator:
    """Thread-safe, append-only routing counters.

    Args:
        clock: Time source for the start time and uptime.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._started_at = self._clock.now()
        self._lock = threading.Lock()

        self._requests: Dict[str, int] = {}
        self._costs: Dict[str, float] = {}
        self._tokens: Dict[str, int] = {}
        self._latencies: Dict[str, List[float]] = {}
        self._errors: Dict[str, int] = {}

    def record_request(
        self,
        provider: str,
        cost: float,
        latency_ms: float,
        tokens: int = 0,
    ) -> None:
        """Count one routed request against ``provider``."""
        with self._lock:
            self._requests[provider] = self._requests.get(provider, 0) + 1
            self._costs[provider] = self._costs.get(provider, 0.0) + cost
            self._tokens[provider] = self._tokens.get(provider, 0) + tokens
            self._latencies.setdefault(provider, []).append(latency_ms)

        logger.debug(
            "Request recorded",
            extra={"provider": provider, "cost": cost, "latency_ms": latency_ms},
        )

    def record_error(self, provider: str) -> None:
        """Count one failed hand-off to ``provider``."""
        with self._lock:
            self._errors[provider] = self._errors.get(provider, 0) + 1

    def summary(
        self,
        health_status: Optional[Dict[str, str]] = None,
        budget_status: Optional[Dict[str, Any]] = None,
    ) -> AnalyticsSummary:
        """Fold the current counters into an :class:`AnalyticsSummary`.

        Args:
            health_status: Registry health map to embed.
            budget_status: Budget tracker snapshot to embed.
        """
        with self._lock:
            requests = dict(self._requests)
            costs = dict(self._costs)
            tokens = dict(self._tokens)
            latencies = {k: list(v) for k, v in self._latencies.items()}
            errors = dict(self._errors)

        by_provider: Dict[str, ProviderStats] = {}
        for name in sorted(set(requests) | set(errors)):
            samples = latencies.get(name, [])
            by_provider[name] = ProviderStats(
                requests=requests.get(name, 0),
                cost=round(costs.get(name, 0.0), 6),
                tokens=tokens.get(name, 0),
                average_latency_ms=(
                    round(sum(samples) / len(samples), 1) if samples else 0.0
                ),
                errors=errors.get(name, 0),
            )

        all_latencies = [v for samples in latencies.values() for v in samples]
        return AnalyticsSummary(
            total_requests=sum(requests.values()),
            total_cost=round(sum(costs.values()), 6),
            total_tokens=sum(tokens.values()),
            average_latency_ms=(
                round(sum(all_latencies) / len(all_latencies), 1)
                if all_latencies
                else 0.0
            ),
            total_errors=sum(errors.values()),
            by_provider=by_provider,
            health_status=dict(health_status or {}),
            budget_status=dict(budget_status or {}),
            started_at=self._started_at,
        )

    def latencies(self, provider: str) -> List[float]:
        """Every latency recorded for ``provider``, in arrival order."""
        with self._lock:
            return list(self._latencies.get(provider, []))

    def uptime_seconds(self) -> float:
        """Seconds since the aggregator started, per the injected clock."""
        return (self._clock.now() - self._started_at).total_seconds()

    @property
    def started_at(self) -> datetime:
        return self._started_at
