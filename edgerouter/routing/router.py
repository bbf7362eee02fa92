"""
Routing orchestrator for EdgeRouter.

Composes the sensitivity detector, provider registry, budget tracker,
strategy selector and analytics aggregator into a single per-request
decision.  Precedence is fixed: privacy > health > budget > strategy.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from edgerouter.budget.tracker import BudgetConfig, BudgetTracker
from edgerouter.clock import Clock, SystemClock
from edgerouter.config import get_settings
from edgerouter.exceptions import (
    InvalidRequestError,
    NoAvailableProvidersError,
    ProviderError,
)
from edgerouter.health.monitor import HealthMonitor, HealthMonitorConfig
from edgerouter.health.probe import HealthProbe, HttpHealthProbe
from edgerouter.observability.analytics import AnalyticsAggregator, AnalyticsSummary
from edgerouter.privacy.sensitivity import detect
from edgerouter.providers.client import HttpProviderClient, ProviderClient
from edgerouter.providers.registry import ProviderRegistry, estimate_tokens
from edgerouter.routing.strategies import Strategy, StrategySelector
from edgerouter.schemas import ChatRequest, ChatResponse, ReasonCode, RoutingDecision

logger = logging.getLogger(__name__)


class RouterConfig(BaseModel):
    """Construction-time configuration for :class:`EdgeRouter`.

    Attributes:
        strategy: One of the five strategy names.
        daily_limit: Daily spend limit; ``None`` is unbounded.
        monthly_limit: Monthly spend limit; ``None`` is unbounded.
        provider_overrides: Partial provider fields merged over the
            built-in provider table.
        health_check_enabled: Start the background health monitor.
        health_check_interval_seconds: Pause between probe sweeps.
        failure_threshold: Failed probes before a provider is unhealthy.
        chars_per_token: Characters per token for cost estimation.
    """

    strategy: str = Field(default_factory=lambda: get_settings().routing.strategy)
    daily_limit: Optional[float] = Field(
        default_factory=lambda: get_settings().budget.daily_limit, ge=0.0
    )
    monthly_limit: Optional[float] = Field(
        default_factory=lambda: get_settings().budget.monthly_limit, ge=0.0
    )
    provider_overrides: Dict[str, Dict[str, Any]] = Field(
        default_factory=lambda: dict(get_settings().providers.overrides)
    )
    health_check_enabled: bool = Field(
        default_factory=lambda: get_settings().health.enabled
    )
    health_check_interval_seconds: float = Field(
        default_factory=lambda: get_settings().health.interval_seconds, gt=0
    )
    failure_threshold: int = Field(
        default_factory=lambda: get_settings().health.failure_threshold, ge=1
    )
    chars_per_token: int = Field(
        default_factory=lambda: get_settings().routing.chars_per_token, ge=1
    )


class EdgeRouter:
    """Pick exactly one provider per chat request.

    The router owns its registry, budget tracker and analytics by
    composition; share one instance across request-handling threads.
    Every collaborator can be injected for testing.

    Args:
        config: Strategy, limits, overrides and health settings.
        registry: Provider registry (built from ``config`` if omitted).
        budget: Budget tracker (built from ``config`` if omitted).
        analytics: Analytics aggregator.
        selector: Strategy selector.
        provider_client: Used by :meth:`complete` to hand off a request.
        health_probe: Liveness check for the health monitor.
        clock: Time source shared with budget and analytics.

    Raises:
        UnknownStrategyError: If ``config.strategy`` is not recognised.
    """

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        budget: Optional[BudgetTracker] = None,
        analytics: Optional[AnalyticsAggregator] = None,
        selector: Optional[StrategySelector] = None,
        provider_client: Optional[ProviderClient] = None,
        health_probe: Optional[HealthProbe] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or RouterConfig()
        self._strategy = Strategy.parse(self._config.strategy)
        self._clock = clock or SystemClock()

        self._registry = registry or ProviderRegistry(
            overrides=self._config.provider_overrides
        )
        self._budget = budget or BudgetTracker(
            BudgetConfig(
                daily_limit=self._config.daily_limit,
                monthly_limit=self._config.monthly_limit,
            ),
            clock=self._clock,
        )
        self._analytics = analytics or AnalyticsAggregator(clock=self._clock)
        routing = get_settings().routing
        self._selector = selector or StrategySelector(
            routing.baseline_cost_per_1k, routing.baseline_latency_ms
        )

        self._owns_client = provider_client is None
        self._client: ProviderClient = provider_client or HttpProviderClient()

        self._owns_probe = health_probe is None
        self._probe: HealthProbe = health_probe or HttpHealthProbe()
        self._monitor = HealthMonitor(
            self._registry,
            self._probe,
            HealthMonitorConfig(
                interval_seconds=self._config.health_check_interval_seconds,
                failure_threshold=self._config.failure_threshold,
            ),
            clock=self._clock,
        )
        if self._config.health_check_enabled:
            self._monitor.start()

        self._closed = False
        logger.info(
            "EdgeRouter initialised",
            extra={
                "strategy": self._strategy.value,
                "providers": len(self._registry),
                "health_check_enabled": self._config.health_check_enabled,
            },
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def route(self, request: Union[ChatRequest, Mapping[str, Any]]) -> RoutingDecision:
        """Choose a provider for ``request`` and record the spend.

        Args:
            request: A :class:`ChatRequest` or an equivalent mapping.

        Returns:
            The immutable :class:`RoutingDecision`.

        Raises:
            InvalidRequestError: If the request has no messages.
            NoAvailableProvidersError: If every provider is unhealthy.
        """
        now = self._clock.now()
        self._budget.reset_if_period_rolled(now)
        chat = self._coerce_request(request)
        return self._decide(chat, now)

    def complete(self, request: Union[ChatRequest, Mapping[str, Any]]) -> ChatResponse:
        """Route ``request`` and hand it to the provider client once.

        The decision is attached to the response as ``routing``.  No
        retry is attempted; a failed hand-off is counted against the
        provider and surfaced to the caller.

        Raises:
            InvalidRequestError: If the request has no messages.
            NoAvailableProvidersError: If every provider is unhealthy.
            ProviderError: If the provider call fails.
        """
        now = self._clock.now()
        self._budget.reset_if_period_rolled(now)
        chat = self._coerce_request(request)
        decision = self._decide(chat, now)
        provider = self._registry.get(decision.provider)

        try:
            response = self._client.send(provider, chat)
        except ProviderError:
            self._analytics.record_error(provider.name)
            raise
        except Exception as exc:
            self._analytics.record_error(provider.name)
            raise ProviderError(
                f"Hand-off to {provider.name} failed: {exc}"
            ) from exc

        return response.model_copy(update={"routing": decision})

    def summary(self) -> AnalyticsSummary:
        """Analytics snapshot including health and budget status."""
        return self._analytics.summary(
            health_status=self._registry.health_status(),
            budget_status=self._budget.status(),
        )

    def close(self) -> None:
        """Stop the health monitor and release owned clients.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._monitor.stop()
        if self._owns_client and isinstance(self._client, HttpProviderClient):
            self._client.close()
        if self._owns_probe and isinstance(self._probe, HttpHealthProbe):
            self._probe.close()
        logger.info("EdgeRouter closed")

    def __enter__(self) -> "EdgeRouter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def budget(self) -> BudgetTracker:
        return self._budget

    @property
    def analytics(self) -> AnalyticsAggregator:
        return self._analytics

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _decide(self, chat: ChatRequest, now: datetime) -> RoutingDecision:
        """Steps 3-10 of a routing decision; ``chat`` is already valid.

        ``now`` is the instant the period rollover was checked against;
        spend is attributed to that instant's period.
        """
        pattern = detect(chat.messages)
        sensitive = pattern is not None

        healthy = self._registry.healthy()
        if not healthy:
            raise NoAvailableProvidersError("No available providers: all are unhealthy")

        tokens = estimate_tokens(chat.messages, self._config.chars_per_token)
        within_budget = [
            p for p in healthy
            if self._budget.fits(p, self._budget.estimate_cost(p, tokens))
        ]
        budget_exceeded = not within_budget
        pool = within_budget or healthy
        if budget_exceeded:
            logger.warning(
                "No provider fits the daily budget; using full healthy set",
                extra={"candidates": [p.name for p in healthy]},
            )

        selection = self._selector.select(self._strategy, pool, sensitive)
        chosen, reason = selection.provider, selection.reason

        if reason == ReasonCode.SENSITIVE_FALLBACK.value:
            # A healthy local provider priced out of the pool still wins.
            local = self._selector.local_choice(healthy)
            if local is not None:
                chosen, reason = local, ReasonCode.SENSITIVE_BUDGET_EXCEEDED.value
            else:
                logger.warning(
                    "Sensitive request with no healthy local provider; "
                    "falling back to strategy",
                    extra={
                        "strategy": self._strategy.value,
                        "provider": chosen.name,
                        "budget_exceeded": budget_exceeded,
                    },
                )
        elif budget_exceeded:
            reason = (
                ReasonCode.SENSITIVE_BUDGET_EXCEEDED.value
                if reason == ReasonCode.SENSITIVE_CONTENT.value
                else ReasonCode.BUDGET_EXCEEDED.value
            )

        cost = self._budget.estimate_cost(chosen, tokens)
        over_budget = all(p.name != chosen.name for p in within_budget)
        self._budget.record(chosen, cost, over_budget=over_budget, at=now)
        self._analytics.record_request(chosen.name, cost, chosen.latency_ms, tokens)

        decision = RoutingDecision(
            provider=chosen.name,
            reason=reason,
            estimated_cost=cost,
            latency_ms=chosen.latency_ms,
            strategy=self._strategy.value,
            tokens=tokens,
            sensitive=sensitive,
            budget_exceeded=budget_exceeded,
            decided_at=now,
        )
        logger.debug(
            "Routing decision",
            extra={
                "provider": decision.provider,
                "reason": decision.reason,
                "estimated_cost": decision.estimated_cost,
                "sensitive_pattern": pattern,
            },
        )
        return decision

    @staticmethod
    def _coerce_request(request: Union[ChatRequest, Mapping[str, Any], None]) -> ChatRequest:
        """Validate ``request`` into a non-empty :class:`ChatRequest`."""
        if isinstance(request, ChatRequest):
            chat = request
        elif isinstance(request, Mapping):
            try:
                chat = ChatRequest.model_validate(dict(request))
            except ValidationError as exc:
                raise InvalidRequestError(f"Invalid request: {exc}") from exc
        else:
            raise InvalidRequestError(
                f"Invalid request: expected a chat request, got {type(request).__name__}"
            )

        if not chat.messages:
            raise InvalidRequestError("Invalid request: messages array required")
        return chat
