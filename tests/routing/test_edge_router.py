"""
Tests for the routing orchestrator.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest
from pydantic import ValidationError

from edgerouter.clock import FixedClock
from edgerouter.exceptions import (
    InvalidRequestError,
    NoAvailableProvidersError,
    ProviderError,
    UnknownStrategyError,
)
from edgerouter.health.probe import StaticHealthProbe
from edgerouter.observability.analytics import AnalyticsSummary
from edgerouter.providers.client import MockProviderClient
from edgerouter.providers.registry import Provider, ProviderRegistry
from edgerouter.routing.router import EdgeRouter, RouterConfig
from edgerouter.routing.strategies import Strategy
from edgerouter.schemas import ChatRequest, ChatResponse, RoutingDecision


def _config(**overrides: Any) -> RouterConfig:
    fields: Dict[str, Any] = {
        "strategy": "balanced",
        "daily_limit": None,
        "monthly_limit": None,
        "provider_overrides": {},
        "health_check_enabled": False,
    }
    fields.update(overrides)
    return RouterConfig(**fields)


def _ask(content: str) -> Dict[str, Any]:
    return {"messages": [{"role": "user", "content": content}]}


def _thousand_tokens(prefix: str = "") -> Dict[str, Any]:
    """4000 characters, i.e. 1000 tokens: cost equals cost_per_1k_tokens."""
    return _ask((prefix + "x" * 4000)[:4000])


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 6, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def client() -> MockProviderClient:
    return MockProviderClient()


@pytest.fixture
def make_router(clock: FixedClock, client: MockProviderClient):
    """Factory for routers with the health loop disabled."""
    created = []

    def _make(
        registry: Optional[ProviderRegistry] = None, **overrides: Any
    ) -> EdgeRouter:
        router = EdgeRouter(
            _config(**overrides),
            registry=registry,
            provider_client=client,
            health_probe=StaticHealthProbe(),
            clock=clock,
        )
        created.append(router)
        return router

    yield _make
    for router in created:
        router.close()


@pytest.fixture
def priced_registry() -> ProviderRegistry:
    """Two cloud providers costing 0.01 and 0.02 per 1000 tokens."""
    registry = ProviderRegistry(include_defaults=False)
    registry.register(Provider(name="alpha", cost_per_1k_tokens=0.01, latency_ms=100))
    registry.register(Provider(name="beta", cost_per_1k_tokens=0.02, latency_ms=50))
    return registry


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_unknown_strategy_rejected(self, make_router) -> None:
        with pytest.raises(UnknownStrategyError):
            make_router(strategy="quickest")

    def test_strategy_property(self, make_router) -> None:
        assert make_router(strategy="privacy-first").strategy is Strategy.PRIVACY_FIRST

    def test_default_registry_has_builtin_providers(self, make_router) -> None:
        assert len(make_router().registry) == 6

    def test_provider_overrides_applied(self, make_router) -> None:
        router = make_router(
            strategy="fastest",
            provider_overrides={"edge": {"cost_per_1k_tokens": 0.0, "latency_ms": 5}},
        )
        assert router.route(_ask("hello")).provider == "edge"

    def test_health_loop_lifecycle(self, clock: FixedClock) -> None:
        with EdgeRouter(
            _config(health_check_enabled=True, health_check_interval_seconds=60),
            provider_client=MockProviderClient(),
            health_probe=StaticHealthProbe(),
            clock=clock,
        ) as router:
            assert router.monitor.is_running
        assert not router.monitor.is_running

    def test_close_is_idempotent(self, make_router) -> None:
        router = make_router()
        router.close()
        router.close()
        assert not router.monitor.is_running


# ---------------------------------------------------------------------------
# Strategy routing
# ---------------------------------------------------------------------------


class TestStrategyRouting:
    def test_cheapest_picks_min_cost(self, make_router) -> None:
        decision = make_router(strategy="cheapest").route(_ask("hello"))
        assert decision.provider == "local"
        assert decision.reason == "cheapest"

    def test_cheapest_skips_unhealthy(self, make_router) -> None:
        router = make_router(strategy="cheapest")
        router.registry.set_status("local", "unhealthy")
        assert router.route(_ask("hello")).provider == "groq"

    def test_fastest_for_benign_request(self, make_router) -> None:
        decision = make_router(strategy="fastest").route(_ask("weather today"))
        assert decision.provider == "groq"
        assert decision.latency_ms == 30
        assert decision.reason == "fastest"
        assert decision.sensitive is False

    def test_reliability(self, make_router) -> None:
        assert make_router(strategy="reliability").route(_ask("hi")).provider == "local"

    def test_decision_fields(self, make_router, clock: FixedClock) -> None:
        decision = make_router(strategy="fastest").route(_thousand_tokens())
        assert isinstance(decision, RoutingDecision)
        assert decision.tokens == 1000
        assert decision.estimated_cost == pytest.approx(0.0001)
        assert decision.strategy == "fastest"
        assert decision.budget_exceeded is False
        assert decision.decided_at == clock.now()

    def test_decision_is_immutable(self, make_router) -> None:
        decision = make_router().route(_ask("hi"))
        with pytest.raises(ValidationError):
            decision.provider = "openai"

    def test_accepts_model_instances(self, make_router) -> None:
        request = ChatRequest.model_validate(_ask("weather today"))
        assert make_router(strategy="fastest").route(request).provider == "groq"


# ---------------------------------------------------------------------------
# Privacy
# ---------------------------------------------------------------------------


class TestSensitiveRouting:
    def test_password_goes_local(self, make_router) -> None:
        decision = make_router(strategy="cheapest").route(
            _ask("My password is Secret123")
        )
        assert decision.provider == "local"
        assert decision.reason == "sensitive_content"
        assert decision.sensitive is True

    @pytest.mark.parametrize("strategy", [s.value for s in Strategy])
    def test_local_regardless_of_strategy(self, make_router, strategy: str) -> None:
        decision = make_router(strategy=strategy).route(_ask("patient record 42"))
        assert decision.provider == "local"

    def test_fallback_when_local_unhealthy(self, make_router) -> None:
        router = make_router(strategy="fastest")
        router.registry.set_status("local", "unhealthy")
        decision = router.route(_ask("my api key is abc"))
        assert decision.provider == "groq"
        assert decision.reason == "sensitive_fallback"

    def test_sensitive_in_earlier_message(self, make_router) -> None:
        request = {
            "messages": [
                {"role": "system", "content": "the ssn is 123-45-6789"},
                {"role": "user", "content": "summarise"},
            ]
        }
        assert make_router(strategy="fastest").route(request).provider == "local"

    def test_fallback_is_logged_when_local_unhealthy(
        self, make_router, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.WARNING, logger="edgerouter")
        router = make_router(strategy="fastest")
        router.registry.set_status("local", "unhealthy")
        router.route(_ask("my api key is abc"))
        assert "no healthy local provider" in caplog.text

    def test_priced_out_local_is_not_logged_as_fallback(
        self, make_router, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.WARNING, logger="edgerouter")
        registry = ProviderRegistry(include_defaults=False)
        registry.register(Provider(name="alpha", cost_per_1k_tokens=0.01, latency_ms=50))
        registry.register(
            Provider(name="local", cost_per_1k_tokens=0.02, latency_ms=90, privacy="local")
        )
        router = make_router(registry, strategy="cheapest", daily_limit=0.015)

        decision = router.route(_thousand_tokens("my password: "))
        assert decision.provider == "local"
        assert "no healthy local provider" not in caplog.text


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class TestBudgetRouting:
    def test_budget_exceeded_still_routes(
        self, make_router, priced_registry: ProviderRegistry
    ) -> None:
        router = make_router(priced_registry, strategy="cheapest", daily_limit=0.01)

        first = router.route(_thousand_tokens())
        assert first.provider == "alpha"
        assert first.reason == "cheapest"
        assert first.budget_exceeded is False

        for _ in range(3):
            decision = router.route(_thousand_tokens())
            assert decision.provider == "alpha"
            assert decision.reason == "budget_exceeded"
            assert decision.budget_exceeded is True

        alerts = router.budget.alerts
        assert len(alerts) == 3
        assert {a.kind for a in alerts} == {"daily_budget_exceeded"}

    def test_budget_filters_expensive_providers(
        self, make_router, priced_registry: ProviderRegistry
    ) -> None:
        router = make_router(priced_registry, strategy="fastest", daily_limit=0.015)
        decision = router.route(_thousand_tokens())
        # beta is faster but would overshoot the limit.
        assert decision.provider == "alpha"
        assert decision.reason == "fastest"

    def test_one_cent_limit_is_eventually_exceeded(self, make_router) -> None:
        router = make_router(strategy="reliability", daily_limit=0.01)
        for name in ("local", "groq", "together"):
            router.registry.set_status(name, "unhealthy")

        # Only cloudflare fits a cent at 0.001 per request.
        first = router.route(_thousand_tokens())
        assert first.provider == "cloudflare"
        assert first.reason == "reliability"

        decision = first
        for _ in range(20):
            decision = router.route(_thousand_tokens())
            if decision.budget_exceeded:
                break
        assert decision.budget_exceeded is True
        assert decision.reason == "budget_exceeded"
        assert decision.provider == "openai"

    def test_sensitive_with_no_local_and_over_budget(
        self, make_router, priced_registry: ProviderRegistry
    ) -> None:
        router = make_router(priced_registry, strategy="cheapest", daily_limit=0.005)

        decision = router.route(_thousand_tokens("my password: "))
        assert decision.provider == "alpha"
        assert decision.reason == "sensitive_fallback"
        assert decision.sensitive is True
        assert decision.budget_exceeded is True

    def test_sensitive_and_over_budget(self, make_router) -> None:
        registry = ProviderRegistry(include_defaults=False)
        registry.register(Provider(name="alpha", cost_per_1k_tokens=0.01, latency_ms=50))
        registry.register(
            Provider(name="local", cost_per_1k_tokens=0.02, latency_ms=90, privacy="local")
        )
        router = make_router(registry, strategy="cheapest", daily_limit=0.005)

        decision = router.route(_thousand_tokens("my password: "))
        assert decision.provider == "local"
        assert decision.reason == "sensitive_budget_exceeded"
        assert decision.budget_exceeded is True

    def test_privacy_beats_budget(self, make_router) -> None:
        registry = ProviderRegistry(include_defaults=False)
        registry.register(Provider(name="alpha", cost_per_1k_tokens=0.01, latency_ms=50))
        registry.register(
            Provider(name="local", cost_per_1k_tokens=0.02, latency_ms=90, privacy="local")
        )
        router = make_router(registry, strategy="cheapest", daily_limit=0.015)

        decision = router.route(_thousand_tokens("my password: "))
        assert decision.provider == "local"
        assert decision.reason == "sensitive_budget_exceeded"
        # alpha still fit, so the pool was not widened.
        assert decision.budget_exceeded is False
        assert [a.kind for a in router.budget.alerts] == ["daily_budget_exceeded"]

    def test_spend_is_recorded(self, make_router, priced_registry: ProviderRegistry) -> None:
        router = make_router(priced_registry, strategy="cheapest")
        router.route(_thousand_tokens())
        router.route(_thousand_tokens())
        assert router.budget.daily_spent == pytest.approx(0.02)
        assert router.budget.spent_by_provider == pytest.approx({"alpha": 0.02})

    def test_daily_rollover_restores_budget(
        self, make_router, priced_registry: ProviderRegistry, clock: FixedClock
    ) -> None:
        router = make_router(priced_registry, strategy="cheapest", daily_limit=0.01)
        router.route(_thousand_tokens())
        assert router.route(_thousand_tokens()).budget_exceeded is True

        clock.advance(days=1)
        decision = router.route(_thousand_tokens())
        assert decision.budget_exceeded is False
        assert decision.reason == "cheapest"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealthRouting:
    def test_all_unhealthy_raises(self, make_router) -> None:
        router = make_router()
        for provider in router.registry.list():
            router.registry.set_status(provider.name, "unhealthy")
        with pytest.raises(NoAvailableProvidersError):
            router.route(_ask("hello"))

    def test_failures_and_recovery_drive_routing(self, make_router) -> None:
        router = make_router(strategy="fastest")
        for _ in range(3):
            router.monitor.record_result("groq", False)
        assert router.registry.get("groq").status == "unhealthy"
        assert router.route(_ask("weather today")).provider == "cloudflare"

        router.monitor.record_result("groq", True)
        assert router.registry.get("groq").is_healthy
        assert router.route(_ask("weather today")).provider == "groq"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        "request_",
        [
            {"messages": []},
            {},
            {"messages": "hello"},
            {"messages": [{"role": "robot", "content": "hi"}]},
            "hello",
            None,
        ],
    )
    def test_invalid_requests_rejected(self, make_router, request_: Any) -> None:
        with pytest.raises(InvalidRequestError):
            make_router().route(request_)

    def test_invalid_request_is_value_error(self, make_router) -> None:
        with pytest.raises(ValueError):
            make_router().route({"messages": []})

    def test_rejected_request_records_nothing(self, make_router) -> None:
        router = make_router()
        with pytest.raises(InvalidRequestError):
            router.route({"messages": []})
        assert router.summary().total_requests == 0
        assert router.budget.daily_spent == 0.0


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TestSummary:
    def test_summary_is_idempotent(self, make_router) -> None:
        router = make_router(strategy="fastest")
        router.route(_ask("weather today"))
        first = router.summary()
        second = router.summary()
        assert isinstance(first, AnalyticsSummary)
        assert first == second

    def test_summary_contents(self, make_router) -> None:
        router = make_router(strategy="fastest", daily_limit=5.0)
        router.route(_ask("weather today"))
        router.route(_ask("my password is hunter2"))
        summary = router.summary()

        assert summary.total_requests == 2
        assert summary.by_provider["groq"].requests == 1
        assert summary.by_provider["local"].requests == 1
        assert summary.health_status["groq"] == "healthy"
        assert summary.budget_status["daily"]["limit"] == 5.0

    def test_concurrent_routes_are_all_counted(self, make_router) -> None:
        router = make_router(strategy="balanced", daily_limit=1.0)
        n = 400
        requests = [
            _ask("my password is x") if i % 3 == 0 else _ask(f"question {i}")
            for i in range(n)
        ]
        with ThreadPoolExecutor(max_workers=16) as pool:
            decisions = list(pool.map(router.route, requests))

        assert len(decisions) == n
        summary = router.summary()
        assert summary.total_requests == n
        assert summary.total_cost == pytest.approx(router.budget.daily_spent, abs=1e-6)
        assert sum(s.requests for s in summary.by_provider.values()) == n


# ---------------------------------------------------------------------------
# Hand-off
# ---------------------------------------------------------------------------


class _BrokenClient:
    def send(self, provider: Provider, request: ChatRequest) -> ChatResponse:
        raise RuntimeError("socket closed")


class TestComplete:
    def test_response_carries_decision(
        self, make_router, client: MockProviderClient
    ) -> None:
        response = make_router(strategy="fastest").complete(_ask("weather today"))
        assert response.routing is not None
        assert response.routing.provider == "groq"
        assert response.choices[0].message.content == "[Groq] Lightning fast response"
        assert [name for name, _ in client.calls] == ["groq"]

    def test_provider_error_is_counted_and_raised(self, clock: FixedClock) -> None:
        with EdgeRouter(
            _config(strategy="fastest"),
            provider_client=MockProviderClient(fail_for=["groq"]),
            health_probe=StaticHealthProbe(),
            clock=clock,
        ) as router:
            with pytest.raises(ProviderError):
                router.complete(_ask("weather today"))
            summary = router.summary()
        assert summary.total_errors == 1
        assert summary.by_provider["groq"].errors == 1
        # The decision was still recorded; no retry was attempted.
        assert summary.total_requests == 1

    def test_unexpected_error_is_wrapped(self, clock: FixedClock) -> None:
        with EdgeRouter(
            _config(strategy="fastest"),
            provider_client=_BrokenClient(),
            health_probe=StaticHealthProbe(),
            clock=clock,
        ) as router:
            with pytest.raises(ProviderError, match="socket closed") as excinfo:
                router.complete(_ask("weather today"))
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_invalid_request_never_reaches_client(
        self, make_router, client: MockProviderClient
    ) -> None:
        with pytest.raises(InvalidRequestError):
            make_router().complete({"messages": []})
        assert client.calls == []
