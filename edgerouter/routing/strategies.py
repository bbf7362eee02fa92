"""
Strategy selection for EdgeRouter.

Ranks an eligible provider pool under one of five closed strategies and
applies the sensitive-content override before any strategy runs.
"""

from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

from edgerouter.exceptions import NoCandidatesError, UnknownStrategyError
from edgerouter.providers.registry import Provider
from edgerouter.schemas import ReasonCode

# Fixed reference point for the balanced score, independent of the pool.
BASELINE_COST_PER_1K = 0.015
BASELINE_LATENCY_MS = 200.0

LOCAL_PROVIDER_NAME = "local"


class Strategy(str, Enum):
    """Closed set of optimisation policies."""

    CHEAPEST = "cheapest"
    FASTEST = "fastest"
    BALANCED = "balanced"
    PRIVACY_FIRST = "privacy-first"
    RELIABILITY = "reliability"

    @classmethod
    def parse(cls, value: Union[str, "Strategy"]) -> "Strategy":
        """Resolve a strategy name.

        Raises:
            UnknownStrategyError: If ``value`` names no strategy.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise UnknownStrategyError(
                f"Unknown strategy '{value}'. "
                f"Allowed: {[s.value for s in cls]}"
            ) from exc


class Selection(NamedTuple):
    """The selector's pick and the reason it was picked."""

    provider: Provider
    reason: str


SortKey = Callable[[Provider], Tuple]


def _balanced_score(
    provider: Provider,
    baseline_cost: float = BASELINE_COST_PER_1K,
    baseline_latency: float = BASELINE_LATENCY_MS,
) -> float:
    return (
        0.5 * (provider.cost_per_1k_tokens / baseline_cost)
        + 0.5 * (provider.latency_ms / baseline_latency)
    )


class StrategySelector:
    """Pick the best provider from a pool under a strategy.

    All orderings are total: exact ties fall back to the provider name,
    so the same pool always yields the same provider.

    Args:
        baseline_cost: Reference cost per 1k tokens for ``balanced``.
        baseline_latency_ms: Reference latency for ``balanced``.
    """

    def __init__(
        self,
        baseline_cost: float = BASELINE_COST_PER_1K,
        baseline_latency_ms: float = BASELINE_LATENCY_MS,
    ) -> None:
        if baseline_cost <= 0 or baseline_latency_ms <= 0:
            raise ValueError("Balanced-score baselines must be positive")
        self._baseline_cost = baseline_cost
        self._baseline_latency = baseline_latency_ms

    def select(
        self,
        strategy: Union[str, "Strategy"],
        candidates: Sequence[Provider],
        sensitive: bool = False,
    ) -> Selection:
        """Return the winning provider and its reason code.

        When ``sensitive`` is set the strategy is ignored in favour of a
        healthy local provider.  If the pool has none, the strategy runs
        over the pool and the reason is ``sensitive_fallback`` so callers
        can see privacy was degraded.

        Raises:
            NoCandidatesError: If ``candidates`` is empty.
            UnknownStrategyError: If ``strategy`` is not recognised.
        """
        strategy = Strategy.parse(strategy)
        if not candidates:
            raise NoCandidatesError(
                f"Strategy '{strategy.value}' was given an empty candidate pool"
            )

        if sensitive:
            local = self.local_choice(candidates)
            if local is not None:
                return Selection(local, ReasonCode.SENSITIVE_CONTENT.value)
            best = self.rank(strategy, candidates)[0]
            return Selection(best, ReasonCode.SENSITIVE_FALLBACK.value)

        best = self.rank(strategy, candidates)[0]
        return Selection(best, strategy.value)

    def rank(
        self, strategy: Union[str, "Strategy"], candidates: Sequence[Provider]
    ) -> List[Provider]:
        """Order ``candidates`` best-first under ``strategy``."""
        key = self._sort_keys()[Strategy.parse(strategy)]
        return sorted(candidates, key=key)

    @staticmethod
    def local_choice(candidates: Sequence[Provider]) -> Optional[Provider]:
        """The healthy provider named ``local``, else the first healthy
        local-privacy provider by name, else ``None``."""
        locals_ = sorted(
            (c for c in candidates if c.is_local and c.is_healthy),
            key=lambda p: p.name,
        )
        for provider in locals_:
            if provider.name == LOCAL_PROVIDER_NAME:
                return provider
        return locals_[0] if locals_ else None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _sort_keys(self) -> Dict[Strategy, SortKey]:
        """One ascending sort key per strategy, ending in the name."""
        return {
            Strategy.CHEAPEST: lambda p: (p.cost_per_1k_tokens, p.name),
            Strategy.FASTEST: lambda p: (p.latency_ms, p.name),
            Strategy.BALANCED: lambda p: (
                _balanced_score(p, self._baseline_cost, self._baseline_latency),
                p.name,
            ),
            Strategy.PRIVACY_FIRST: lambda p: (
                0 if p.is_local else 1,
                p.cost_per_1k_tokens,
                p.name,
            ),
            Strategy.RELIABILITY: lambda p: (-p.reliability, p.name),
        }
