"""
Spend tracking and budget enforcement for EdgeRouter.

Accumulates estimated spend per provider and per calendar period,
answers "does this request fit today's budget", and keeps an
append-only alert log when the router proceeds over budget.  Budgets
are advisory: a request over budget is still routed, only annotated.
"""

import logging
import threading
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from edgerouter.clock import Clock, SystemClock
from edgerouter.config import get_settings
from edgerouter.providers.registry import Provider, calculate_cost

logger = logging.getLogger(__name__)

AlertKind = Literal["daily_budget_exceeded", "monthly_budget_exceeded"]


class BudgetAlert(BaseModel):
    """A single budget alert.

    Attributes:
        kind: Which limit was crossed.
        provider: Provider the overspend was recorded against.
        timestamp: When the alert was raised.
    """

    model_config = ConfigDict(frozen=True)

    kind: AlertKind
    provider: str
    timestamp: datetime


class BudgetConfig(BaseModel):
    """Spend limits.  ``None`` means unbounded, distinct from ``0.0``.

    Attributes:
        daily_limit: Maximum spend per calendar day (USD).
        monthly_limit: Maximum spend per calendar month (USD).
    """

    daily_limit: Optional[float] = Field(
        default_factory=lambda: get_settings().budget.daily_limit, ge=0.0
    )
    monthly_limit: Optional[float] = Field(
        default_factory=lambda: get_settings().budget.monthly_limit, ge=0.0
    )


class BudgetTracker:
    """Thread-safe spend accounting with lazy period rollover.

    Invariant: ``daily_spent`` always equals the sum of per-provider
    spend accrued since the last daily reset.

    Args:
        config: Spend limits.
        clock: Time source for alerts and period boundaries.
    """

    def __init__(
        self,
        config: Optional[BudgetConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or BudgetConfig()
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()

        now = self._clock.now()
        self._period_day: date = now.date()
        self._period_month: Tuple[int, int] = (now.year, now.month)

        self._daily_spent: float = 0.0
        self._monthly_spent: float = 0.0
        self._daily_by_provider: Dict[str, float] = {}
        self._spent_by_provider: Dict[str, float] = {}
        self._alerts: List[BudgetAlert] = []
        self._monthly_alerted = False

        logger.info(
            "BudgetTracker initialised",
            extra={
                "daily_limit": self._config.daily_limit,
                "monthly_limit": self._config.monthly_limit,
            },
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def estimate_cost(provider: Provider, tokens: int) -> float:
        """Dollar cost of ``tokens`` on ``provider``."""
        return calculate_cost(provider, tokens)

    def fits(self, provider: Provider, estimated_cost: float) -> bool:
        """Check whether ``estimated_cost`` fits in today's remaining budget.

        An unbounded daily limit always fits.
        """
        limit = self._config.daily_limit
        if limit is None:
            return True
        with self._lock:
            return self._daily_spent + estimated_cost <= limit

    def record(
        self,
        provider: Provider,
        cost: float,
        over_budget: bool = False,
        at: Optional[datetime] = None,
    ) -> None:
        """Add ``cost`` to every running total in one atomic step.

        Args:
            provider: Provider the spend is attributed to.
            cost: Dollar amount to add.
            over_budget: The caller checked :meth:`fits`, got ``False``
                and is proceeding anyway; a daily alert is appended.
            at: Instant the spend belongs to (defaults to now).  Spend
                stamped in a day or month that has since rolled over is
                left out of that period's totals; lifetime per-provider
                attribution still counts it.
        """
        now = self._clock.now()
        at = at or now
        name = provider.name
        with self._lock:
            count_daily = at.date() >= self._period_day
            count_monthly = (at.year, at.month) >= self._period_month
            if count_daily:
                self._daily_spent += cost
                self._daily_by_provider[name] = (
                    self._daily_by_provider.get(name, 0.0) + cost
                )
            if count_monthly:
                self._monthly_spent += cost
            self._spent_by_provider[name] = (
                self._spent_by_provider.get(name, 0.0) + cost
            )
            over_budget = over_budget and count_daily

            if over_budget:
                self._alerts.append(
                    BudgetAlert(
                        kind="daily_budget_exceeded", provider=name, timestamp=now
                    )
                )

            monthly_limit = self._config.monthly_limit
            monthly_crossed = (
                monthly_limit is not None
                and count_monthly
                and not self._monthly_alerted
                and self._monthly_spent > monthly_limit
            )
            if monthly_crossed:
                self._monthly_alerted = True
                self._alerts.append(
                    BudgetAlert(
                        kind="monthly_budget_exceeded", provider=name, timestamp=now
                    )
                )

        if not (count_daily and count_monthly):
            logger.debug(
                "Spend stamped in a closed period",
                extra={"provider": name, "cost": cost, "at": at.isoformat()},
            )
        if over_budget:
            logger.warning(
                "Daily budget exceeded",
                extra={"provider": name, "cost": cost},
            )
        if monthly_crossed:
            logger.warning(
                "Monthly budget exceeded",
                extra={"provider": name, "monthly_limit": monthly_limit},
            )

    def reset_if_period_rolled(self, now: Optional[datetime] = None) -> bool:
        """Reset daily / monthly totals when ``now`` is in a new period.

        Idempotent and safe to call concurrently: the first caller to
        observe a boundary resets, later callers see the updated period
        and do nothing.

        Returns:
            True if any counter was reset by this call.
        """
        now = now or self._clock.now()
        today = now.date()
        month = (now.year, now.month)
        reset_daily = reset_monthly = False

        with self._lock:
            if today != self._period_day:
                self._daily_spent = 0.0
                self._daily_by_provider.clear()
                self._period_day = today
                reset_daily = True
            if month != self._period_month:
                self._monthly_spent = 0.0
                self._monthly_alerted = False
                self._period_month = month
                reset_monthly = True

        if reset_daily or reset_monthly:
            logger.info(
                "Budget period rolled over",
                extra={
                    "daily_reset": reset_daily,
                    "monthly_reset": reset_monthly,
                    "day": today.isoformat(),
                },
            )
        return reset_daily or reset_monthly

    def status(self) -> Dict[str, Any]:
        """Snapshot of limits, spend and alerts.

        Returns:
            Dict with ``daily`` and ``monthly`` sub-dicts (``limit``,
            ``spent``, ``remaining`` -- ``None`` when unbounded),
            ``spent_by_provider`` and ``alerts``.
        """
        daily_limit = self._config.daily_limit
        monthly_limit = self._config.monthly_limit
        with self._lock:
            daily_spent = self._daily_spent
            monthly_spent = self._monthly_spent
            spent_by_provider = dict(self._spent_by_provider)
            alerts = [a.model_dump() for a in self._alerts]

        return {
            "daily": {
                "limit": daily_limit,
                "spent": round(daily_spent, 6),
                "remaining": (
                    None if daily_limit is None
                    else round(daily_limit - daily_spent, 6)
                ),
            },
            "monthly": {
                "limit": monthly_limit,
                "spent": round(monthly_spent, 6),
                "remaining": (
                    None if monthly_limit is None
                    else round(monthly_limit - monthly_spent, 6)
                ),
            },
            "spent_by_provider": {
                k: round(v, 6) for k, v in spent_by_provider.items()
            },
            "alerts": alerts,
        }

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def daily_spent(self) -> float:
        with self._lock:
            return self._daily_spent

    @property
    def monthly_spent(self) -> float:
        with self._lock:
            return self._monthly_spent

    @property
    def daily_by_provider(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._daily_by_provider)

    @property
    def spent_by_provider(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._spent_by_provider)

    @property
    def alerts(self) -> List[BudgetAlert]:
        with self._lock:
            return list(self._alerts)

    @property
    def config(self) -> BudgetConfig:
        return self._config
