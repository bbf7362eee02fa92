"""
Provider health monitor for EdgeRouter.

Periodically probes every registered provider and drives a per-provider
failure-counting state machine: slow to fail (``failure_threshold``
consecutive failed probes), fast to recover (a single success).  Runs
in its own daemon thread, decoupled from request routing.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from edgerouter.clock import Clock, SystemClock
from edgerouter.config import get_settings
from edgerouter.health.probe import HealthProbe
from edgerouter.providers.registry import ProviderRegistry, ProviderStatus

logger = logging.getLogger(__name__)


class HealthMonitorConfig(BaseModel):
    """Configuration for HealthMonitor.

    Attributes:
        interval_seconds: Pause between probe sweeps.
        failure_threshold: Consecutive failures before a provider is
            marked unhealthy.
    """

    interval_seconds: float = Field(
        default_factory=lambda: get_settings().health.interval_seconds, gt=0
    )
    failure_threshold: int = Field(
        default_factory=lambda: get_settings().health.failure_threshold, ge=1
    )


class HealthRecord(BaseModel):
    """Probe history for one provider.

    Attributes:
        provider: Provider name.
        consecutive_failures: Failed probes since the last success.
        last_check: Time of the most recent probe.
        last_error: Error text from the most recent failed probe, if it
            raised.
    """

    provider: str
    consecutive_failures: int = 0
    last_check: Optional[datetime] = None
    last_error: Optional[str] = None


class HealthMonitor:
    """Probe providers and flip their registry status.

    Thread-safe: record updates and the matching registry write happen
    under one lock; the probe itself always runs with no lock held.

    Args:
        registry: Registry whose provider statuses this monitor owns.
        probe: Liveness check invoked per provider.
        config: Interval and failure threshold.
        clock: Time source for ``last_check``.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        probe: HealthProbe,
        config: Optional[HealthMonitorConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._registry = registry
        self._probe = probe
        self._config = config or HealthMonitorConfig()
        self._clock = clock or SystemClock()

        self._lock = threading.Lock()
        self._records: Dict[str, HealthRecord] = {}
        self._sweeps: int = 0

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

        logger.info(
            "HealthMonitor initialised",
            extra={
                "interval_seconds": self._config.interval_seconds,
                "failure_threshold": self._config.failure_threshold,
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic probe thread.

        Raises:
            RuntimeError: If the monitor is already running.
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError("HealthMonitor is already running")
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                name="edgerouter-health-monitor",
                daemon=True,
            )
            self._thread.start()
        logger.info("HealthMonitor started")

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the probe thread to exit and wait for it.  Idempotent."""
        self._stop.set()
        with self._lock:
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout=timeout)
            logger.info("HealthMonitor stopped")

    @property
    def is_running(self) -> bool:
        """Whether the probe thread is alive."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_all(self) -> Dict[str, ProviderStatus]:
        """Probe every registered provider once.

        Returns:
            ``{name: status}`` after the sweep.
        """
        statuses: Dict[str, ProviderStatus] = {}
        for provider in self._registry.list():
            statuses[provider.name] = self.check_provider(provider.name)
        with self._lock:
            self._sweeps += 1
        return statuses

    def check_provider(self, name: str) -> ProviderStatus:
        """Probe one provider and apply the result.

        A probe that raises counts as a failed check; the error is
        logged, never propagated.

        Raises:
            UnknownProviderError: If ``name`` is not registered.
        """
        provider = self._registry.get(name)
        error: Optional[str] = None
        try:
            ok = bool(self._probe.check(provider))
        except Exception as exc:
            ok = False
            error = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Health probe raised; counting as failure",
                extra={"provider": name, "error": error},
            )
        return self.record_result(name, ok, error=error)

    def record_result(
        self, name: str, ok: bool, error: Optional[str] = None
    ) -> ProviderStatus:
        """Feed one probe outcome into the state machine.

        Returns:
            The provider's status after the transition.
        """
        now = self._clock.now()
        threshold = self._config.failure_threshold
        with self._lock:
            record = self._records.setdefault(name, HealthRecord(provider=name))
            record.last_check = now

            if ok:
                record.consecutive_failures = 0
                record.last_error = None
                previous = self._registry.get(name).status
                status = self._registry.set_status(name, "healthy").status
                recovered = previous == "unhealthy"
                failed = False
            else:
                record.consecutive_failures += 1
                record.last_error = error
                recovered = False
                failed = record.consecutive_failures == threshold
                if record.consecutive_failures >= threshold:
                    status = self._registry.set_status(name, "unhealthy").status
                else:
                    status = self._registry.get(name).status
            failures = record.consecutive_failures

        if failed:
            logger.warning(
                "Provider marked unhealthy",
                extra={"provider": name, "consecutive_failures": failures},
            )
        elif recovered:
            logger.info("Provider recovered", extra={"provider": name})
        return status

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def record_for(self, name: str) -> HealthRecord:
        """Copy of the probe history for ``name`` (empty if never probed)."""
        with self._lock:
            record = self._records.get(name)
            return record.model_copy() if record else HealthRecord(provider=name)

    def get_stats(self) -> Dict[str, Any]:
        """Return monitor statistics.

        Returns:
            Dict with ``running``, ``sweeps``, ``failure_threshold`` and a
            per-provider ``records`` mapping.
        """
        with self._lock:
            records = {
                name: rec.model_dump() for name, rec in self._records.items()
            }
            sweeps = self._sweeps
        return {
            "running": self.is_running,
            "sweeps": sweeps,
            "failure_threshold": self._config.failure_threshold,
            "records": records,
        }

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Sweep every ``interval_seconds`` until stopped."""
        logger.debug("Health monitor loop started")
        while not self._stop.wait(self._config.interval_seconds):
            try:
                self.check_all()
            except Exception as exc:
                logger.error(
                    "Health sweep failed",
                    extra={"error": str(exc)},
                    exc_info=True,
                )
