"""
Liveness probes for EdgeRouter providers.

A probe answers one question -- is this provider reachable right now --
and is invoked by the :class:`~edgerouter.health.monitor.HealthMonitor`
on its own schedule, never on the request path.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

from edgerouter.config import get_settings
from edgerouter.providers.registry import Provider

logger = logging.getLogger(__name__)


@runtime_checkable
class HealthProbe(Protocol):
    """Protocol for provider liveness checks.

    Implementations should report failure as ``False``; the monitor also
    treats a raised exception as a failed check.
    """

    def check(self, provider: Provider) -> bool:
        ...


class HttpHealthProbe:
    """Probe a provider by issuing a GET against its endpoint.

    Any response below HTTP 500 counts as alive: chat endpoints commonly
    answer a bare GET with 401/404/405, which still proves the service is
    up.  Transport errors and timeouts count as down.

    Args:
        timeout_seconds: Per-probe timeout.
        http_client: Pre-built ``httpx.Client`` (testing / pooling).
    """

    def __init__(
        self,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else get_settings().health.timeout_seconds
        )
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=self._timeout)

    def check(self, provider: Provider) -> bool:
        if not provider.endpoint:
            logger.debug(
                "Provider has no endpoint; probe skipped",
                extra={"provider": provider.name},
            )
            return True
        try:
            response = self._client.get(provider.endpoint, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.debug(
                "Health probe failed",
                extra={"provider": provider.name, "error": str(exc)},
            )
            return False
        return response.status_code < 500

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpHealthProbe":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class StaticHealthProbe:
    """Deterministic probe whose answers are set by hand.

    Args:
        results: Provider name -> probe outcome.  Missing names use
            ``default``.
        default: Outcome for providers not in ``results``.
    """

    def __init__(
        self, results: Optional[Mapping[str, bool]] = None, default: bool = True
    ) -> None:
        self._results: Dict[str, bool] = dict(results or {})
        self._default = default

    def set(self, name: str, healthy: bool) -> None:
        self._results[name] = healthy

    def check(self, provider: Provider) -> bool:
        return self._results.get(provider.name, self._default)
