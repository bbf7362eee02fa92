"""
Provider profiles and registry for EdgeRouter.

Provides the Provider Pydantic model and the ProviderRegistry class,
which is the single source of truth for every backend the router can
send a request to.  Health status lives on the profile itself and is
swapped atomically by the health monitor.
"""

import logging
import math
import threading
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from edgerouter.exceptions import ConfigurationError, UnknownProviderError
from edgerouter.schemas import Message

logger = logging.getLogger(__name__)

DEFAULT_RELIABILITY = 0.95

PrivacyClass = Literal["cloud", "local"]
ProviderStatus = Literal["healthy", "unhealthy"]


class Provider(BaseModel):
    """Cost, latency and privacy profile of a single backend.

    Attributes:
        name: Unique identifier, e.g. ``openai`` or ``local``.
        cost_per_1k_tokens: Dollar cost per 1 000 tokens.
        latency_ms: Expected latency; a ranking signal only.
        reliability: Historical success ratio (0.0 -- 1.0).
        privacy: ``local`` keeps data on premises, ``cloud`` does not.
        status: Runtime health, written only by the health monitor.
        endpoint: Chat-completions URL used by the HTTP client and probe.
        model: Upstream model identifier sent with each request.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    cost_per_1k_tokens: float = Field(ge=0.0)
    latency_ms: float = Field(ge=0.0)
    reliability: float = Field(default=DEFAULT_RELIABILITY, ge=0.0, le=1.0)
    privacy: PrivacyClass = "cloud"
    status: ProviderStatus = "healthy"
    endpoint: Optional[str] = None
    model: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        """Validate that provider name is not blank."""
        if not v or not v.strip():
            raise ValueError("Provider name must not be empty")
        return v.strip()

    @property
    def is_healthy(self) -> bool:
        return self.status == "healthy"

    @property
    def is_local(self) -> bool:
        return self.privacy == "local"


# Built-in provider table, merged with user overrides at construction.
DEFAULT_PROVIDERS: Dict[str, Dict[str, Any]] = {
    "cloudflare": {
        "cost_per_1k_tokens": 0.001,
        "latency_ms": 50,
        "reliability": 0.99,
        "privacy": "cloud",
        "endpoint": "https://api.cloudflare.com/client/v4/accounts/{account}/ai/v1/chat/completions",
    },
    "openai": {
        "cost_per_1k_tokens": 0.015,
        "latency_ms": 200,
        "reliability": 0.995,
        "privacy": "cloud",
        "endpoint": "https://api.openai.com/v1/chat/completions",
        "model": "gpt-4o",
    },
    "anthropic": {
        "cost_per_1k_tokens": 0.012,
        "latency_ms": 180,
        "reliability": 0.99,
        "privacy": "cloud",
        "endpoint": "https://api.anthropic.com/v1/chat/completions",
        "model": "claude-3-5-sonnet-latest",
    },
    "local": {
        "cost_per_1k_tokens": 0.0,
        "latency_ms": 100,
        "reliability": 1.0,
        "privacy": "local",
        "endpoint": "http://localhost:11434/v1/chat/completions",
        "model": "llama3",
    },
    "groq": {
        "cost_per_1k_tokens": 0.0001,
        "latency_ms": 30,
        "reliability": 0.95,
        "privacy": "cloud",
        "endpoint": "https://api.groq.com/openai/v1/chat/completions",
    },
    "together": {
        "cost_per_1k_tokens": 0.002,
        "latency_ms": 60,
        "reliability": 0.97,
        "privacy": "cloud",
        "endpoint": "https://api.together.xyz/v1/chat/completions",
    },
}


class ProviderRegistry:
    """Single source of truth for all provider profiles.

    Thread-safe: profiles are immutable and every write swaps a whole
    profile under the registry lock, so readers never observe a
    half-updated provider.

    Args:
        config_path: Optional YAML file with a top-level ``providers``
            mapping.  When given it replaces the built-in defaults.
        overrides: Partial per-provider fields merged over the
            registered profiles (see :meth:`apply_overrides`).
        include_defaults: Register :data:`DEFAULT_PROVIDERS` when no
            ``config_path`` is supplied.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
        include_defaults: bool = True,
    ) -> None:
        self._lock = threading.Lock()
        self._providers: Dict[str, Provider] = {}

        if config_path is not None:
            self.load_from_yaml(config_path)
        elif include_defaults:
            self._register_defaults()

        if overrides:
            self.apply_overrides(overrides)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register(self, provider: Provider) -> None:
        """Register or replace a provider profile (last write wins).

        Args:
            provider: The provider profile to register.
        """
        with self._lock:
            replaced = provider.name in self._providers
            self._providers[provider.name] = provider
        if replaced:
            logger.warning(
                "Overwriting existing provider",
                extra={"provider": provider.name},
            )
        logger.info("Provider registered", extra={"provider": provider.name})

    def get(self, name: str) -> Provider:
        """Return a provider profile by name.

        Raises:
            UnknownProviderError: If no provider with that name is registered.
        """
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                raise UnknownProviderError(
                    f"Provider '{name}' not found in registry. "
                    f"Available: {list(self._providers.keys())}"
                )
            return provider

    def list(self) -> List[Provider]:
        """Return a snapshot of all registered providers."""
        with self._lock:
            return list(self._providers.values())

    def healthy(self) -> List[Provider]:
        """Return a snapshot of providers whose status is ``healthy``."""
        with self._lock:
            return [p for p in self._providers.values() if p.is_healthy]

    def set_status(self, name: str, status: ProviderStatus) -> Provider:
        """Swap in a copy of the provider with a new status.

        Only the health monitor calls this outside of registration.

        Returns:
            The updated provider.

        Raises:
            UnknownProviderError: If the provider is not registered.
        """
        with self._lock:
            current = self._providers.get(name)
            if current is None:
                raise UnknownProviderError(
                    f"Cannot set status of unknown provider '{name}'"
                )
            if current.status == status:
                return current
            updated = current.model_copy(update={"status": status})
            self._providers[name] = updated
        logger.info(
            "Provider status changed",
            extra={"provider": name, "status": status},
        )
        return updated

    def health_status(self) -> Dict[str, str]:
        """Return ``{name: status}`` for every provider."""
        with self._lock:
            return {name: p.status for name, p in self._providers.items()}

    def apply_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> None:
        """Merge partial provider definitions over the registered ones.

        Known providers take the override fields on top of their current
        profile.  Unknown names are added only when they specify both
        ``cost_per_1k_tokens`` and ``latency_ms``; otherwise they are
        skipped with a warning.

        Raises:
            ConfigurationError: If a merged definition fails validation.
        """
        for name, fields in overrides.items():
            fields = dict(fields or {})
            fields.pop("name", None)
            with self._lock:
                existing = self._providers.get(name)

            if existing is not None:
                data = {**existing.model_dump(), **fields}
            elif "cost_per_1k_tokens" in fields and "latency_ms" in fields:
                data = {"name": name, **fields}
            else:
                logger.warning(
                    "Skipping override for unknown provider without cost/latency",
                    extra={"provider": name},
                )
                continue

            try:
                self.register(Provider(**data))
            except ValidationError as exc:
                raise ConfigurationError(
                    f"Invalid provider override for '{name}': {exc}"
                ) from exc

    def load_from_yaml(self, path: Path) -> None:
        """Parse a YAML file and register every provider under ``providers``.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh)
        except FileNotFoundError as exc:
            raise ConfigurationError(
                f"Providers config file not found: {path}"
            ) from exc
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

        if not data or not isinstance(data.get("providers"), dict):
            raise ConfigurationError(
                f"Expected top-level 'providers' mapping in {path}"
            )

        for name, fields in data["providers"].items():
            try:
                self.register(Provider(name=name, **(fields or {})))
            except (ValidationError, TypeError) as exc:
                logger.error(
                    "Failed to load provider from config",
                    extra={"provider": name, "error": str(exc)},
                )
                raise ConfigurationError(
                    f"Invalid provider definition for '{name}' in {path}: {exc}"
                ) from exc

        logger.info(
            "Providers loaded from YAML",
            extra={"path": str(path), "count": len(self)},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the registry for presentation layers."""
        providers = self.list()
        return {
            "providers": [p.model_dump() for p in providers],
            "count": len(providers),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _register_defaults(self) -> None:
        """Register the built-in provider table."""
        for name, fields in DEFAULT_PROVIDERS.items():
            self.register(Provider(name=name, **fields))

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._providers


def estimate_tokens(messages: Sequence[Message], chars_per_token: int = 4) -> int:
    """Approximate token count from message content length.

    Uses roughly four characters per token; this is a routing signal,
    not a metering figure.

    Args:
        messages: Chat messages whose content is counted.
        chars_per_token: Characters assumed per token.

    Returns:
        Estimated token count (0 for empty content).
    """
    total_chars = sum(len(m.content) for m in messages)
    return math.ceil(total_chars / max(chars_per_token, 1))


def calculate_cost(provider: Provider, tokens: int) -> float:
    """Dollar cost of ``tokens`` at the provider's per-1k rate."""
    return provider.cost_per_1k_tokens * tokens / 1000
