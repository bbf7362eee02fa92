"""
Central configuration loader for EdgeRouter.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``EDGEROUTER_`` prefix), and exposes a typed :class:`Settings`
singleton via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # edgerouter/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class RoutingSettings:
    strategy: str = "balanced"
    chars_per_token: int = 4
    baseline_cost_per_1k: float = 0.015
    baseline_latency_ms: float = 200.0


@dataclass
class BudgetSettings:
    daily_limit: Optional[float] = None
    monthly_limit: Optional[float] = None


@dataclass
class HealthSettings:
    enabled: bool = True
    interval_seconds: float = 60.0
    timeout_seconds: float = 5.0
    failure_threshold: int = 3


@dataclass
class ProviderSettings:
    request_timeout_seconds: float = 30.0
    overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class Settings:
    """Top-level settings container."""
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _apply_dict(target: object, data: Dict[str, Any]) -> None:
    """Apply *data* values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if not hasattr(target, key):
            logger.debug("Ignoring unknown config key: %s", key)
            continue
        setattr(target, key, value)


# ---------------------------------------------------------------------------
# Env-var overrides  (EDGEROUTER_SECTION_KEY  e.g. EDGEROUTER_BUDGET_DAILY_LIMIT)
# ---------------------------------------------------------------------------

_FLAT_SECTIONS = ["routing", "budget", "health", "providers", "logging"]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
}


def _parse_limit(value: str) -> Optional[float]:
    """Budget limits accept ``none``/empty for unbounded."""
    if value.strip().lower() in ("", "none", "null", "unbounded"):
        return None
    return float(value)


_LIMIT_KEYS = {"daily_limit", "monthly_limit"}


def _apply_env_overrides(settings: Settings) -> None:
    """Override flat scalar fields via ``EDGEROUTER_<SECTION>_<KEY>`` env vars."""
    for section_name in _FLAT_SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"EDGEROUTER_{section_name.upper()}_"
        for key in list(vars(section)):
            env_key = prefix + key.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, key)
            if key in _LIMIT_KEYS:
                cast = _parse_limit
            elif isinstance(current, dict):
                logger.warning("Env override not supported for %s", env_key)
                continue
            else:
                cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, key, cast(env_val))
                logger.debug("Env override applied: %s=%s", env_key, env_val)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply the configured level to the ``edgerouter`` logger tree."""
    level_name = (settings or get_settings()).logging.level.upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        logger.warning("Unknown log level %s; using INFO", level_name)
        level = logging.INFO
    logging.getLogger("edgerouter").setLevel(level)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the application-wide :class:`Settings` singleton.

    On first call (or when ``_force_reload=True``) the function:

    1. Calls ``load_dotenv()`` to populate env vars from ``.env``.
    2. Reads ``config/config.yaml``.
    3. Applies ``EDGEROUTER_*`` environment-variable overrides.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings

        dotenv_path = env_path or _project_path(".env")
        load_dotenv(dotenv_path, override=True)

        config_path = yaml_path or _project_path("config", "config.yaml")
        raw = _load_yaml(config_path)

        settings = Settings()
        for section_name in _FLAT_SECTIONS:
            section_data = raw.get(section_name)
            if isinstance(section_data, dict):
                _apply_dict(getattr(settings, section_name), section_data)

        _apply_env_overrides(settings)

        _settings = settings
        logger.info("Settings loaded from %s", config_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None
