"""
Sensitive-content detection for EdgeRouter.

Classifies chat messages as sensitive when any message matches any of a
fixed set of privacy-risk patterns.  Sensitive requests are pinned to a
local provider by the router.  Matching is intentionally over-broad.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# ── Sensitivity patterns (name, compiled regex) ───────

_SENSITIVE_PATTERNS: List[Tuple[str, re.Pattern[str]]] = [
    ("api_key", re.compile(r"api[\s_-]?key", re.IGNORECASE)),
    (
        "credential_prefix",
        re.compile(r"(?:sk|pk|rk)_(?:live|test)_|\bsk-[a-z0-9_-]{8,}", re.IGNORECASE),
    ),
    ("bearer_token", re.compile(r"\bbearer\s+", re.IGNORECASE)),
    ("auth_header", re.compile(r"\bauthorization\s*:", re.IGNORECASE)),
    ("password", re.compile(r"pass(?:word|wd|code|phrase)", re.IGNORECASE)),
    ("secret", re.compile(r"secret", re.IGNORECASE)),
    ("token", re.compile(r"token", re.IGNORECASE)),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    (
        "credit_card",
        re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
    ),
    (
        "medical",
        re.compile(
            r"medical|patient|diagnos[ei]s|prescription|health",
            re.IGNORECASE,
        ),
    ),
    (
        "confidential",
        re.compile(
            r"private|privacy|confidential|salary|income|social.?security|\bssn\b",
            re.IGNORECASE,
        ),
    ),
]

PATTERN_NAMES: Tuple[str, ...] = tuple(name for name, _ in _SENSITIVE_PATTERNS)


def _content(message: Any) -> str:
    """Return a message's text whether it is a model or a plain dict."""
    if isinstance(message, dict):
        value = message.get("content")
    else:
        value = getattr(message, "content", None)
    return "" if value is None else str(value)


def match_text(text: str) -> Optional[str]:
    """Return the name of the first pattern matching ``text``, if any."""
    for name, pattern in _SENSITIVE_PATTERNS:
        if pattern.search(text):
            return name
    return None


def detect(messages: Iterable[Any]) -> Optional[str]:
    """Name the first sensitivity pattern found in ``messages``.

    Each message is evaluated on its own; scanning stops at the first
    match.

    Args:
        messages: Chat messages (``Message`` models or ``{"content": ...}``
            dicts).

    Returns:
        The matching pattern name, or ``None`` when nothing matched.
    """
    for message in messages:
        name = match_text(_content(message))
        if name is not None:
            logger.debug("Sensitive content detected", extra={"pattern": name})
            return name
    return None


def is_sensitive(messages: Iterable[Any]) -> bool:
    """True if any message matches any sensitivity pattern."""
    return detect(messages) is not None
