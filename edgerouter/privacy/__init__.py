"""Sensitive-content classification."""

from edgerouter.privacy.sensitivity import (
    PATTERN_NAMES,
    detect,
    is_sensitive,
    match_text,
)

__all__ = ["PATTERN_NAMES", "detect", "is_sensitive", "match_text"]
