"""Routing analytics."""

from edgerouter.observability.analytics import (
    AnalyticsAggregator,
    AnalyticsSummary,
    ProviderStats,
)

__all__ = ["AnalyticsAggregator", "AnalyticsSummary", "ProviderStats"]
