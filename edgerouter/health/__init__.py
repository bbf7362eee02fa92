"""Provider liveness probing and health-state tracking."""

from edgerouter.health.monitor import HealthMonitor, HealthMonitorConfig, HealthRecord
from edgerouter.health.probe import HealthProbe, HttpHealthProbe, StaticHealthProbe

__all__ = [
    "HealthMonitor",
    "HealthMonitorConfig",
    "HealthProbe",
    "HealthRecord",
    "HttpHealthProbe",
    "StaticHealthProbe",
]
