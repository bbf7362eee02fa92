"""Strategy selection and the routing orchestrator."""

from edgerouter.routing.router import EdgeRouter, RouterConfig
from edgerouter.routing.strategies import Selection, Strategy, StrategySelector

__all__ = ["EdgeRouter", "RouterConfig", "Selection", "Strategy", "StrategySelector"]
