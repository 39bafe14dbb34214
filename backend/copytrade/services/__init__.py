"""服务层"""

from .account_registry import AccountRegistry
from .portfolio_service import PortfolioService
from .replication_engine import (
    ChildReplicationResult,
    FanOutSummary,
    PlacementResult,
    ReplicationEngine,
    ReplicationOutcome,
)

__all__ = [
    'AccountRegistry',
    'ChildReplicationResult',
    'FanOutSummary',
    'PlacementResult',
    'PortfolioService',
    'ReplicationEngine',
    'ReplicationOutcome',
]
