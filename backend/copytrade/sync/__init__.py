"""同步模块：订单状态对账"""

from .order_status_sync import (
    OrderStatusReconciler,
    OrderStatusSource,
    SimulatedStatusSource,
    StatusObservation,
    UpstreamStatusSource,
)

__all__ = [
    'OrderStatusReconciler',
    'OrderStatusSource',
    'SimulatedStatusSource',
    'StatusObservation',
    'UpstreamStatusSource',
]
