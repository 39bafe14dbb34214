"""内部服务协议定义

定义各服务层之间的接口，实现依赖倒置和解耦。
"""
from typing import Any, Dict, List, Protocol

from copytrade.core.models import Profile


class BrokerGateway(Protocol):
    """券商网关协议

    所有方法均为阻塞调用，失败时抛出 UpstreamError。
    """

    def place_order(self, credential: str, order: Dict[str, Any]) -> List[str]:
        """下单，返回券商订单号列表"""
        ...

    def cancel_order(self, credential: str, order_id: str) -> Dict[str, Any]:
        """撤单"""
        ...

    def get_profile(self, credential: str) -> Profile:
        """获取用户资料"""
        ...

    def list_orders(self, credential: str) -> List[Dict[str, Any]]:
        """获取订单簿（字段已归一化）"""
        ...


class NotificationPublisher(Protocol):
    """通知发布协议（由 app.core.events.EventBus 实现）"""

    async def publish_topic(self, topic: str, payload: Dict[str, Any]) -> None:
        """按主题发布，订阅者按发布顺序收到"""
        ...
