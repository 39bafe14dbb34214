"""事件总线：订单事件实时推送"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Set

from pydantic import BaseModel


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """事件类型枚举"""
    NEW_ORDER = "new_order"
    ORDER_UPDATE = "order_update"


class Event(BaseModel):
    """事件模型"""
    type: EventType
    data: Dict[str, Any]
    timestamp: str = ""

    def __init__(self, **data):
        if "timestamp" not in data or not data["timestamp"]:
            data["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        super().__init__(**data)

    def to_json(self) -> str:
        """转换为JSON字符串"""
        return self.model_dump_json()


class EventBus:
    """事件总线

    每个订阅者按发布顺序收到全部事件，不保留历史；
    某个订阅者失败只记录日志，不影响其他订阅者。
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Callable]] = {}
        self._async_subscribers: Dict[EventType, List[Callable]] = {}
        self._websocket_queues: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()

    def subscribe(self, event_type: EventType, callback: Callable) -> None:
        """订阅事件（同步回调）"""
        self._subscribers.setdefault(event_type, []).append(callback)

    def subscribe_async(self, event_type: EventType, callback: Callable) -> None:
        """订阅事件（异步回调）"""
        self._async_subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: EventType, callback: Callable) -> None:
        """取消订阅"""
        if event_type in self._subscribers:
            self._subscribers[event_type] = [
                cb for cb in self._subscribers[event_type] if cb != callback
            ]
        if event_type in self._async_subscribers:
            self._async_subscribers[event_type] = [
                cb for cb in self._async_subscribers[event_type] if cb != callback
            ]

    @property
    def websocket_count(self) -> int:
        return len(self._websocket_queues)

    async def publish(self, event: Event) -> None:
        """发布事件"""
        logger.debug(f"发布事件: {event.type.value} - {event.data.get('order_id')}")

        for callback in self._subscribers.get(event.type, []):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"同步事件回调错误: {e}")

        for callback in self._async_subscribers.get(event.type, []):
            try:
                await callback(event)
            except Exception as e:
                logger.error(f"异步事件回调错误: {e}")

        async with self._lock:
            for queue in self._websocket_queues:
                try:
                    await queue.put(event)
                except Exception as e:
                    logger.error(f"WebSocket队列推送错误: {e}")

    async def publish_topic(self, topic: str, payload: Dict[str, Any]) -> None:
        """按主题名发布（订单服务使用的通知接口）"""
        await self.publish(Event(type=EventType(topic), data=payload))

    async def register_websocket_queue(self, queue: asyncio.Queue) -> None:
        """注册WebSocket队列"""
        async with self._lock:
            self._websocket_queues.add(queue)

    async def unregister_websocket_queue(self, queue: asyncio.Queue) -> None:
        """注销WebSocket队列"""
        async with self._lock:
            self._websocket_queues.discard(queue)
