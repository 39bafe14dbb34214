"""订单数据访问层

负责 Order 的追加、查询和原子更新。按 owner_user_id 分区，
每个用户的订单列表按时间倒序（最新在前）。
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from copytrade.core.errors import OrderNotFoundError
from copytrade.core.models import Order
from copytrade.utils.logger import get_logger

logger = get_logger('repository.orders')


class OrderRepository(ABC):
    """订单仓库接口

    复制引擎和对账循环只依赖此接口，可替换为持久化实现。
    """

    @abstractmethod
    def append(self, user_id: str, order: Order) -> None:
        """追加订单到该用户列表头部"""

    @abstractmethod
    def list(self, user_id: str) -> List[Order]:
        """获取用户订单（最新在前），无记录时返回空列表"""

    @abstractmethod
    def find(self, user_id: str, order_id: str) -> Optional[Order]:
        """按订单号查找"""

    @abstractmethod
    def find_and_update(self, user_id: str, order_id: str, mutation: Callable[[Order], None]) -> Order:
        """原子地修改一个订单，不存在时抛出 OrderNotFoundError"""

    @abstractmethod
    def user_ids(self) -> List[str]:
        """所有有订单的用户"""


class InMemoryOrderRepository(OrderRepository):
    """内存订单仓库

    职责：
    - 按用户维护订单列表（头插）
    - 每个用户一把锁，保证同一用户的写操作串行
    - 读操作返回列表快照，允许读到旧数据
    """

    def __init__(self):
        self._orders: Dict[str, List[Order]] = {}
        self._user_locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._user_locks[user_id] = lock
            return lock

    def append(self, user_id: str, order: Order) -> None:
        with self._lock_for(user_id):
            with self._registry_lock:
                orders = self._orders.setdefault(user_id, [])
            orders.insert(0, order)
        logger.info(f"[OrderRepository] 新增订单: user={user_id} order={order.order_id} "
                    f"{order.transaction_type} {order.quantity} {order.instrument_id}")

    def list(self, user_id: str) -> List[Order]:
        with self._lock_for(user_id):
            return list(self._orders.get(user_id, []))

    def find(self, user_id: str, order_id: str) -> Optional[Order]:
        with self._lock_for(user_id):
            for order in self._orders.get(user_id, []):
                if order.order_id == order_id:
                    return order
            return None

    def find_and_update(self, user_id: str, order_id: str, mutation: Callable[[Order], None]) -> Order:
        with self._lock_for(user_id):
            for order in self._orders.get(user_id, []):
                if order.order_id == order_id:
                    mutation(order)
                    return order
        raise OrderNotFoundError(user_id, order_id)

    def user_ids(self) -> List[str]:
        with self._registry_lock:
            return [uid for uid, orders in self._orders.items() if orders]

    def count(self, user_id: Optional[str] = None) -> int:
        """统计订单数量"""
        if user_id is not None:
            return len(self.list(user_id))
        return sum(len(self.list(uid)) for uid in self.user_ids())
