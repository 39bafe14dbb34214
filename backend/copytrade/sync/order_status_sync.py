"""订单状态对账循环

定期扫描所有用户的待成交订单，把观察到的终态写回订单簿并推送 order_update。
状态来源可替换：
- SimulatedStatusSource: 按概率模拟成交（没有真实行情连接时使用）
- UpstreamStatusSource: 轮询券商订单簿
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from copytrade.constants import (
    DEFAULT_COMPLETION_PROBABILITY,
    DEFAULT_RECONCILE_INTERVAL,
    TOPIC_ORDER_UPDATE,
)
from copytrade.core.errors import OrderNotFoundError
from copytrade.core.models import Order, OrderStatus
from copytrade.core.protocols import BrokerGateway, NotificationPublisher
from copytrade.core.repositories import OrderRepository
from copytrade.utils.logger import get_logger

logger = get_logger('sync.order_status')


@dataclass
class StatusObservation:
    """一次观察到的订单终态"""
    order_id: str
    status: OrderStatus
    filled_quantity: int
    average_price: float


class OrderStatusSource(Protocol):
    """订单状态来源协议（阻塞调用，在线程中执行）"""

    def observe(self, user_id: str, pending: List[Order]) -> List[StatusObservation]:
        """返回 pending 中已进入终态的订单"""
        ...


class SimulatedStatusSource:
    """模拟成交：每轮每个待成交订单以固定概率全部成交"""

    def __init__(self, completion_probability: float = DEFAULT_COMPLETION_PROBABILITY,
                 rng: Optional[random.Random] = None):
        if not 0.0 <= completion_probability <= 1.0:
            raise ValueError("completion_probability must be within [0, 1]")
        self.completion_probability = completion_probability
        self.rng = rng or random.Random()

    def observe(self, user_id: str, pending: List[Order]) -> List[StatusObservation]:
        observations = []
        for order in pending:
            if self.rng.random() < self.completion_probability:
                observations.append(StatusObservation(
                    order_id=order.order_id,
                    status=OrderStatus.COMPLETE,
                    filled_quantity=order.quantity,
                    average_price=order.price,
                ))
        return observations


class UpstreamStatusSource:
    """轮询券商订单簿，找出已成交/已撤/被拒的订单"""

    def __init__(self, gateway: BrokerGateway, credential_lookup: Callable[[str], Optional[str]]):
        """初始化

        Args:
            gateway: 券商网关
            credential_lookup: user_id → 访问令牌，未知用户返回 None
        """
        self.gateway = gateway
        self.credential_lookup = credential_lookup

    def observe(self, user_id: str, pending: List[Order]) -> List[StatusObservation]:
        credential = self.credential_lookup(user_id)
        if not credential:
            logger.debug(f"[UpstreamStatusSource] 无可用凭证，跳过用户: {user_id}")
            return []

        snapshots: Dict[str, Dict] = {s['order_id']: s for s in self.gateway.list_orders(credential)}

        observations = []
        for order in pending:
            snapshot = snapshots.get(order.order_id)
            if snapshot is None:
                continue
            status = OrderStatus(snapshot.get('status', OrderStatus.PENDING.value))
            if not status.is_terminal:
                continue
            observations.append(StatusObservation(
                order_id=order.order_id,
                status=status,
                filled_quantity=int(snapshot.get('filled_quantity') or 0),
                average_price=float(snapshot.get('average_price') or 0.0),
            ))
        return observations


class OrderStatusReconciler:
    """订单状态对账器

    职责：
    - 定时调用 tick()，由应用生命周期 start/stop 管理
    - 只推进仍处于 pending 的订单，每次终态变化推送一次 order_update
    - 单个用户失败不影响其他用户
    """

    def __init__(
        self,
        order_repository: OrderRepository,
        publisher: NotificationPublisher,
        source: OrderStatusSource,
        interval: float = DEFAULT_RECONCILE_INTERVAL,
    ):
        """初始化

        Args:
            order_repository: 订单仓库
            publisher: 通知发布者
            source: 订单状态来源
            interval: 扫描间隔（秒）
        """
        self.order_repository = order_repository
        self.publisher = publisher
        self.source = source
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """在当前事件循环中启动对账任务"""
        if self.running:
            logger.warning("[OrderStatusReconciler] 已在运行")
            return
        self._task = asyncio.get_running_loop().create_task(self._run_loop())
        logger.info(f"[OrderStatusReconciler] 已启动 (间隔={self.interval}s, "
                    f"来源={type(self.source).__name__})")

    async def stop(self):
        """停止对账任务"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[OrderStatusReconciler] 已停止")

    async def _run_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"[OrderStatusReconciler] 对账失败: {e}", exc_info=True)

    async def tick(self) -> List[Order]:
        """执行一轮对账

        Returns:
            本轮进入终态的订单
        """
        transitioned: List[Order] = []

        for user_id in self.order_repository.user_ids():
            pending = [o for o in self.order_repository.list(user_id) if o.status == OrderStatus.PENDING]
            if not pending:
                continue

            try:
                observations = await asyncio.to_thread(self.source.observe, user_id, pending)
            except Exception as e:
                logger.warning(f"[OrderStatusReconciler] 获取订单状态失败: user={user_id} - {e}")
                continue

            for observation in observations:
                order = self._apply(user_id, observation)
                if order is None:
                    continue
                transitioned.append(order)
                logger.info(f"[OrderStatusReconciler] 订单 {order.order_id} -> {order.status.value} "
                            f"(user={user_id}, filled={order.filled_quantity}/{order.quantity})")
                try:
                    await self.publisher.publish_topic(TOPIC_ORDER_UPDATE, order.to_dict())
                except Exception as e:
                    logger.error(f"[OrderStatusReconciler] 推送 order_update 失败: {e}")

        return transitioned

    def _apply(self, user_id: str, observation: StatusObservation) -> Optional[Order]:
        """写回终态；订单在此期间已被撤销等情况返回 None"""
        changed = []

        def _mutate(order: Order):
            if order.status != OrderStatus.PENDING:
                return
            order.apply_fill(observation.filled_quantity, observation.average_price, observation.status)
            changed.append(True)

        try:
            order = self.order_repository.find_and_update(user_id, observation.order_id, _mutate)
        except OrderNotFoundError:
            return None
        return order if changed else None
