"""订单复制引擎

下单流程:
1. 用操作者凭证提交到券商
2. 构造待成交订单并写入订单簿
3. 推送 new_order
4. 若操作者是父账户，并发复制到所有启用中的子账户（每个子账户独立失败）
"""
import asyncio
import itertools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from copytrade.constants import (
    CHILD_TAG_INFIX,
    DEFAULT_FANOUT_CONCURRENCY,
    DEFAULT_TAG_PREFIX,
    DEFAULT_VALIDITY,
    TOPIC_NEW_ORDER,
    TOPIC_ORDER_UPDATE,
)
from copytrade.core.errors import (
    OrderError,
    OrderErrorKind,
    OrderNotFoundError,
    UpstreamError,
    UpstreamErrorKind,
)
from copytrade.core.models import ChildLink, Order, OrderRequest, Principal
from copytrade.core.protocols import BrokerGateway, NotificationPublisher
from copytrade.core.repositories import OrderRepository
from copytrade.services.account_registry import AccountRegistry
from copytrade.utils.helpers import mask_credential
from copytrade.utils.logger import get_logger

logger = get_logger('replication')

NO_ORDER_ID_MESSAGE = "no order id returned"


class ReplicationOutcome(str, Enum):
    """单个子账户的复制结果"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_INACTIVE = "skipped_inactive"


@dataclass
class ChildReplicationResult:
    """子账户复制结果"""
    child_user_id: str
    outcome: ReplicationOutcome
    order_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    deactivated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'child_user_id': self.child_user_id,
            'outcome': self.outcome.value,
            'order_id': self.order_id,
            'error_kind': self.error_kind,
            'error': self.error,
            'deactivated': self.deactivated,
        }


@dataclass
class FanOutSummary:
    """复制汇总"""
    results: List[ChildReplicationResult] = field(default_factory=list)

    def _with(self, outcome: ReplicationOutcome) -> List[str]:
        return [r.child_user_id for r in self.results if r.outcome == outcome]

    @property
    def succeeded(self) -> List[str]:
        return self._with(ReplicationOutcome.SUCCEEDED)

    @property
    def failed(self) -> List[str]:
        return self._with(ReplicationOutcome.FAILED)

    @property
    def skipped(self) -> List[str]:
        return self._with(ReplicationOutcome.SKIPPED_INACTIVE)

    @property
    def deactivated(self) -> List[str]:
        return [r.child_user_id for r in self.results if r.deactivated]

    def get(self, child_user_id: str) -> Optional[ChildReplicationResult]:
        for result in self.results:
            if result.child_user_id == child_user_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': len(self.results),
            'succeeded': self.succeeded,
            'failed': self.failed,
            'skipped_inactive': self.skipped,
            'deactivated': self.deactivated,
            'children': [r.to_dict() for r in self.results],
        }


@dataclass
class PlacementResult:
    """下单结果：父订单 + 复制汇总"""
    order: Order
    fan_out: FanOutSummary = field(default_factory=FanOutSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order': self.order.to_dict(),
            'fan_out': self.fan_out.to_dict(),
        }


class ReplicationEngine:
    """订单复制引擎

    职责：
    - 校验下单请求（校验失败不发起任何券商调用）
    - 提交父订单，失败时整体失败且不落地任何订单
    - 写入订单簿并推送通知
    - 父账户订单复制到子账户：有限并发、互不影响、凭证失效则停用子账户
    - 撤单
    """

    def __init__(
        self,
        gateway: BrokerGateway,
        order_repository: OrderRepository,
        account_registry: AccountRegistry,
        publisher: NotificationPublisher,
        tag_prefix: str = DEFAULT_TAG_PREFIX,
        max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
        default_validity: str = DEFAULT_VALIDITY,
        default_slice: bool = False,
    ):
        """初始化

        Args:
            gateway: 券商网关（阻塞调用，在线程中执行）
            order_repository: 订单仓库
            account_registry: 子账户注册表
            publisher: 通知发布者
            tag_prefix: 未指定 tag 时的前缀
            max_concurrency: 子账户复制并发上限
            default_validity: 未指定 validity 时的默认值
            default_slice: 未指定 slice 时的默认值
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self.gateway = gateway
        self.order_repository = order_repository
        self.account_registry = account_registry
        self.publisher = publisher
        self.tag_prefix = tag_prefix
        self.max_concurrency = max_concurrency
        self.default_validity = default_validity
        self.default_slice = default_slice

        self._tag_seq = itertools.count(1)
        self._tag_lock = threading.Lock()

    def _next_tag(self) -> str:
        """生成每次下单唯一的 tag"""
        with self._tag_lock:
            seq = next(self._tag_seq)
        return f"{self.tag_prefix}_{int(time.time() * 1000)}_{seq}"

    def _build_request(self, request: Union[OrderRequest, Dict[str, Any]]) -> OrderRequest:
        if isinstance(request, OrderRequest):
            return request
        return OrderRequest.from_payload(
            request,
            default_validity=self.default_validity,
            default_slice=self.default_slice,
        )

    async def _publish(self, topic: str, order: Order):
        try:
            await self.publisher.publish_topic(topic, order.to_dict())
        except Exception as e:
            logger.error(f"[ReplicationEngine] 推送 {topic} 失败: order={order.order_id} - {e}")

    async def place_order(self, principal: Principal, request: Union[OrderRequest, Dict[str, Any]]) -> PlacementResult:
        """下单并复制到子账户

        Args:
            principal: 已认证的操作者
            request: 原始请求字典或已校验的 OrderRequest

        Returns:
            PlacementResult，复制失败只体现在 fan_out 中

        Raises:
            OrderError: 校验失败、凭证被拒、券商拒单/超时或未返回订单号
        """
        order_request = self._build_request(request)
        tag = order_request.tag or self._next_tag()
        payload = order_request.to_broker_payload(tag)

        logger.info(f"[ReplicationEngine] 提交订单: user={principal.user_id} role={principal.role.value} "
                    f"{order_request.transaction_type.value} {order_request.quantity} "
                    f"{order_request.instrument_id} @ {order_request.price} tag={tag}")

        try:
            order_ids = await asyncio.to_thread(self.gateway.place_order, principal.access_credential, payload)
        except UpstreamError as e:
            logger.warning(f"[ReplicationEngine] 父订单提交失败: user={principal.user_id} "
                           f"kind={e.kind.value} message={e.message}")
            raise OrderError.from_upstream(e) from e

        if not order_ids:
            logger.warning(f"[ReplicationEngine] 券商未返回订单号: user={principal.user_id} tag={tag}")
            raise OrderError(OrderErrorKind.UPSTREAM_REJECTED, NO_ORDER_ID_MESSAGE)

        order = Order.from_request(order_request, principal.user_id, order_ids, tag)
        self.order_repository.append(principal.user_id, order)
        await self._publish(TOPIC_NEW_ORDER, order)

        fan_out = FanOutSummary()
        if principal.is_parent:
            fan_out = await self._fan_out(principal, order_request, order)
            logger.info(f"[ReplicationEngine] 复制完成: parent_order={order.order_id} "
                        f"成功={len(fan_out.succeeded)} 失败={len(fan_out.failed)} "
                        f"跳过={len(fan_out.skipped)}")

        return PlacementResult(order=order, fan_out=fan_out)

    async def _fan_out(self, principal: Principal, request: OrderRequest, parent_order: Order) -> FanOutSummary:
        """复制到所有启用中的子账户"""
        children = self.account_registry.get_children(principal.user_id)
        if not children:
            return FanOutSummary()

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run(link: ChildLink) -> ChildReplicationResult:
            if not link.is_active:
                return ChildReplicationResult(link.child_user_id, ReplicationOutcome.SKIPPED_INACTIVE)
            async with semaphore:
                return await self._replicate_to_child(principal.user_id, link, request, parent_order)

        results = await asyncio.gather(*(_run(link) for link in children))
        return FanOutSummary(results=list(results))

    async def _replicate_to_child(
        self,
        parent_id: str,
        link: ChildLink,
        request: OrderRequest,
        parent_order: Order,
    ) -> ChildReplicationResult:
        """复制到单个子账户，任何异常都在这里消化"""
        child_id = link.child_user_id
        child_tag = f"{parent_order.tag}{CHILD_TAG_INFIX}{child_id}"

        try:
            order_ids = await asyncio.to_thread(
                self.gateway.place_order, link.access_credential, request.to_broker_payload(child_tag)
            )
        except UpstreamError as e:
            if e.kind == UpstreamErrorKind.AUTH_REJECTED:
                deactivated = self.account_registry.deactivate(parent_id, child_id, link.access_credential)
                logger.warning(f"[ReplicationEngine] 子账户凭证被拒: child={child_id} "
                               f"token={mask_credential(link.access_credential)}")
                return ChildReplicationResult(
                    child_id, ReplicationOutcome.FAILED,
                    error_kind=OrderErrorKind.UNAUTHENTICATED.value, error=e.message, deactivated=deactivated,
                )
            logger.error(f"[ReplicationEngine] 复制到子账户失败: child={child_id} "
                         f"kind={e.kind.value} message={e.message}")
            return ChildReplicationResult(
                child_id, ReplicationOutcome.FAILED,
                error_kind=OrderError.from_upstream(e).kind.value, error=e.message,
            )
        except Exception as e:
            logger.error(f"[ReplicationEngine] 复制到子账户异常: child={child_id} - {e}", exc_info=True)
            return ChildReplicationResult(
                child_id, ReplicationOutcome.FAILED,
                error_kind=OrderErrorKind.UPSTREAM_REJECTED.value, error=str(e),
            )

        if not order_ids:
            logger.warning(f"[ReplicationEngine] 子账户未返回订单号: child={child_id}")
            return ChildReplicationResult(
                child_id, ReplicationOutcome.FAILED,
                error_kind=OrderErrorKind.UPSTREAM_REJECTED.value, error=NO_ORDER_ID_MESSAGE,
            )

        child_order = Order.from_request(
            request, child_id, order_ids, child_tag, parent_order_id=parent_order.order_id
        )
        child_order.created_at = parent_order.created_at
        self.order_repository.append(child_id, child_order)
        self.account_registry.touch(parent_id, child_id)
        await self._publish(TOPIC_NEW_ORDER, child_order)

        logger.info(f"[ReplicationEngine] 已复制到子账户: child={child_id} order={child_order.order_id} "
                    f"parent_order={parent_order.order_id}")
        return ChildReplicationResult(child_id, ReplicationOutcome.SUCCEEDED, order_id=child_order.order_id)

    async def cancel_order(self, principal: Principal, order_id: str) -> Optional[Order]:
        """撤单

        只能撤销自己的订单，使用操作者凭证调用券商撤单。
        本地已是终态的订单直接返回（不调用券商、不推送）；
        本地不存在的订单仍会调用券商撤单，但跳过本地更新。

        Returns:
            更新后的订单，本地不存在时为 None

        Raises:
            OrderError: 券商撤单失败
        """
        existing = self.order_repository.find(principal.user_id, order_id)
        if existing is not None and existing.status.is_terminal:
            logger.info(f"[ReplicationEngine] 订单已是终态，忽略撤单: order={order_id} status={existing.status.value}")
            return existing

        try:
            await asyncio.to_thread(self.gateway.cancel_order, principal.access_credential, order_id)
        except UpstreamError as e:
            logger.warning(f"[ReplicationEngine] 撤单失败: user={principal.user_id} order={order_id} "
                           f"kind={e.kind.value} message={e.message}")
            raise OrderError.from_upstream(e) from e

        if existing is None:
            logger.info(f"[ReplicationEngine] 本地无此订单，跳过状态更新: user={principal.user_id} order={order_id}")
            return None

        changed = []

        def _cancel(order: Order):
            if not order.status.is_terminal:
                order.mark_cancelled()
                changed.append(True)

        try:
            order = self.order_repository.find_and_update(principal.user_id, order_id, _cancel)
        except OrderNotFoundError:
            return None

        if changed:
            logger.info(f"[ReplicationEngine] 订单已撤销: user={principal.user_id} order={order_id}")
            await self._publish(TOPIC_ORDER_UPDATE, order)
        return order
