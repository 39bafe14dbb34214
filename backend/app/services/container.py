"""服务容器：组装券商客户端、仓库、注册表、复制引擎和对账循环"""
import logging
import threading
from typing import Dict, Optional

from app.core.config import (
    get_broker_config,
    get_portfolio_config,
    get_reconcile_config,
    get_replication_config,
    ReconcileConfig,
)
from app.core.events import EventBus
from copytrade.clients import UpstoxRestClient
from copytrade.core.models import Principal
from copytrade.core.repositories import (
    ChildAccountRepository,
    InMemoryChildAccountRepository,
    InMemoryOrderRepository,
    OrderRepository,
)
from copytrade.services import AccountRegistry, PortfolioService, ReplicationEngine
from copytrade.sync import (
    OrderStatusReconciler,
    OrderStatusSource,
    SimulatedStatusSource,
    UpstreamStatusSource,
)


logger = logging.getLogger(__name__)


class ServiceContainer:
    """进程内唯一的服务组装点

    所有组件在这里显式注入依赖，便于测试替换券商客户端和仓库。
    """

    def __init__(
        self,
        client: UpstoxRestClient,
        event_bus: Optional[EventBus] = None,
        order_repository: Optional[OrderRepository] = None,
        account_repository: Optional[ChildAccountRepository] = None,
        reconcile_config: Optional[ReconcileConfig] = None,
        status_source: Optional[OrderStatusSource] = None,
    ):
        replication = get_replication_config()
        portfolio = get_portfolio_config()
        self.reconcile_config = reconcile_config or get_reconcile_config()

        self.client = client
        self.event_bus = event_bus or EventBus()
        self.order_repository = order_repository or InMemoryOrderRepository()
        self.account_repository = account_repository or InMemoryChildAccountRepository()

        self.account_registry = AccountRegistry(self.account_repository, self.client)
        self.replication_engine = ReplicationEngine(
            gateway=self.client,
            order_repository=self.order_repository,
            account_registry=self.account_registry,
            publisher=self.event_bus,
            tag_prefix=replication.tag_prefix,
            max_concurrency=replication.max_concurrency,
            default_validity=replication.default_validity,
            default_slice=replication.default_slice,
        )
        self.portfolio_service = PortfolioService(
            self.client,
            self.order_repository,
            max_retries=portfolio.max_retries,
            retry_delay=portfolio.retry_delay,
        )

        self._credentials: Dict[str, str] = {}
        self._credentials_lock = threading.Lock()

        self.reconciler = OrderStatusReconciler(
            order_repository=self.order_repository,
            publisher=self.event_bus,
            source=status_source or self._build_status_source(),
            interval=self.reconcile_config.interval_seconds,
        )

    def _build_status_source(self) -> OrderStatusSource:
        if self.reconcile_config.mode == "upstream":
            return UpstreamStatusSource(self.client, self.lookup_credential)
        return SimulatedStatusSource(self.reconcile_config.completion_probability)

    def remember_principal(self, principal: Principal) -> None:
        """记录最近一次请求使用的凭证（供 upstream 对账使用）"""
        with self._credentials_lock:
            self._credentials[principal.user_id] = principal.access_credential

    def lookup_credential(self, user_id: str) -> Optional[str]:
        with self._credentials_lock:
            credential = self._credentials.get(user_id)
        return credential or self.account_registry.find_credential(user_id)

    def start(self) -> None:
        """启动后台任务（需在事件循环中调用）"""
        if self.reconcile_config.enabled:
            self.reconciler.start()
        else:
            logger.info("订单状态对账已禁用")

    async def shutdown(self) -> None:
        await self.reconciler.stop()
        self.client.close()


_container: Optional[ServiceContainer] = None
_container_lock = threading.Lock()


def build_container() -> ServiceContainer:
    """按配置创建服务容器"""
    broker = get_broker_config()
    client = UpstoxRestClient({'broker': broker.model_dump()})
    return ServiceContainer(client)


def get_container() -> ServiceContainer:
    """获取服务容器（首次调用时创建）"""
    global _container
    with _container_lock:
        if _container is None:
            _container = build_container()
        return _container


def set_container(container: Optional[ServiceContainer]) -> None:
    """替换服务容器（测试用）"""
    global _container
    with _container_lock:
        _container = container
