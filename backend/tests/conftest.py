"""测试公共夹具：可编排的假券商网关、记录型通知发布者"""
import itertools
import threading
import time
from typing import Any, Dict, List, Tuple

import pytest

from copytrade.core.models import AccountRole, Principal, Profile
from copytrade.core.repositories import InMemoryChildAccountRepository, InMemoryOrderRepository
from copytrade.services import AccountRegistry, ReplicationEngine


class FakeGateway:
    """假券商网关

    按凭证编排返回值；值为异常实例时抛出。explode=True 时任何调用都判定为测试失败。
    """

    def __init__(self):
        self.calls: List[Tuple[str, str, Any]] = []
        self.place_results: Dict[str, Any] = {}
        self.cancel_results: Dict[str, Any] = {}
        self.profiles: Dict[str, Any] = {}
        self.order_books: Dict[str, Any] = {}
        self.holdings: Dict[str, Any] = {}
        self.funds: Dict[str, Any] = {}
        self.quotes: Dict[str, Any] = {}
        self.explode = False
        self.place_delay = 0.0
        self.closed = False

        self._seq = itertools.count(1)
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def _record(self, method: str, credential: str, arg: Any = None):
        if self.explode:
            raise AssertionError(f"券商网关不应被调用: {method}")
        with self._lock:
            self.calls.append((method, credential, arg))

    @staticmethod
    def _resolve(value: Any):
        if isinstance(value, Exception):
            raise value
        if isinstance(value, list) and value and isinstance(value[0], Exception):
            raise value.pop(0)
        return value

    def calls_for(self, method: str) -> List[Tuple[str, str, Any]]:
        with self._lock:
            return [c for c in self.calls if c[0] == method]

    def place_order(self, credential: str, order: Dict[str, Any]) -> List[str]:
        self._record('place_order', credential, order)
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.place_delay:
                time.sleep(self.place_delay)
            result = self._resolve(self.place_results.get(credential))
            if result is not None:
                return list(result)
            return [f"ORD{next(self._seq):04d}"]
        finally:
            with self._lock:
                self._in_flight -= 1

    def cancel_order(self, credential: str, order_id: str) -> Dict[str, Any]:
        self._record('cancel_order', credential, order_id)
        self._resolve(self.cancel_results.get(credential))
        return {'order_id': order_id}

    def get_profile(self, credential: str) -> Profile:
        self._record('get_profile', credential)
        profile = self._resolve(self.profiles.get(credential))
        return profile if profile is not None else Profile(user_id='')

    def list_orders(self, credential: str) -> List[Dict[str, Any]]:
        self._record('list_orders', credential)
        return self._resolve(self.order_books.get(credential)) or []

    def get_holdings(self, credential: str) -> List[Dict[str, Any]]:
        self._record('get_holdings', credential)
        return self._resolve(self.holdings.get(credential)) or []

    def get_funds_and_margin(self, credential: str) -> Dict[str, Any]:
        self._record('get_funds_and_margin', credential)
        return self._resolve(self.funds.get(credential)) or {}

    def get_ltp(self, credential: str, instrument_key: str) -> Dict[str, Any]:
        self._record('get_ltp', credential, instrument_key)
        return self._resolve(self.quotes.get(instrument_key)) or {}

    def close(self):
        self.closed = True


class RecordingPublisher:
    """记录所有通知的发布者"""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish_topic(self, topic: str, payload: Dict[str, Any]) -> None:
        self.events.append((topic, payload))

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.events]

    def for_topic(self, topic: str) -> List[Dict[str, Any]]:
        return [payload for t, payload in self.events if t == topic]


def order_payload(**overrides: Any) -> Dict[str, Any]:
    """标准下单请求"""
    payload = {
        'instrument_token': 'NSE_EQ|INE002A01018',
        'quantity': 10,
        'price': 2450.5,
        'order_type': 'LIMIT',
        'transaction_type': 'BUY',
        'product': 'D',
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def account_repository() -> InMemoryChildAccountRepository:
    return InMemoryChildAccountRepository()


@pytest.fixture
def registry(account_repository, gateway) -> AccountRegistry:
    return AccountRegistry(account_repository, gateway)


@pytest.fixture
def engine(gateway, order_repository, registry, publisher) -> ReplicationEngine:
    return ReplicationEngine(
        gateway=gateway,
        order_repository=order_repository,
        account_registry=registry,
        publisher=publisher,
    )


@pytest.fixture
def parent() -> Principal:
    return Principal(user_id='P1', access_credential='parent-token-0001', role=AccountRole.PARENT)


@pytest.fixture
def child_principal() -> Principal:
    return Principal(user_id='C9', access_credential='child-token-0009', role=AccountRole.CHILD)