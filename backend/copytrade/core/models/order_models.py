"""订单相关数据模型

数据层次结构:
- 父账户订单 (Order, parent_order_id=None)
- 子账户副本 (Order, parent_order_id=父订单 order_id)，两者是独立记录
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from copytrade.core.errors import OrderError, OrderErrorKind


class OrderStatus(str, Enum):
    """本地订单状态"""
    PENDING = "pending"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self != OrderStatus.PENDING


class TransactionType(str, Enum):
    """买卖方向"""
    BUY = "BUY"
    SELL = "SELL"


REQUIRED_FIELDS = ('instrument_id', 'quantity', 'order_type', 'transaction_type', 'product')

# 兼容前端和券商的字段名
_INSTRUMENT_ALIASES = ('instrument_id', 'instrument_token', 'instrument_key')


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be an integer", {'field': name})
    if isinstance(value, float):
        if not value.is_integer():
            raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be an integer", {'field': name})
        return int(value)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be an integer", {'field': name})


def _coerce_float(name: str, value: Any) -> float:
    if _is_blank(value):
        return 0.0
    if isinstance(value, bool):
        raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be a number", {'field': name})
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be a number", {'field': name})
    if not math.isfinite(number):
        raise OrderError(OrderErrorKind.VALIDATION, f"{name} must be a finite number", {'field': name})
    return number


def _coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'y')
    return bool(value)


@dataclass
class OrderRequest:
    """经过校验的下单请求"""
    instrument_id: str
    quantity: int
    order_type: str
    transaction_type: TransactionType
    product: str
    price: float = 0.0
    validity: str = "DAY"
    trigger_price: float = 0.0
    disclosed_quantity: int = 0
    is_amo: bool = False
    slice: bool = False
    tag: Optional[str] = None
    trading_symbol: Optional[str] = None

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        default_validity: str = "DAY",
        default_slice: bool = False,
    ) -> 'OrderRequest':
        """校验并规范化原始请求

        缺少必填字段时抛出 OrderError(VALIDATION)，此时不会发起任何券商调用。
        """
        data = dict(payload or {})
        instrument_id = next((data[k] for k in _INSTRUMENT_ALIASES if not _is_blank(data.get(k))), None)
        data['instrument_id'] = instrument_id

        missing = [name for name in REQUIRED_FIELDS if _is_blank(data.get(name))]
        if missing:
            raise OrderError(
                OrderErrorKind.VALIDATION,
                f"Missing required fields: {', '.join(missing)}",
                {'missing': missing},
            )

        quantity = _coerce_int('quantity', data['quantity'])
        if quantity <= 0:
            raise OrderError(OrderErrorKind.VALIDATION, "quantity must be greater than 0", {'field': 'quantity'})

        side = str(data['transaction_type']).strip().upper()
        if side not in TransactionType.__members__:
            raise OrderError(
                OrderErrorKind.VALIDATION,
                f"transaction_type must be BUY or SELL, got {data['transaction_type']!r}",
                {'field': 'transaction_type'},
            )

        price = _coerce_float('price', data.get('price'))
        if price < 0:
            raise OrderError(OrderErrorKind.VALIDATION, "price must not be negative", {'field': 'price'})

        disclosed = data.get('disclosed_quantity')
        disclosed_quantity = 0 if _is_blank(disclosed) else _coerce_int('disclosed_quantity', disclosed)

        validity = data.get('validity')
        tag = data.get('tag')
        trading_symbol = data.get('trading_symbol')

        return cls(
            instrument_id=str(instrument_id).strip(),
            quantity=quantity,
            order_type=str(data['order_type']).strip().upper(),
            transaction_type=TransactionType(side),
            product=str(data['product']).strip(),
            price=price,
            validity=default_validity if _is_blank(validity) else str(validity).strip().upper(),
            trigger_price=_coerce_float('trigger_price', data.get('trigger_price')),
            disclosed_quantity=disclosed_quantity,
            is_amo=_coerce_bool(data.get('is_amo'), False),
            slice=_coerce_bool(data.get('slice'), default_slice),
            tag=None if _is_blank(tag) else str(tag).strip(),
            trading_symbol=None if _is_blank(trading_symbol) else str(trading_symbol).strip(),
        )

    def to_broker_payload(self, tag: str) -> Dict[str, Any]:
        """转换为券商下单接口的请求体"""
        return {
            'quantity': self.quantity,
            'product': self.product,
            'validity': self.validity,
            'price': self.price,
            'tag': tag,
            'instrument_token': self.instrument_id,
            'order_type': self.order_type,
            'transaction_type': self.transaction_type.value,
            'disclosed_quantity': self.disclosed_quantity,
            'trigger_price': self.trigger_price,
            'is_amo': self.is_amo,
            'slice': self.slice,
        }


def _split_symbol(instrument_id: str) -> str:
    parts = instrument_id.split('|', 1)
    return parts[1] if len(parts) == 2 else instrument_id


def _split_exchange(instrument_id: str) -> str:
    return instrument_id.split('_', 1)[0]


@dataclass
class Order:
    """订单模型

    不变式: filled_quantity + pending_quantity == quantity
    """
    order_id: str
    instrument_id: str
    trading_symbol: str
    quantity: int
    price: float
    order_type: str
    transaction_type: str
    product: str
    validity: str
    owner_user_id: str

    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: int = 0
    pending_quantity: int = 0
    average_price: float = 0.0

    parent_order_id: Optional[str] = None
    upstream_ids: List[str] = field(default_factory=list)
    tag: Optional[str] = None
    exchange: Optional[str] = None
    trigger_price: float = 0.0
    disclosed_quantity: int = 0
    is_amo: bool = False

    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    updated_at: Optional[str] = None

    @classmethod
    def from_request(
        cls,
        request: OrderRequest,
        owner_user_id: str,
        upstream_ids: List[str],
        tag: str,
        parent_order_id: Optional[str] = None,
    ) -> 'Order':
        """由下单请求和券商返回的订单号构造待成交订单"""
        return cls(
            order_id=upstream_ids[0],
            instrument_id=request.instrument_id,
            trading_symbol=request.trading_symbol or _split_symbol(request.instrument_id),
            quantity=request.quantity,
            price=request.price,
            order_type=request.order_type,
            transaction_type=request.transaction_type.value,
            product=request.product,
            validity=request.validity,
            owner_user_id=owner_user_id,
            status=OrderStatus.PENDING,
            filled_quantity=0,
            pending_quantity=request.quantity,
            average_price=0.0,
            parent_order_id=parent_order_id,
            upstream_ids=list(upstream_ids),
            tag=tag,
            exchange=_split_exchange(request.instrument_id),
            trigger_price=request.trigger_price,
            disclosed_quantity=request.disclosed_quantity,
            is_amo=request.is_amo,
        )

    def apply_fill(self, filled_quantity: int, average_price: float, status: OrderStatus):
        """更新成交信息，保持数量不变式"""
        filled = max(0, min(int(filled_quantity), self.quantity))
        self.filled_quantity = filled
        self.pending_quantity = self.quantity - filled
        self.average_price = average_price
        self.status = status
        self.updated_at = datetime.now(timezone.utc).isoformat()

    def mark_cancelled(self):
        """撤单：数量字段保持不变，只改状态"""
        self.status = OrderStatus.CANCELLED
        self.updated_at = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'order_id': self.order_id,
            'instrument_id': self.instrument_id,
            'trading_symbol': self.trading_symbol,
            'quantity': self.quantity,
            'price': self.price,
            'order_type': self.order_type,
            'transaction_type': self.transaction_type,
            'product': self.product,
            'validity': self.validity,
            'status': self.status.value,
            'filled_quantity': self.filled_quantity,
            'pending_quantity': self.pending_quantity,
            'average_price': self.average_price,
            'owner_user_id': self.owner_user_id,
            'parent_order_id': self.parent_order_id,
            'upstream_ids': list(self.upstream_ids),
            'tag': self.tag,
            'exchange': self.exchange,
            'trigger_price': self.trigger_price,
            'disclosed_quantity': self.disclosed_quantity,
            'is_amo': self.is_amo,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Order':
        """从字典创建"""
        return cls(
            order_id=data['order_id'],
            instrument_id=data['instrument_id'],
            trading_symbol=data.get('trading_symbol') or _split_symbol(data['instrument_id']),
            quantity=int(data['quantity']),
            price=float(data.get('price', 0)),
            order_type=data['order_type'],
            transaction_type=data['transaction_type'],
            product=data['product'],
            validity=data.get('validity', 'DAY'),
            owner_user_id=data['owner_user_id'],
            status=OrderStatus(data.get('status', OrderStatus.PENDING.value)),
            filled_quantity=int(data.get('filled_quantity', 0)),
            pending_quantity=int(data.get('pending_quantity', data['quantity'])),
            average_price=float(data.get('average_price', 0)),
            parent_order_id=data.get('parent_order_id'),
            upstream_ids=list(data.get('upstream_ids') or [data['order_id']]),
            tag=data.get('tag'),
            exchange=data.get('exchange'),
            trigger_price=float(data.get('trigger_price', 0)),
            disclosed_quantity=int(data.get('disclosed_quantity', 0)),
            is_amo=bool(data.get('is_amo', False)),
            created_at=data.get('created_at') or datetime.now(timezone.utc).isoformat(),
            updated_at=data.get('updated_at'),
        )
