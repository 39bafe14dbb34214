"""统一数据模型

提供订单、账户相关的数据模型，供复制引擎、对账循环和 API 层共用。
"""

from .account_models import (
    AccountRole,
    ChildCandidate,
    ChildLink,
    Principal,
    Profile,
)
from .order_models import (
    Order,
    OrderRequest,
    OrderStatus,
    TransactionType,
)

__all__ = [
    'AccountRole',
    'ChildCandidate',
    'ChildLink',
    'Principal',
    'Profile',
    'Order',
    'OrderRequest',
    'OrderStatus',
    'TransactionType',
]
