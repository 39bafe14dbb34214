"""数据访问层 (Repository)

提供统一的数据 CRUD 接口，与业务逻辑解耦。
"""

from .account_repository import ChildAccountRepository, InMemoryChildAccountRepository
from .order_repository import InMemoryOrderRepository, OrderRepository

__all__ = [
    'ChildAccountRepository',
    'InMemoryChildAccountRepository',
    'OrderRepository',
    'InMemoryOrderRepository',
]
