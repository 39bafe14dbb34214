"""账户相关数据模型"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from copytrade.utils.helpers import mask_credential


class AccountRole(str, Enum):
    """账户角色"""
    PARENT = "parent"
    CHILD = "child"


@dataclass
class Principal:
    """已认证的操作者（父账户或子账户）"""
    user_id: str
    access_credential: str
    role: AccountRole = AccountRole.CHILD
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_parent(self) -> bool:
        return self.role == AccountRole.PARENT

    def __repr__(self) -> str:
        return (f"Principal(user_id={self.user_id!r}, role={self.role.value}, "
                f"credential={mask_credential(self.access_credential)})")


@dataclass
class Profile:
    """券商返回的用户资料"""
    user_id: str
    user_name: Optional[str] = None
    email: Optional[str] = None
    broker: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_upstox(cls, data: Dict[str, Any]) -> 'Profile':
        """从 Upstox /user/profile 响应的 data 字段创建"""
        return cls(
            user_id=str(data.get('user_id') or ''),
            user_name=data.get('user_name'),
            email=data.get('email'),
            broker=data.get('broker'),
            is_active=bool(data.get('is_active', True)),
        )


@dataclass
class ChildCandidate:
    """待添加的子账户（凭证尚未校验）"""
    user_id: str
    access_credential: str
    display_name: Optional[str] = None
    email: Optional[str] = None


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ChildLink:
    """父账户名下的子账户关联

    is_active 只会因复制时凭证被拒而自动置为 False，
    重新激活只能由父账户重新添加（重新校验）完成。
    """
    child_user_id: str
    access_credential: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True
    connected_at: str = field(default_factory=_utcnow)
    last_sync: str = field(default_factory=_utcnow)

    def to_dict(self, include_credential: bool = False) -> Dict[str, Any]:
        """转换为字典（默认不输出凭证）"""
        data = {
            'child_user_id': self.child_user_id,
            'display_name': self.display_name,
            'email': self.email,
            'is_active': self.is_active,
            'connected_at': self.connected_at,
            'last_sync': self.last_sync,
        }
        if include_credential:
            data['access_credential'] = self.access_credential
        return data

    def __repr__(self) -> str:
        return (f"ChildLink(child_user_id={self.child_user_id!r}, is_active={self.is_active}, "
                f"credential={mask_credential(self.access_credential)})")
