"""路由依赖：服务容器与请求方身份"""
from typing import Optional

from fastapi import Depends, Header, HTTPException

from app.services.container import ServiceContainer, get_container
from copytrade.core.models import AccountRole, Principal


def get_principal(
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    container: ServiceContainer = Depends(get_container),
) -> Principal:
    """从请求头解析操作者

    Authorization: Bearer <访问令牌>，X-User-Id 缺省时由令牌前缀派生，
    X-User-Role 缺省为 child。
    """
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        role = AccountRole((x_user_role or AccountRole.CHILD.value).lower())
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Invalid role: {x_user_role}")

    principal = Principal(
        user_id=x_user_id or f"user_{token[:8]}",
        access_credential=token,
        role=role,
    )
    container.remember_principal(principal)
    return principal


def require_parent(principal: Principal = Depends(get_principal)) -> Principal:
    """只允许父账户访问"""
    if not principal.is_parent:
        raise HTTPException(status_code=403, detail="Only parent accounts can manage child accounts")
    return principal
