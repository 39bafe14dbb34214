"""交易 API 路由"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_principal, require_parent
from app.models.schemas import (
    AddChildAccountRequest,
    ChildAccountResponse,
    ChildAccountsResponse,
    MarketDataResponse,
    MessageResponse,
    PortfolioResponse,
)
from app.services.container import ServiceContainer, get_container
from copytrade.core.models import ChildCandidate, Principal


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trading", tags=["trading"])


@router.get("/positions")
async def get_positions(
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    positions = await container.portfolio_service.get_positions(principal)
    return {"success": True, "positions": positions}


@router.get("/orders")
async def get_orders(
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await container.portfolio_service.get_orders(principal)
    return {"success": True, **result}


@router.post("/orders")
async def place_order(
    payload: Dict[str, Any] = Body(...),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    result = await container.replication_engine.place_order(principal, payload)
    message = "Order placed successfully"
    if principal.is_parent:
        message = "Order placed and copied to child accounts"
    return {"success": True, "message": message, **result.to_dict()}


@router.delete("/orders/{order_id}")
async def cancel_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    order = await container.replication_engine.cancel_order(principal, order_id)
    return {
        "success": True,
        "message": "Order cancelled successfully",
        "order": order.to_dict() if order else None,
    }


@router.get("/portfolio", response_model=PortfolioResponse)
async def get_portfolio(
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    portfolio = await container.portfolio_service.get_portfolio(principal)
    return PortfolioResponse(portfolio=portfolio)


@router.get("/market-data/{instrument_key}", response_model=MarketDataResponse)
async def get_market_data(
    instrument_key: str,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
):
    data = await container.portfolio_service.get_market_data(principal, instrument_key)
    return MarketDataResponse(data=data)


@router.get("/child-accounts", response_model=ChildAccountsResponse)
async def get_child_accounts(
    principal: Principal = Depends(require_parent),
    container: ServiceContainer = Depends(get_container),
):
    children = container.account_registry.get_children(principal.user_id)
    return ChildAccountsResponse(children=[link.to_dict() for link in children])


@router.post("/child-accounts", response_model=ChildAccountResponse)
async def add_child_account(
    request: AddChildAccountRequest,
    principal: Principal = Depends(require_parent),
    container: ServiceContainer = Depends(get_container),
):
    candidate = ChildCandidate(
        user_id=request.user_id,
        access_credential=request.access_token,
        display_name=request.display_name,
        email=request.email,
    )
    link = await container.account_registry.upsert_child(principal.user_id, candidate)
    return ChildAccountResponse(child=link.to_dict())


@router.delete("/child-accounts/{child_user_id}", response_model=MessageResponse)
async def remove_child_account(
    child_user_id: str,
    principal: Principal = Depends(require_parent),
    container: ServiceContainer = Depends(get_container),
):
    container.account_registry.remove_child(principal.user_id, child_user_id)
    return MessageResponse(message="Child account removed successfully")
