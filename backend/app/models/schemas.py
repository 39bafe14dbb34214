"""API 请求/响应模型"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AddChildAccountRequest(BaseModel):
    """添加子账户请求"""
    user_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    email: Optional[str] = None


class ErrorResponse(BaseModel):
    """错误响应"""
    success: bool = False
    error: str
    code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class MessageResponse(BaseModel):
    """仅含提示信息的响应"""
    success: bool = True
    message: str


class ChildAccount(BaseModel):
    """子账户视图（不含凭证）"""
    child_user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    connected_at: str
    last_sync: str


class ChildAccountsResponse(BaseModel):
    """子账户列表响应"""
    success: bool = True
    children: List[ChildAccount]


class ChildAccountResponse(BaseModel):
    """添加子账户响应"""
    success: bool = True
    child: ChildAccount


class PortfolioSummary(BaseModel):
    """组合概览"""
    total_value: float
    day_pnl: float
    total_pnl: float
    available_margin: float
    used_margin: float


class PortfolioResponse(BaseModel):
    """组合概览响应"""
    success: bool = True
    portfolio: PortfolioSummary


class MarketData(BaseModel):
    """最新价"""
    instrument_key: str
    last_price: Optional[float] = None
    timestamp: str


class MarketDataResponse(BaseModel):
    """最新价响应"""
    success: bool = True
    data: MarketData
