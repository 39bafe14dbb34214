"""组合查询服务（只读）"""
import asyncio
from typing import Any, Dict, List, Optional

from copytrade.clients.upstox_rest import UpstoxRestClient
from copytrade.core.errors import OrderError, UpstreamError, UpstreamErrorKind
from copytrade.core.models import Principal
from copytrade.core.repositories import OrderRepository
from copytrade.utils.helpers import now_iso, retry_on_exception, safe_float
from copytrade.utils.logger import get_logger

logger = get_logger('portfolio')

RETRYABLE_KINDS = (UpstreamErrorKind.RATE_LIMITED, UpstreamErrorKind.TIMEOUT)


def _is_retryable(error: Exception) -> bool:
    return isinstance(error, UpstreamError) and error.kind in RETRYABLE_KINDS


def map_holding(holding: Dict[str, Any]) -> Dict[str, Any]:
    """将长期持仓转换为持仓视图"""
    return {
        'instrument_key': holding.get('instrument_token'),
        'trading_symbol': holding.get('trading_symbol') or holding.get('tradingsymbol'),
        'quantity': holding.get('quantity'),
        'average_price': holding.get('average_price'),
        'last_price': holding.get('last_price'),
        'close_price': holding.get('close_price'),
        'pnl': holding.get('pnl'),
        'day_change': holding.get('day_change'),
        'day_change_percentage': holding.get('day_change_percentage'),
        'product': holding.get('product'),
        'exchange': holding.get('exchange'),
    }


def summarize_funds(funds: Dict[str, Any]) -> Dict[str, float]:
    """由资金保证金数据计算组合概览（使用 equity 段）"""
    equity = funds.get('equity') or {}
    used = safe_float(equity.get('used_margin'))
    available = safe_float(equity.get('available_margin'))
    unrealised = safe_float(equity.get('unrealised_pnl'))
    return {
        'total_value': used + available,
        'day_pnl': unrealised,
        'total_pnl': unrealised,
        'available_margin': available,
        'used_margin': used,
    }


class PortfolioService:
    """组合查询服务

    职责：
    - 持仓、资金概览、订单簿、最新价查询
    - 限流/超时自动重试（指数退避），其他错误直接抛出
    - 订单簿查询失败时回退到本地订单簿
    """

    def __init__(self, client: UpstoxRestClient, order_repository: OrderRepository,
                 max_retries: int = 3, retry_delay: float = 0.5):
        self.client = client
        self.order_repository = order_repository
        self._retry = retry_on_exception(
            max_retries=max_retries,
            delay=retry_delay,
            exceptions=(UpstreamError,),
            should_retry=_is_retryable,
        )

    async def _call(self, func, *args):
        try:
            return await asyncio.to_thread(self._retry(func), *args)
        except UpstreamError as e:
            raise OrderError.from_upstream(e) from e

    async def get_positions(self, principal: Principal) -> List[Dict[str, Any]]:
        holdings = await self._call(self.client.get_holdings, principal.access_credential)
        return [map_holding(h) for h in holdings]

    async def get_portfolio(self, principal: Principal) -> Dict[str, float]:
        funds = await self._call(self.client.get_funds_and_margin, principal.access_credential)
        return summarize_funds(funds)

    async def get_orders(self, principal: Principal) -> Dict[str, Any]:
        """查询订单簿

        Returns:
            {'orders': [...], 'source': 'upstream' | 'local'}
        """
        try:
            orders = await self._call(self.client.list_orders, principal.access_credential)
            return {'orders': orders, 'source': 'upstream'}
        except OrderError as e:
            logger.warning(f"[PortfolioService] 券商订单簿查询失败，使用本地订单: "
                           f"user={principal.user_id} - {e.message}")
        local = self.order_repository.list(principal.user_id)
        return {'orders': [o.to_dict() for o in local], 'source': 'local'}

    async def get_market_data(self, principal: Principal, instrument_key: str) -> Dict[str, Any]:
        quote = await self._call(self.client.get_ltp, principal.access_credential, instrument_key)
        last_price: Optional[float] = None
        if quote.get('last_price') is not None:
            last_price = safe_float(quote.get('last_price'))
        return {
            'instrument_key': instrument_key,
            'last_price': last_price,
            'timestamp': now_iso(),
        }
