"""Upstox REST API客户端"""
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from copytrade.core.errors import UpstreamError, UpstreamErrorKind
from copytrade.core.models import Profile
from copytrade.utils.helpers import mask_credential, safe_float, safe_int
from copytrade.utils.logger import get_logger

logger = get_logger('clients.upstox')

DEFAULT_BASE_URL = "https://api.upstox.com/v2"
DEFAULT_ORDER_BASE_URL = "https://api-hft.upstox.com/v3"
DEFAULT_TIMEOUT = 30

# 券商返回的令牌失效/无效错误码
AUTH_ERROR_CODES = {'UDAPI100050', 'invalid_grant', 'invalid_token'}

# Upstox 订单状态 → 本地状态
UPSTOX_STATUS_MAP = {
    'complete': 'complete',
    'cancelled': 'cancelled',
    'rejected': 'rejected',
}


def extract_error_message(body: Any, default: str = "Upstream request failed") -> str:
    """从错误响应体中提取最具体的错误信息

    优先级: errors[0].message > message > error > default
    """
    if isinstance(body, dict):
        errors = body.get('errors')
        if isinstance(errors, list):
            for item in errors:
                if isinstance(item, dict) and item.get('message'):
                    return str(item['message'])
        if body.get('message'):
            return str(body['message'])
        error = body.get('error')
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and error.get('message'):
            return str(error['message'])
    elif isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return default


def _error_codes(body: Any) -> List[str]:
    codes = []
    if isinstance(body, dict):
        for item in body.get('errors') or []:
            if isinstance(item, dict):
                code = item.get('errorCode') or item.get('error_code')
                if code:
                    codes.append(str(code))
        if isinstance(body.get('error'), str):
            codes.append(body['error'])
    return codes


def classify_error(http_status: Optional[int], body: Any) -> UpstreamErrorKind:
    """根据 HTTP 状态码和响应体归类错误"""
    if http_status in (401, 403):
        return UpstreamErrorKind.AUTH_REJECTED
    if any(code in AUTH_ERROR_CODES for code in _error_codes(body)):
        return UpstreamErrorKind.AUTH_REJECTED
    if http_status == 429:
        return UpstreamErrorKind.RATE_LIMITED
    if http_status in (400, 422):
        return UpstreamErrorKind.VALIDATION
    return UpstreamErrorKind.UNKNOWN


def normalize_order(raw: Dict[str, Any]) -> Dict[str, Any]:
    """将 Upstox 订单簿中的一条订单转换为本地字段名"""
    upstream_status = str(raw.get('status') or '').lower()
    quantity = safe_int(raw.get('quantity'))
    filled = safe_int(raw.get('filled_quantity'))
    return {
        'order_id': str(raw.get('order_id') or ''),
        'instrument_id': raw.get('instrument_token'),
        'trading_symbol': raw.get('trading_symbol') or raw.get('tradingsymbol'),
        'quantity': quantity,
        'price': safe_float(raw.get('price')),
        'order_type': raw.get('order_type'),
        'transaction_type': raw.get('transaction_type'),
        'product': raw.get('product'),
        'validity': raw.get('validity'),
        'status': UPSTOX_STATUS_MAP.get(upstream_status, 'pending'),
        'upstream_status': upstream_status,
        'status_message': raw.get('status_message'),
        'filled_quantity': filled,
        'pending_quantity': safe_int(raw.get('pending_quantity'), max(quantity - filled, 0)),
        'average_price': safe_float(raw.get('average_price')),
        'trigger_price': safe_float(raw.get('trigger_price')),
        'disclosed_quantity': safe_int(raw.get('disclosed_quantity')),
        'is_amo': bool(raw.get('is_amo', False)),
        'tag': raw.get('tag'),
        'exchange': raw.get('exchange'),
        'exchange_order_id': raw.get('exchange_order_id'),
        'order_timestamp': raw.get('order_timestamp'),
        'exchange_timestamp': raw.get('exchange_timestamp'),
    }


class UpstoxRestClient:
    """Upstox REST API 客户端

    只负责网络调用和错误归一化，不做重试（重试策略由调用方决定）。
    所有失败统一抛出 UpstreamError。
    """

    def __init__(self, config: Dict):
        """初始化

        Args:
            config: 配置字典，读取 config['broker']
        """
        broker = config.get('broker', {}) if config else {}
        self.base_url = broker.get('base_url', DEFAULT_BASE_URL).rstrip('/')
        self.order_base_url = broker.get('order_base_url', DEFAULT_ORDER_BASE_URL).rstrip('/')
        self.timeout = broker.get('timeout', DEFAULT_TIMEOUT)

        # 创建Session以复用连接池
        self.session = requests.Session()
        retry_strategy = Retry(
            total=0,
            connect=0,
            read=0,
            redirect=0,
            status=0,
            backoff_factor=0
        )
        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=10,
            pool_maxsize=20
        )
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def close(self):
        """关闭连接池"""
        self.session.close()

    def _get_headers(self, credential: str) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {credential}',
            'Accept': 'application/json',
        }

    def _request(self, method: str, url: str, credential: str,
                 params: Optional[Dict[str, Any]] = None,
                 json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """发送请求并归一化错误

        Returns:
            解析后的 JSON 响应体

        Raises:
            UpstreamError: 超时、网络错误、非 2xx 响应或响应体 status=error
        """
        headers = self._get_headers(credential)
        if json_body is not None:
            headers['Content-Type'] = 'application/json'

        try:
            response = self.session.request(
                method, url, params=params, json=json_body, headers=headers, timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.warning(f"[Upstox] 请求超时: {method} {url} token={mask_credential(credential)}")
            raise UpstreamError(UpstreamErrorKind.TIMEOUT, f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            logger.warning(f"[Upstox] 网络错误: {method} {url} - {e}")
            raise UpstreamError(UpstreamErrorKind.UNKNOWN, f"Network error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.status_code >= 400 or (isinstance(body, dict) and body.get('status') == 'error'):
            kind = classify_error(response.status_code, body)
            message = extract_error_message(body)
            logger.warning(f"[Upstox] 请求失败: {method} {url} status={response.status_code} "
                           f"kind={kind.value} message={message}")
            raise UpstreamError(kind, message, http_status=response.status_code, raw_body=body)

        if not isinstance(body, dict):
            raise UpstreamError(
                UpstreamErrorKind.UNKNOWN, "Unexpected non-JSON response",
                http_status=response.status_code, raw_body=body,
            )
        return body

    def place_order(self, credential: str, order: Dict[str, Any]) -> List[str]:
        """下单（V3 接口）

        Args:
            credential: 访问令牌
            order: 下单请求体，字段见 OrderRequest.to_broker_payload

        Returns:
            券商订单号列表（开启 slice 时可能有多个），可能为空
        """
        url = f"{self.order_base_url}/order/place"
        body = self._request('POST', url, credential, json_body=order)
        data = body.get('data') or {}
        order_ids = data.get('order_ids')
        if order_ids is None and data.get('order_id'):
            order_ids = [data['order_id']]
        return [str(oid) for oid in (order_ids or []) if oid]

    def cancel_order(self, credential: str, order_id: str) -> Dict[str, Any]:
        """撤单"""
        url = f"{self.base_url}/order/cancel"
        body = self._request('DELETE', url, credential, params={'order_id': order_id})
        return body.get('data') or {}

    def get_profile(self, credential: str) -> Profile:
        """获取用户资料（也用于校验令牌是否有效）"""
        url = f"{self.base_url}/user/profile"
        body = self._request('GET', url, credential)
        return Profile.from_upstox(body.get('data') or {})

    def list_orders(self, credential: str) -> List[Dict[str, Any]]:
        """获取当日订单簿"""
        url = f"{self.base_url}/order/retrieve-all"
        body = self._request('GET', url, credential)
        return [normalize_order(raw) for raw in body.get('data') or []]

    def get_holdings(self, credential: str) -> List[Dict[str, Any]]:
        """获取长期持仓"""
        url = f"{self.base_url}/portfolio/long-term-holdings"
        body = self._request('GET', url, credential)
        return list(body.get('data') or [])

    def get_funds_and_margin(self, credential: str) -> Dict[str, Any]:
        """获取资金和保证金"""
        url = f"{self.base_url}/user/get-funds-and-margin"
        body = self._request('GET', url, credential)
        return body.get('data') or {}

    def get_ltp(self, credential: str, instrument_key: str) -> Dict[str, Any]:
        """获取最新成交价

        Returns:
            该合约的行情字典，找不到时为空字典
        """
        url = f"{self.base_url}/market-quote/ltp"
        body = self._request('GET', url, credential, params={'instrument_key': instrument_key})
        data = body.get('data') or {}
        if instrument_key in data:
            return data[instrument_key]
        # 返回的 key 形如 NSE_EQ:RELIANCE，与请求的 NSE_EQ|INE002A01018 不同
        for quote in data.values():
            if isinstance(quote, dict) and quote.get('instrument_token') == instrument_key:
                return quote
        return next(iter(data.values()), {}) if len(data) == 1 else {}
