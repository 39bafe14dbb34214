"""券商网关客户端"""

from .upstox_rest import UpstoxRestClient, classify_error, extract_error_message

__all__ = [
    'UpstoxRestClient',
    'classify_error',
    'extract_error_message',
]
