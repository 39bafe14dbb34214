"""辅助函数模块"""
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Optional


def now_iso() -> str:
    """当前 UTC 时间的 ISO 字符串"""
    return datetime.now(timezone.utc).isoformat()


def mask_credential(credential: Optional[str], keep: int = 6) -> str:
    """遮蔽访问令牌，日志中只保留前几位
    
    Args:
        credential: 访问令牌
        keep: 保留的前缀长度
        
    Returns:
        遮蔽后的字符串，如 'eyJ0eX***'
    """
    if not credential:
        return '<none>'
    if len(credential) <= keep:
        return '***'
    return f"{credential[:keep]}***"


def safe_float(value: Any, default: float = 0.0) -> float:
    """安全转换为浮点数
    
    Args:
        value: 待转换的值
        default: 默认值
        
    Returns:
        浮点数
    """
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def safe_int(value: Any, default: int = 0) -> int:
    """安全转换为整数"""
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def retry_on_exception(max_retries: int = 3, delay: float = 1.0, exceptions: tuple = (Exception,),
                       should_retry: Optional[Callable[[Exception], bool]] = None):
    """异常重试装饰器（指数退避）
    
    Args:
        max_retries: 最大尝试次数
        delay: 基础重试延迟（秒），实际延迟为 delay * (2 ** attempt)
        exceptions: 需要重试的异常类型
        should_retry: 可选判定函数，返回 False 时立即抛出
        
    Returns:
        装饰器函数
        
    Note:
        只用于只读查询。下单和撤单不重试，由调用方决定。
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    last_exception = e
                    if attempt < max_retries - 1:
                        time.sleep(delay * (2 ** attempt))
                    continue
            raise last_exception
        return wrapper
    return decorator
