"""统一配置加载器"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from copytrade.constants import (
    DEFAULT_COMPLETION_PROBABILITY,
    DEFAULT_FANOUT_CONCURRENCY,
    DEFAULT_RECONCILE_INTERVAL,
    DEFAULT_TAG_PREFIX,
    DEFAULT_VALIDITY,
)
from copytrade.clients.upstox_rest import DEFAULT_BASE_URL, DEFAULT_ORDER_BASE_URL, DEFAULT_TIMEOUT


logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")


class BrokerConfig(BaseModel):
    """券商 REST 配置"""
    base_url: str = DEFAULT_BASE_URL
    order_base_url: str = DEFAULT_ORDER_BASE_URL
    timeout: int = DEFAULT_TIMEOUT


class ReplicationConfig(BaseModel):
    """订单复制配置"""
    tag_prefix: str = DEFAULT_TAG_PREFIX
    max_concurrency: int = Field(default=DEFAULT_FANOUT_CONCURRENCY, ge=1)
    default_validity: str = DEFAULT_VALIDITY
    default_slice: bool = False


class ReconcileConfig(BaseModel):
    """订单状态对账配置"""
    enabled: bool = True
    mode: str = Field(default="simulated", pattern="^(simulated|upstream)$")
    interval_seconds: float = Field(default=DEFAULT_RECONCILE_INTERVAL, gt=0)
    completion_probability: float = Field(default=DEFAULT_COMPLETION_PROBABILITY, ge=0.0, le=1.0)


class PortfolioConfig(BaseModel):
    """只读查询重试配置"""
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=0.5, ge=0.0)


class Settings(BaseSettings):
    """应用设置"""
    app_name: str = "Copy Trading Backend"
    debug: bool = False

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    log_level: Optional[str] = None
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


_config_cache: Optional[Dict[str, Any]] = None
_settings_cache: Optional[Settings] = None


def load_yaml_config() -> Dict[str, Any]:
    """加载YAML配置文件（不存在时使用默认值）"""
    global _config_cache
    if _config_cache is not None:
        return _config_cache

    config_path = BASE_DIR / "config.yaml"
    if not config_path.exists():
        logger.warning(f"配置文件不存在，使用默认配置: {config_path}")
        _config_cache = {}
        return _config_cache

    with open(config_path, "r", encoding="utf-8") as f:
        _config_cache = yaml.safe_load(f) or {}

    return _config_cache


def reset_config_cache() -> None:
    """清空配置缓存（测试用）"""
    global _config_cache, _settings_cache
    _config_cache = None
    _settings_cache = None


def get_settings() -> Settings:
    """获取应用设置"""
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def get_config(section: Optional[str] = None) -> Any:
    """获取配置

    Args:
        section: 配置节名称，如 'broker', 'replication' 等。为 None 时返回全部配置。

    Returns:
        配置字典或指定节的配置
    """
    config = load_yaml_config()
    if section is None:
        return config
    return config.get(section) or {}


def get_broker_config() -> BrokerConfig:
    """获取券商配置"""
    return BrokerConfig(**get_config("broker"))


def get_replication_config() -> ReplicationConfig:
    """获取复制配置"""
    return ReplicationConfig(**get_config("replication"))


def get_reconcile_config() -> ReconcileConfig:
    """获取对账配置"""
    return ReconcileConfig(**get_config("reconcile"))


def get_portfolio_config() -> PortfolioConfig:
    """获取只读查询配置"""
    return PortfolioConfig(**get_config("portfolio"))
