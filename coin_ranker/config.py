"""
配置加载
config/config.json 提供基础配置，缺失项使用默认值，
环境变量 COIN_RANKER_<KEY>（可写在项目根目录 .env 中）优先级最高
"""
import json
import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_PREFIX = "COIN_RANKER_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "binance_api_url": "https://api.binance.com",
    "request_timeout": 30,
    "retry_attempts": 3,
    "retry_delay": 1,
    "quote_asset": "USDT",
    "cache_freshness_seconds": 300,
    "max_concurrent_requests": 50,
    "query_timeout": 60,
    "rsi_period": 14,
    "reliable_rsi_period": 6,
    "min_volume": 1_000_000,
    "asset_image_host": "https://assets.binance.com/asset/public/i30",
    "stablecoins": ["USDT", "FDUSD", "USDC", "DAI", "BUSD"],
    "reliable_limit": 100,
    "cache_backend": "memory",
    "mongodb_uri": "mongodb://localhost:27017",
    "mongodb_database": "coin_ranker",
}


def _cast(raw: str, default: Any) -> Any:
    """按默认值的类型转换环境变量"""
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, list):
        return [item.strip() for item in raw.split(",") if item.strip()]
    return raw


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    for key, default in DEFAULT_CONFIG.items():
        raw = os.getenv(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            config[key] = _cast(raw, default)
        except ValueError:
            logger.warning(f"⚠️ 环境变量 {ENV_PREFIX + key.upper()}={raw!r} 无法解析，保留 {config[key]!r}")
    return config


def load_config(config_path: str = None) -> Dict[str, Any]:
    """加载配置文件

    Args:
        config_path: 配置文件路径，默认 <项目根目录>/config/config.json

    Returns:
        合并默认值与环境变量后的配置字典
    """
    load_dotenv(os.path.join(PROJECT_ROOT, ".env"))
    if config_path is None:
        config_path = os.path.join(PROJECT_ROOT, "config", "config.json")

    config: Dict[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"❌ 加载配置文件失败: {e}，使用默认配置")
            config = {}

        for key, value in DEFAULT_CONFIG.items():
            if key not in config:
                logger.warning(f"配置文件缺少 {key}，使用默认值 {value}")
    merged = {**DEFAULT_CONFIG, **config}
    return _apply_env_overrides(merged)


# 全局配置
_config = load_config()


def get_config() -> Dict[str, Any]:
    return _config
