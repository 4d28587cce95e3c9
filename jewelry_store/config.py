"""
配置模块。
从环境变量 (以及项目根目录下的 .env 文件) 读取运行参数，并负责初始化日志。
"""
import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# ==========================================
# 默认常量
# ==========================================

DEFAULT_API_BASE_URL = "http://localhost:5000"
DEFAULT_OVERHEAD_PCT = 0.25     # 材料小计之上的固定管理费比例
DEFAULT_USD_TO_INR = 83.0       # 汇率兜底值
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    api_timeout: float = 10.0
    overhead_pct: float = DEFAULT_OVERHEAD_PCT
    usd_to_inr: float = DEFAULT_USD_TO_INR
    fetch_retries: int = 3
    fetch_backoff: float = 0.5
    log_level: str = "INFO"


def load_settings() -> Settings:
    """读取 .env 与环境变量，返回 Settings。非法数值回退为默认值。"""
    load_dotenv()
    return Settings(
        api_base_url=os.environ.get("STORE_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
        api_timeout=_env_float("STORE_API_TIMEOUT", 10.0),
        overhead_pct=_env_float("STORE_OVERHEAD_PCT", DEFAULT_OVERHEAD_PCT),
        usd_to_inr=_env_float("STORE_USD_TO_INR", DEFAULT_USD_TO_INR),
        fetch_retries=int(_env_float("STORE_FETCH_RETRIES", 3)),
        fetch_backoff=_env_float("STORE_FETCH_BACKOFF", 0.5),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning("环境变量 %s=%r 不是数字，使用默认值 %s", name, raw, default)
        return default
