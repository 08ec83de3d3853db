"""配置常量模块 -- 可通过环境变量覆盖

包含数据目录、SQLite 路径、KV 存储后端、SSE 心跳间隔等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("REVIEWGEN_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径（KV 存储）"""
    return os.environ.get(
        "REVIEWGEN_DB_PATH",
        str(_get_base_dir() / "sqlite" / "reviewgen.db"),
    )


def get_kv_backend() -> str:
    """获取 KV 存储后端：sqlite（默认）/ memory"""
    return os.environ.get("REVIEWGEN_KV_BACKEND", "sqlite").lower()


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("REVIEWGEN_SSE_HEARTBEAT_INTERVAL", "15")
)

# 指标持久化使用的 KV key
METRICS_STORE_KEY = "reviewgen:metrics"
COST_STORE_KEY = "reviewgen:cost"


def get_reviews_rate_limit() -> int:
    """/api/reviews 每客户端每分钟请求上限，0 表示不限流"""
    return int(os.environ.get("REVIEWGEN_REVIEWS_RATE_LIMIT", "60"))
