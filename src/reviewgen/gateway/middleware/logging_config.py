"""structlog 配置模块

REVIEWGEN_LOG_FORMAT=dev（默认）控制台输出，json 为结构化输出；
标准库 logging（uvicorn / httpx / litellm）经 ProcessorFormatter 统一渲染。
Logfire APM 由 LOGFIRE_SEND_TO_LOGFIRE 控制，默认关闭。
"""

import logging
import os

import structlog

# 第三方库 logger 的默认级别
_NOISY_LOGGERS: dict[str, int] = {
    "LiteLLM": logging.WARNING,
    "httpx": logging.WARNING,
}


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog + 标准库 logging

    Args:
        log_format: "dev" / "json"，默认读 REVIEWGEN_LOG_FORMAT
        log_level: 日志级别名称，默认读 REVIEWGEN_LOG_LEVEL（INFO）
    """
    log_format = (log_format or os.environ.get("REVIEWGEN_LOG_FORMAT", "dev")).lower()
    log_level = (log_level or os.environ.get("REVIEWGEN_LOG_LEVEL", "INFO")).upper()
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=shared,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

def setup_logfire() -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE:
    - "true": 启用 Logfire APM（需要 LOGFIRE_TOKEN 与 apm extra）
    - "false" (默认): 仅本地日志
    """
    send_to_logfire = os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower()
    if send_to_logfire != "true":
        return
    try:
        import logfire

        logfire.configure()
        logfire.instrument_fastapi()
        logfire.instrument_httpx()
    except Exception as e:
        # APM 初始化失败不影响服务
        structlog.get_logger().warning(
            "logfire_init_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
