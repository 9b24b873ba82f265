"""
日志配置模块 - 使用 structlog 提供结构化日志
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, WrappedLogger


def _format_exception(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """将异常对象压缩为单行 "类型: 消息" """
    exc_info = event_dict.pop("exc_info", None)
    if exc_info:
        if isinstance(exc_info, BaseException):
            event_dict["exception"] = f"{type(exc_info).__name__}: {exc_info}"
        elif exc_info is True:
            import traceback

            event_dict["exception"] = traceback.format_exc()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    stream: TextIO | None = None,
) -> None:
    """
    配置结构化日志

    参数:
        log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        json_format: 是否使用 JSON 格式输出（以服务方式运行时推荐）
        stream: 输出流，默认 stderr，避免与 CLI 的标准输出混在一起
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _format_exception,
    ]

    if json_format:
        processors = shared + [
            structlog.stdlib.add_logger_name,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors = shared + [
            structlog.dev.ConsoleRenderer(
                colors=(stream or sys.stderr).isatty(),
                sort_keys=False,
                pad_level=False,
            ),
        ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """
    获取结构化日志记录器

    参数:
        name: 日志记录器名称，通常为 __name__

    示例:
        >>> from shape_sync.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("batch_flushed", mutations=2)
        2026-01-01T10:30:00Z [info] batch_flushed mutations=2
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    绑定全局上下文字段到所有日志记录

    示例:
        >>> bind_context(table="items")
        >>> logger.info("stream_opened")  # 自动包含 table
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """清除全局上下文字段"""
    structlog.contextvars.clear_contextvars()
