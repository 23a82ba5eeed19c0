"""结构化日志配置模块。

使用 structlog 提供结构化日志支持，支持 JSON 和控制台两种输出格式。
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from sniper_engine.config import LogFormat, get_settings


def setup_logging() -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = get_settings()

    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # 共享处理器
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # 控制台格式输出（带颜色）
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。

    Args:
        name: 日志记录器名称。如果为 None，则使用调用模块名。

    Returns:
        结构化日志记录器实例。
    """
    return structlog.get_logger(name)


# 便捷日志函数
def log_risk_check(
    logger: structlog.stdlib.BoundLogger,
    *,
    token: str,
    rule: str,
    passed: bool,
    penalty: int,
    hard_block: bool,
    **kwargs: Any,
) -> None:
    """记录单项风控检查结果。"""
    level = "warning" if hard_block or not passed else "info"
    getattr(logger, level)(
        "risk_check",
        token=token,
        rule=rule,
        passed=passed,
        penalty=penalty,
        hard_block=hard_block,
        **kwargs,
    )


def log_order_execution(
    logger: structlog.stdlib.BoundLogger,
    *,
    token: str,
    side: str,
    status: str,
    signature: str | None = None,
    amount: float | None = None,
    price: float | None = None,
    **kwargs: Any,
) -> None:
    """记录订单执行。"""
    logger.info(
        "order_execution",
        token=token,
        side=side,
        status=status,
        signature=signature,
        amount=amount,
        price=price,
        **kwargs,
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )


def log_emergency_exit(
    logger: structlog.stdlib.BoundLogger,
    *,
    token: str,
    checkpoint: str,
    reason: str,
    **kwargs: Any,
) -> None:
    """记录紧急退出（最高级别，便于告警）。"""
    logger.critical(
        "emergency_exit",
        token=token,
        checkpoint=checkpoint,
        reason=reason,
        **kwargs,
    )


def log_http_retry(
    logger: structlog.stdlib.BoundLogger,
    *,
    url: str,
    attempt: int,
    error: str,
    **kwargs: Any,
) -> None:
    """记录 HTTP 重试。"""
    logger.warning(
        "http_retry",
        url=url,
        attempt=attempt,
        error=error,
        **kwargs,
    )
