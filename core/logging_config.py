"""
日志配置：structlog 负责渲染，标准库 logging（uvicorn、celery、sqlalchemy）桥接到同一条处理链
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter

from core.config import settings


# 支付相关字段只保留前后缀，避免签名、密钥写进日志
_SENSITIVE_KEYS = frozenset({
    "authorization",
    "secret",
    "signature",
    "stripe_signature",
    "x_payload_digest",
    "client_secret",
    "token",
    "access_token",
    "api_key",
})

_NOISY_LOGGERS = ("stripe", "httpx", "sqlalchemy.engine", "celery.worker.strategy")

_configured = False


def _mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 8:
        return "***"
    return f"{text[:4]}***{text[-2:]}"


def redact_sensitive(_logger, _method, event_dict):
    for key in list(event_dict):
        if key.lower() in _SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = _mask(event_dict[key])
    return event_dict


def add_service_context(_logger, _method, event_dict):
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def _json_dumps(obj, default=None, **kwargs):
    # structlog 会传入 default/sort_keys
    return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)


def get_renderer() -> Any:
    """本地调试用彩色控制台，其余环境输出 JSON 行"""
    if settings.DEBUG:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer(serializer=_json_dumps)


def _root_level() -> int:
    if settings.DEBUG:
        return logging.DEBUG
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(force: bool = False) -> None:
    """重复调用是安全的；API 进程和 celery worker 都在导入时完成配置"""
    global _configured
    if _configured and not force:
        return

    pre_chain: List[Any] = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service_context,
        redact_sensitive,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_root_level())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
