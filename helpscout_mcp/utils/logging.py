"""
Structured logging configuration for the Help Scout MCP server.
Implements consistent JSON logging with per-tool-call correlation.
"""

import logging
import sys
import uuid
from typing import Any, Dict, Optional

import orjson
import structlog


def _orjson_serializer(obj: Any, **kwargs: Any) -> str:
    return orjson.dumps(obj, default=kwargs.get("default")).decode("utf-8")


def configure_logging(
    service_name: str = "helpscout-mcp-server",
    log_level: str = "INFO",
    enable_json: bool = True
) -> None:
    """
    Configure structured logging for the MCP server.

    Log records go to stderr; stdout is left alone because stdio transports
    use it for protocol frames.

    Args:
        service_name: Name of the service for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: Whether to use JSON output (True) or console output (False)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True
    )

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        # request_id and tool name are bound per call by the dispatcher
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if enable_json:
        final_processor = structlog.processors.JSONRenderer(serializer=_orjson_serializer)
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name. If None, uses the calling module's name.

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_tool_call(tool_name: str, request_id: Optional[str] = None) -> str:
    """Bind a correlation id for one tool call and return it."""
    request_id = request_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id, tool=tool_name)
    return request_id


def unbind_tool_call() -> None:
    structlog.contextvars.unbind_contextvars("request_id", "tool")


def log_external_api_call(
    service: str,
    endpoint: str,
    method: str = "GET",
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    logger: Optional[structlog.stdlib.BoundLogger] = None
) -> None:
    """Log external API calls with consistent format."""
    if logger is None:
        logger = get_logger("external_api")

    logger.debug(
        f"External API call to {service}",
        extra={
            "data": {
                "service": service,
                "endpoint": endpoint,
                "method": method,
                "status_code": status_code,
                "duration_ms": duration_ms,
            }
        }
    )


def log_config_state(
    component: str,
    details: Dict[str, Any],
    logger: Optional[structlog.stdlib.BoundLogger] = None
) -> None:
    """Log the effective configuration of a component at startup."""
    if logger is None:
        logger = get_logger("config")

    logger.info(
        f"Configuration loaded: {component}",
        extra={
            "data": {
                "component": component,
                **details
            }
        }
    )
