"""
Structured logging setup using structlog.

This module configures structured logging for the chat client with JSON output
at INFO level and human-readable console output otherwise.
"""

import logging
import sys
from typing import Any, Optional

import structlog


def setup_logging(level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Configure stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    # httpx logs every request at INFO, we already do that in log_request
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            # JSON at INFO, pretty print when debugging
            structlog.processors.JSONRenderer() if level.upper() == "INFO" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (optional)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_request(method: str, path: str, status_code: Optional[int], duration: float, **kwargs) -> None:
    """
    Log an outgoing HTTP request with structured data.

    Args:
        method: HTTP method
        path: Request path
        status_code: Response status code (None when no response arrived)
        duration: Request duration in seconds
        **kwargs: Additional context
    """
    logger = get_logger("http")
    logger.info(
        "HTTP request",
        method=method,
        path=path,
        status_code=status_code,
        duration=duration,
        **kwargs
    )


def log_chat_event(event_type: str, conversation_id: Optional[int] = None, **kwargs) -> None:
    """
    Log a chat synchronization event with structured data.

    Args:
        event_type: Type of chat event
        conversation_id: Conversation the event refers to (optional)
        **kwargs: Additional context
    """
    logger = get_logger("chat")
    logger.info(
        f"Chat {event_type}",
        event_type=event_type,
        conversation_id=conversation_id,
        **kwargs
    )


def log_poll_event(poller: str, success: bool, next_delay: Optional[float] = None, **kwargs) -> None:
    """
    Log the outcome of a single poll tick.

    Args:
        poller: Poller name
        success: Whether the tick succeeded
        next_delay: Seconds until the next tick (optional)
        **kwargs: Additional context
    """
    logger = get_logger("poll")
    logger.debug(
        f"Poll {poller}",
        poller=poller,
        success=success,
        next_delay=next_delay,
        **kwargs
    )


def log_auth_event(event_type: str, username: Optional[str] = None, **kwargs) -> None:
    """
    Log an authentication state change.

    Args:
        event_type: Type of auth event
        username: Username involved (optional)
        **kwargs: Additional context
    """
    logger = get_logger("auth")
    logger.info(
        f"Auth {event_type}",
        event_type=event_type,
        username=username,
        **kwargs
    )
