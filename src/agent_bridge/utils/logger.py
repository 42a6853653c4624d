"""
Logging for Agent Bridge: standard logging with JSON files for structured records.

Destinations:
- stderr: colored, human-readable lines
- <log_dir>/conversations.jsonl: INFO and above, one JSON object per record
- <log_dir>/errors.jsonl: ERROR and above
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pythonjsonlogger import json as jsonlogger

from agent_bridge.core.constants import (
    DEFAULT_LOG_DIR,
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    SESSION_ID_LENGTH,
    get_settings,
)

#: (pattern, replacement) pairs applied in order by ``redact``
REDACTION_PATTERNS = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9_-]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\bBasic\s+[A-Za-z0-9+/=]{16,}"), "Basic [REDACTED]"),
    (re.compile(r"\b(password|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]

CONVERSATION_FIELDS = "%(timestamp)s %(levelname)s %(message)s %(session_id)s"
ERROR_FIELDS = "%(timestamp)s %(levelname)s %(name)s %(message)s %(session_id)s"


class ConversationFilter(logging.Filter):
    """Pass INFO and above to the conversation log."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Pass only ERROR and CRITICAL records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """Render ``HH:MM:SS [LEVEL] logger_name - message`` with a colored level."""

    RESET = "\x1b[0m"
    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[38;20m",
        logging.INFO: "\x1b[32;20m",
        logging.WARNING: "\x1b[33;20m",
        logging.ERROR: "\x1b[31;20m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def format(self, record: logging.LogRecord) -> str:
        level = f"[{record.levelname}]"
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            level = f"{color}{level}{self.RESET}"

        line = f"{self.formatTime(record, '%H:%M:%S')} {level} {record.name} - {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _debug_from_env() -> bool:
    return os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")


def _json_file_handler(
    path: Path,
    level: int,
    backup_count: int,
    fields: str,
    record_filter: logging.Filter,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_SIZE,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.addFilter(record_filter)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(
    name: str = "agent-bridge",
    debug: bool | None = None,
    log_dir: Path | None = None,
) -> logging.Logger:
    """
    Configure a logger with a console handler and two rotating JSONL files.

    Calling it again replaces the handlers, so it doubles as reconfiguration.

    Args:
        name: Logger name
        debug: Console at DEBUG instead of INFO (falls back to the DEBUG env var)
        log_dir: Directory for the JSONL files (defaults to <project>/logs)

    Returns:
        The configured logger
    """
    if debug is None:
        debug = _debug_from_env()
    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # handlers do the filtering
    for old in logger.handlers:
        old.close()
    logger.handlers = []

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console)

    logger.addHandler(
        _json_file_handler(
            log_dir / "conversations.jsonl",
            logging.INFO,
            LOG_BACKUP_COUNT_CONVERSATIONS,
            CONVERSATION_FIELDS,
            ConversationFilter(),
        )
    )
    logger.addHandler(
        _json_file_handler(
            log_dir / "errors.jsonl",
            logging.ERROR,
            LOG_BACKUP_COUNT_ERRORS,
            ERROR_FIELDS,
            ErrorFilter(),
        )
    )

    logger.propagate = False
    return logger


def redact(text: str) -> str:
    """Mask emails, card numbers, API keys and credentials in text."""
    for pattern, replacement in REDACTION_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _preview(text: str) -> str:
    preview = redact(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
    return f"{preview}..." if len(text) > LOG_PREVIEW_LENGTH else preview


class BridgeLogger:
    """Thin wrapper over ``logging`` that tags records with the agent session id."""

    def __init__(self, name: str = "agent-bridge", log_dir: Path | None = None):
        self.logger = setup_logging(name, log_dir=log_dir)
        # Placeholder until the agent hands out a real session id
        self.session_id = uuid.uuid4().hex[:SESSION_ID_LENGTH]

    def configure(self, debug: bool | None = None, log_dir: Path | None = None) -> None:
        """Rebuild handlers, e.g. once settings are loaded."""
        self.logger = setup_logging(self.logger.name, debug=debug, log_dir=log_dir)

    def bind_session(self, session_id: str) -> None:
        """Tag subsequent records with the agent's session id."""
        self.session_id = session_id

    def _extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        kwargs.setdefault("session_id", self.session_id)
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._extra(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._extra(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._extra(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._extra(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Invalid configuration must not break logging
            return False

    def log_conversation_turn(
        self,
        user_input: str,
        response: str,
        tool_calls: list[str] | None = None,
        duration_ms: float | None = None,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> None:
        """
        Record one message exchange with the agent.

        Message text is replaced by ``[HIDDEN]`` unless content logging is
        enabled, and is redacted even then. Sizes, tool names, timing and the
        model are always recorded.

        Args:
            user_input: Message sent to the agent
            response: Final answer text
            tool_calls: Tool names seen in status updates, in order
            duration_ms: Wall time of the exchange
            provider_id: Provider the message was routed to
            model_id: Model the message was routed to
        """
        tools = tool_calls or []
        log_content = self._should_log_content()
        shown_input = _preview(user_input) if log_content else "[HIDDEN]"
        shown_response = _preview(response) if log_content else "[HIDDEN]"

        summary = f"User: {shown_input} → Agent: {shown_response}"
        if tools:
            summary += f" [{len(tools)} tools]"
        if duration_ms:
            summary += f" [{duration_ms:.0f}ms]"

        extra: dict[str, Any] = {
            "conversation_turn": True,
            "turn_timestamp": datetime.now(UTC).isoformat(),
            "session_id": self.session_id,
            "chars_input": len(user_input),
            "chars_response": len(response),
            "tools": len(tools),
            "content_logging": log_content,
        }
        if tools:
            extra["tool_names"] = tools
        if duration_ms is not None:
            extra["ms"] = int(duration_ms)
        if provider_id:
            extra["provider"] = provider_id
        if model_id:
            extra["model"] = model_id

        self.logger.info(summary, extra=extra)


logger = BridgeLogger()
