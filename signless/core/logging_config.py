"""
Structured logging configuration for the Signless relay service using structlog.

This module provides centralized logging configuration with:
- JSON structured logging for production
- Console-friendly logging for development
- Component-specific log levels (CORE, KEYS, CHAIN, RELAY, API)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.processors import JSONRenderer, TimeStamper
from structlog.stdlib import add_log_level, filter_by_level


class UvicornJSONFormatter(logging.Formatter):
    """
    JSON formatter for uvicorn logs.

    Keeps uvicorn output in the same shape as structlog output when LOG_JSON=true.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()

        try:
            message = record.getMessage()
        except Exception:
            message = str(record.msg) if hasattr(record, 'msg') else ""

        log_data = {
            "timestamp": timestamp,
            "level": record.levelname.lower() if record.levelname else "info",
            "logger": "core",
            "caller": f"{record.filename}:{record.lineno}",
            "event": message,
        }

        # uvicorn.access args: client_addr, method, path, http_version, status_code
        if record.name == "uvicorn.access" and isinstance(record.args, tuple) and len(record.args) >= 5:
            try:
                log_data["client_addr"] = str(record.args[0])
                log_data["method"] = str(record.args[1])
                log_data["endpoint"] = str(record.args[2])
                log_data["status_code"] = int(record.args[4])
                log_data["event"] = f"{log_data['method']} {log_data['endpoint']} - {log_data['status_code']}"
            except (IndexError, ValueError, TypeError):
                pass

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data = {k: v for k, v in log_data.items() if v != ""}
        return json.dumps(log_data)


class SignlessLogConfig:
    """
    Centralized logging configuration.

    Supports component-specific logging levels and both JSON and console output formats.
    """

    # Component hierarchy mapping for log level inheritance
    COMPONENT_HIERARCHY = {
        "CORE": ["uvicorn", "fastapi", "asyncio", "sqlalchemy", "httpcore"],
        "KEYS": ["delegate_key", "key_vault"],
        "CHAIN": ["web3", "chain_client", "delegate_registry"],
        "RELAY": ["httpx", "relay_client", "relay_dispatcher", "relay_status_poller"],
        "API": ["signless", "pipeline"],
    }

    def __init__(self):
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_json = os.getenv("LOG_JSON", "true").lower() == "true"
        self.log_is_prod = os.getenv("LOG_IS_PROD", "false").lower() == "true"

        self.component_levels = {
            component: os.getenv(f"LOG_LEVEL_{component}", self.log_level).upper()
            for component in self.COMPONENT_HIERARCHY
        }

        self._configure_structlog()
        self._configure_stdlib_logging()

    def _configure_structlog(self):
        """Configure structlog with appropriate processors."""
        processors = [
            add_log_level,
            TimeStamper(fmt="iso", utc=True),
            filter_by_level,
            self._ensure_event_field,
            self._add_logger_name,
        ]

        if self.log_json:
            processors.append(JSONRenderer())
        else:
            processors.append(structlog.dev.ConsoleRenderer(colors=not self.log_is_prod))

        structlog.configure_once(
            processors=processors,
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self):
        """Configure standard library logging to work with structlog."""
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.log_level))

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        # structlog renders the message, stdlib only writes it out
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, self.log_level))
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(console_handler)

        for component, level in self.component_levels.items():
            logging.getLogger(component.lower()).setLevel(getattr(logging, level))
            for lib_name in self.COMPONENT_HIERARCHY.get(component, []):
                logging.getLogger(lib_name).setLevel(getattr(logging, level))

    @staticmethod
    def _add_logger_name(logger, name, event_dict):
        """Add logger name to event dict."""
        if "component" in event_dict:
            event_dict["logger"] = event_dict.pop("component").lower()
            return event_dict

        logger_name_lower = name.lower()
        for component, libs in SignlessLogConfig.COMPONENT_HIERARCHY.items():
            if logger_name_lower == component.lower() or any(lib in logger_name_lower for lib in libs):
                event_dict["logger"] = component.lower()
                return event_dict

        event_dict["logger"] = logger_name_lower
        return event_dict

    @staticmethod
    def _ensure_event_field(logger, name, event_dict):
        """Ensure event field is populated (required for all logs)."""
        if not event_dict.get("event"):
            if event_dict.get("message"):
                event_dict["event"] = str(event_dict["message"])
            elif event_dict.get("msg"):
                event_dict["event"] = str(event_dict["msg"])
            else:
                event_dict["event"] = "[no message]"
        return event_dict

    def get_logger(self, name: str) -> structlog.stdlib.BoundLogger:
        return structlog.get_logger(name)


# Global configuration instance
_log_config: Optional[SignlessLogConfig] = None


def configure_logging() -> SignlessLogConfig:
    """
    Configure logging for the entire application.

    This should be called once at application startup; later calls are no-ops.
    """
    global _log_config
    if _log_config is None:
        _log_config = SignlessLogConfig()
    return _log_config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger for the given name.

    Args:
        name: Logger name (typically __name__ or component name)

    Returns:
        Configured structlog logger
    """
    if _log_config is None:
        configure_logging()
    return _log_config.get_logger(name)


def get_component_logger(component: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for a specific component.

    Args:
        component: Component name (CORE, KEYS, CHAIN, RELAY, API)

    Returns:
        Configured logger with component context
    """
    logger = get_logger(component.lower())
    return logger.bind(component=component.upper())


def get_core_logger() -> structlog.stdlib.BoundLogger:
    """Get logger for core infrastructure components."""
    return get_component_logger("CORE")


def get_keys_logger() -> structlog.stdlib.BoundLogger:
    """Get logger for delegate key storage."""
    return get_component_logger("KEYS")


def get_chain_logger() -> structlog.stdlib.BoundLogger:
    """Get logger for on-chain reads."""
    return get_component_logger("CHAIN")


def get_relay_logger() -> structlog.stdlib.BoundLogger:
    """Get logger for relay submission and status polling."""
    return get_component_logger("RELAY")


def get_api_logger() -> structlog.stdlib.BoundLogger:
    """Get logger for API endpoint components."""
    return get_component_logger("API")


def get_uvicorn_log_config() -> Optional[Dict[str, Any]]:
    """
    Get uvicorn logging configuration dictionary.

    Returns:
        Dictionary with uvicorn logging configuration, or None to use uvicorn defaults
    """
    if _log_config is None:
        configure_logging()

    if not _log_config.log_json:
        return None

    log_level = _log_config.component_levels.get("CORE", _log_config.log_level)
    formatter = {
        "()": "signless.core.logging_config.UvicornJSONFormatter",
        "fmt": "%(asctime)s",
        "datefmt": "%Y-%m-%dT%H:%M:%S",
    }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter, "access": formatter},
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "formatter": "access",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": log_level, "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": log_level, "propagate": False},
            "uvicorn.access": {"handlers": ["access"], "level": log_level, "propagate": False},
        },
    }
