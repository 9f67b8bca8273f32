"""
Centralized logging configuration for Keyholder Tracker.
Provides component-specific loggers with separate log files.
"""

import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

from ..config import get_config


DETAILED_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - "
    "%(funcName)s() - %(message)s"
)
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class ComponentLogger:
    """Manages component-specific logging with separate files."""

    _loggers: Dict[str, logging.Logger] = {}
    _initialized = False
    _log_dir: Optional[Path] = None
    _to_file = True
    _unified_handler: Optional[logging.Handler] = None

    # Component definitions with their log levels
    COMPONENTS = {
        "api": {"level": logging.INFO, "file": "api.log"},
        "database": {"level": logging.INFO, "file": "database.log"},
        "services": {"level": logging.INFO, "file": "services.log"},
        "events": {"level": logging.INFO, "file": "events.log"},
        "auth": {"level": logging.INFO, "file": "auth.log"},
        "websocket": {"level": logging.INFO, "file": "websocket.log"},
        "main": {"level": logging.INFO, "file": "main.log"},
        "error": {"level": logging.ERROR, "file": "errors.log"},  # Centralized error log
    }

    @classmethod
    def initialize(cls, log_dir: Optional[str] = None, debug: Optional[bool] = None) -> None:
        """
        Initialize the logging system with component-specific loggers.

        Args:
            log_dir: Directory for log files. Defaults to config.app.log_dir
            debug: Enable debug logging for all components. Defaults to config.server.debug
        """
        if cls._initialized:
            return

        config = get_config()
        if debug is None:
            debug = config.server.debug
        cls._to_file = config.app.log_to_file

        if cls._to_file:
            base_dir = Path(log_dir) if log_dir else Path(config.app.log_dir)
            # One subdirectory per process start
            cls._log_dir = base_dir / datetime.now().strftime("%Y%m%d_%H%M%S")
            cls._log_dir.mkdir(parents=True, exist_ok=True)

            cls._unified_handler = logging.handlers.RotatingFileHandler(
                cls._log_dir / "unified.log",
                maxBytes=20 * 1024 * 1024,  # 20MB
                backupCount=3,
                encoding="utf-8",
            )
            cls._unified_handler.setLevel(logging.DEBUG if debug else logging.INFO)
            cls._unified_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))

        for component_name, component_config in cls.COMPONENTS.items():
            level = logging.DEBUG if debug else component_config["level"]
            cls._build_logger(component_name, level, component_config["file"])

        # Mark as initialized before logging to avoid recursion
        cls._initialized = True

        main_logger = cls._loggers["main"]
        main_logger.info("Keyholder Tracker logging initialized")
        main_logger.info(f"Log directory: {cls._log_dir}")
        main_logger.info(f"Debug mode: {debug}")

    @classmethod
    def _build_logger(cls, component: str, level: int, filename: str) -> logging.Logger:
        logger = logging.getLogger(f"keyholder.{component}")

        # Clear existing handlers
        logger.handlers.clear()
        logger.propagate = False
        logger.setLevel(level)

        if cls._to_file and cls._log_dir is not None:
            file_handler = logging.handlers.RotatingFileHandler(
                cls._log_dir / filename,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
            logger.addHandler(file_handler)
            if cls._unified_handler is not None:
                logger.addHandler(cls._unified_handler)

        # Console handler for errors, or everything noteworthy without files
        console_level = logging.ERROR if cls._to_file else logging.WARNING
        if component in ("error", "main") or not cls._to_file:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(console_level)
            console_handler.setFormatter(logging.Formatter(SIMPLE_FORMAT, datefmt="%H:%M:%S"))
            logger.addHandler(console_handler)

        cls._loggers[component] = logger
        return logger

    @classmethod
    def get_logger(cls, component: str) -> logging.Logger:
        """
        Get a logger for a specific component.

        Args:
            component: Component name (api, database, services, events, auth, ...)

        Returns:
            Logger instance for the component
        """
        if not cls._initialized:
            cls.initialize()

        if component not in cls._loggers:
            # Create a new component logger on-demand
            level = logging.DEBUG if get_config().server.debug else logging.INFO
            cls._build_logger(component, level, f"{component}.log")

        return cls._loggers[component]

    @classmethod
    def log_exception(
        cls, component: str, exc: Exception, context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log an exception with context to both component and error logs.

        Args:
            component: Component where the exception occurred
            exc: The exception to log
            context: Additional context information
        """
        component_logger = cls.get_logger(component)
        error_logger = cls.get_logger("error")

        context_str = ""
        if context:
            context_str = " | Context: " + ", ".join(f"{k}={v}" for k, v in context.items())

        component_logger.error(
            f"Exception in {component}: {type(exc).__name__}: {exc}{context_str}",
            exc_info=exc,
        )
        error_logger.error(
            f"[{component}] {type(exc).__name__}: {exc}{context_str}", exc_info=exc
        )

    @classmethod
    def get_log_directory(cls) -> Optional[Path]:
        """Get the current log directory path."""
        return cls._log_dir


# Convenience functions
def get_logger(component: str) -> logging.Logger:
    """Get a logger for a specific component."""
    return ComponentLogger.get_logger(component)


def initialize_logging(log_dir: Optional[str] = None, debug: Optional[bool] = None) -> None:
    """Initialize the logging system."""
    ComponentLogger.initialize(log_dir=log_dir, debug=debug)


def log_exception(component: str, exc: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception with context."""
    ComponentLogger.log_exception(component, exc, context)


def get_log_directory() -> Optional[Path]:
    """Get the current log directory path."""
    return ComponentLogger.get_log_directory()
