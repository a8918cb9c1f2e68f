"""
Logging for the Bazel language client.

Provides component-tagged, structured logging of session lifecycle and
traffic. Module code logs through logging.getLogger(__name__); lifecycle
events go through the `logger` instance below so they carry a component tag
and structured fields.

Logs go to stderr (stdout may be the editor's protocol channel) or, when a
log directory is configured, to date-stamped files per level:
  logs/YYYY-MM-DD/debug.log
  logs/YYYY-MM-DD/info.log
  logs/YYYY-MM-DD/warning.log
  logs/YYYY-MM-DD/error.log
"""

import logging
import json
import sys
import time
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone

ROOT_LOGGER = "bazel_lsp"


class ComponentFilter(logging.Filter):
    """Give records from plain module loggers a component tag."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            parts = record.name.split(".")
            record.component = parts[-1].upper() if len(parts) > 1 else "CLIENT"
        return True


class ClientLogger:
    """Centralized logger for session lifecycle and routing decisions."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self.logger = logging.getLogger(ROOT_LOGGER)
            self.json_mode = False
            self.started = time.time()
            self.log_dir = None
            self._initialized = True

    def _get_default_log_dir(self) -> Path:
        """Get the default log directory path with today's date."""
        today = datetime.now().strftime("%Y-%m-%d")
        return Path("logs") / today

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[str] = None,
        json_mode: bool = False,
        to_files: bool = False,
    ):
        """
        Configure logging output.

        Args:
            level: DEBUG, INFO, WARNING, ERROR (minimum level to log)
            log_dir: Directory for log files (default: logs/YYYY-MM-DD/)
            json_mode: Use JSON format for structured parsing
            to_files: Write per-level files instead of stderr
        """
        self.json_mode = json_mode
        self.logger.handlers.clear()
        self.logger.setLevel(logging.DEBUG)

        if json_mode:
            formatter = JsonFormatter()
        else:
            formatter = logging.Formatter(
                '%(asctime)s [%(component)-9s] %(message)s',
                datefmt='%H:%M:%S'
            )

        min_level = getattr(logging, level.upper(), logging.INFO)

        if not (to_files or log_dir):
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(min_level)
            handler.setFormatter(formatter)
            handler.addFilter(ComponentFilter())
            self.logger.addHandler(handler)
            return

        self.log_dir = Path(log_dir) if log_dir else self._get_default_log_dir()
        self.log_dir.mkdir(parents=True, exist_ok=True)

        log_levels = [
            (logging.DEBUG, 'debug.log'),
            (logging.INFO, 'info.log'),
            (logging.WARNING, 'warning.log'),
            (logging.ERROR, 'error.log'),
        ]

        for log_level, filename in log_levels:
            if log_level >= min_level:
                handler = logging.FileHandler(self.log_dir / filename, mode='a', encoding='utf-8')
                handler.setLevel(log_level)
                handler.setFormatter(formatter)
                handler.addFilter(ComponentFilter())
                # Only log the exact level (not higher levels)
                handler.addFilter(lambda record, level=log_level: record.levelno == level)
                self.logger.addHandler(handler)

    def get_log_directory(self) -> Optional[Path]:
        """Get the current log directory path."""
        return self.log_dir

    def _log(self, level: str, component: str, msg: str, **data):
        """Core logging with structured data."""
        extra = {'component': component, **data}
        getattr(self.logger, level)(msg, extra=extra)

    # === SESSION LIFECYCLE ===

    def session_state(self, session: str, old: str, new: str):
        self._log('info', 'SESSION', f"{session}: {old} -> {new}",
                  session=session, old_state=old, new_state=new)

    def session_started(self, session: str, pid: int, capabilities: dict):
        self._log('info', 'SESSION', f"{session}: server running (pid {pid})",
                  session=session, pid=pid)
        self._log('debug', 'SESSION', f"{session}: server capabilities {capabilities}",
                  session=session)

    def session_stopped(self, session: str, cancelled: int, forced: bool):
        how = "forced" if forced else "clean"
        self._log('info', 'SESSION', f"{session}: stopped ({how}, {cancelled} request(s) cancelled)",
                  session=session, cancelled=cancelled, forced=forced)

    def shutdown_timeout(self, session: str, timeout: float):
        self._log('warning', 'SESSION', f"{session}: no shutdown response within {timeout}s, terminating",
                  session=session, timeout=timeout)

    # === ROUTING ===

    def document_rejected(self, session: str, uri: str, reason: str):
        self._log('debug', 'ROUTER', f"{session}: rejected {uri} ({reason})",
                  session=session, uri=uri, reason=reason)

    # === SERVER OUTPUT ===

    def server_log(self, session: str, level: str, message: str):
        self._log(level, 'SERVER', f"{session}: {message}", session=session)

    # === ERRORS & WARNINGS ===

    def error(self, component: str, message: str, exception: Optional[Exception] = None):
        import traceback

        error_details = message
        if exception:
            # Get full traceback
            tb_str = ''.join(traceback.format_exception(type(exception), exception, exception.__traceback__))
            error_details = f"{message}\n{tb_str}"

        self._log('error', component.upper(), f"ERROR: {error_details}",
                  error=str(exception) if exception else message)

    def warning(self, component: str, message: str):
        self._log('warning', component.upper(), f"WARNING: {message}")


class JsonFormatter(logging.Formatter):
    """Minimal JSON formatter for machine parsing."""

    _RESERVED = {
        'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
        'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
        'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
        'thread', 'threadName', 'processName', 'process', 'message',
        'component', 'asctime', 'taskName',
    }

    def format(self, record: logging.LogRecord) -> str:
        data = {
            'time': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'component': getattr(record, 'component', 'CLIENT'),
            'message': record.getMessage(),
        }
        # Add extra fields from record
        for k, v in record.__dict__.items():
            if k not in self._RESERVED:
                data[k] = v
        return json.dumps(data, default=str)


# Global instance
logger = ClientLogger()
