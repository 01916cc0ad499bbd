"""
Logger configuration module for CCR Sync.

Configures logging to:
1. Output to console (existing behavior)
2. Write to daily rotating log files in logs/ folder
3. Capture session logs to shared_data for an operator view
"""

import logging
import os
import re
from datetime import datetime

from runtime.paths import get_log_file_path, get_logs_dir
from time_utils import get_config_tz


SESSION_LOG_LIMIT = 1000
_COMPONENT_PREFIX = re.compile(r"^([A-Z][A-Za-z ]{1,40}): ")


def _split_component(message):
    """Split a `Component: text` message into (component, text)."""
    match = _COMPONENT_PREFIX.match(message)
    if not match:
        return None, message
    return match.group(1), message[match.end():]


class SessionLogHandler(logging.Handler):
    """
    Keep the latest sync log records in shared_data for an operator view.

    Each entry carries the component prefix of the message (e.g. "Edit
    pipeline", "Capacity") so the view can filter by stage.
    """

    def __init__(self, shared_data, *, timezone=None, limit=SESSION_LOG_LIMIT):
        super().__init__()
        self.shared_data = shared_data
        self.timezone = timezone
        self.limit = int(limit)

    def emit(self, record):
        try:
            component, text = _split_component(record.getMessage())
            log_entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=self.timezone).strftime("%H:%M:%S"),
                "level": record.levelname,
                "component": component,
                "message": text,
            }

            with self.shared_data["log_lock"]:
                self.shared_data["session_logs"].append(log_entry)
                if len(self.shared_data["session_logs"]) > self.limit:
                    self.shared_data["session_logs"] = self.shared_data["session_logs"][-self.limit:]
        except Exception:
            self.handleError(record)


class DateRoutedFileHandler(logging.Handler):
    """File handler that routes records to YYYY-MM-DD files by record timestamp."""

    def __init__(self, logs_dir, timezone, shared_data, *, encoding="utf-8"):
        super().__init__()
        self.logs_dir = logs_dir
        self.shared_data = shared_data
        self.encoding = encoding
        self.terminator = "\n"
        self.timezone = timezone

        self._current_date = None
        self._current_path = None
        self._stream = None

    def _build_log_path(self, date_str):
        return get_log_file_path(self.logs_dir, date_str)

    def _update_shared_log_path(self, path):
        lock = self.shared_data.get("log_lock")
        if lock is None:
            self.shared_data["log_file_path"] = path
            return
        with lock:
            self.shared_data["log_file_path"] = path

    def _open_for_date(self, date_str):
        if date_str == self._current_date and self._stream is not None:
            return

        self._close_stream()
        path = self._build_log_path(date_str)
        self._stream = open(path, "a", encoding=self.encoding)
        self._current_date = date_str
        self._current_path = path
        self._update_shared_log_path(path)

    def _close_stream(self):
        if self._stream is None:
            return
        try:
            self._stream.close()
        finally:
            self._stream = None

    def emit(self, record):
        try:
            record_dt = datetime.fromtimestamp(record.created, tz=self.timezone)
            date_str = record_dt.strftime("%Y-%m-%d")
            self._open_for_date(date_str)
            self._stream.write(self.format(record) + self.terminator)
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self):
        try:
            self._close_stream()
        finally:
            super().close()


def setup_logging(config, shared_data):
    """
    Set up logging with console, file, and session handlers.
    
    Args:
        config: Configuration dictionary with LOG_LEVEL and TIMEZONE_NAME
        shared_data: Shared data dictionary to store session logs
        
    Returns:
        logging.Logger: The configured root logger
    """
    log_level = config.get("LOG_LEVEL", logging.INFO)
    log_format = '%(asctime)s - %(levelname)s - %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'
    
    # Create logs directory if it doesn't exist
    logs_dir = get_logs_dir(__file__)
    os.makedirs(logs_dir, exist_ok=True)
    
    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    
    # Remove any existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    
    # Create formatter
    formatter = logging.Formatter(log_format, datefmt=date_format)
    
    # 1. Console Handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
    
    # 2. File Handler - Routes each record by its configured-timezone date
    tz = get_config_tz(config)
    file_handler = DateRoutedFileHandler(
        logs_dir,
        tz,
        shared_data,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)
    
    # 3. Session Handler - Captures to shared_data for the operator view
    session_handler = SessionLogHandler(shared_data, timezone=tz)
    session_handler.setLevel(log_level)
    session_handler.setFormatter(formatter)
    root_logger.addHandler(session_handler)
    
    # Connection pool chatter from requests
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    
    return root_logger
