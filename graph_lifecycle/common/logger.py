import os
from datetime import datetime, timezone
import logging
import sys
import traceback
import json
import contextvars
from typing import Optional, Any, Type

import requests

# ANSI Color codes for terminal output
class Colors:
    RESET = '\033[0m'
    DEBUG = '\033[90m'      # Gray/Dim
    INFO = ''               # No color (default terminal color)
    WARNING = '\033[93m'    # Yellow
    ERROR = '\033[91m'      # Red
    CRITICAL = '\033[95m'   # Bright Magenta

# Unicode symbols for log levels (searchable in production logs)
LOG_SYMBOLS = {
    'DEBUG': '⚪',
    'INFO': '🔵',
    'WARNING': '🟡',
    'ERROR': '🔴',
    'CRITICAL': '🟣'
}

LOG_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL
}

OUTPUT_DIR = os.getenv("OUTPUT_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR", OUTPUT_DIR)
LOG_FORMAT = os.getenv("LOG_FORMAT", "JSON").upper()  # JSON or TEXT
start_time = datetime.now(tz=timezone.utc)
log_filename = os.path.join(LOG_DIR, f"graph_lifecycle_{start_time.strftime('%Y_%m_%d_%H_%M_%S')}.log")

# Context bound to every record emitted inside a LogContext
run_id_var = contextvars.ContextVar('run_id', default='')
stage_var = contextvars.ContextVar('stage', default='')
operation_var = contextvars.ContextVar('operation', default='')

CONTEXT_VARS = (
    ('run_id', run_id_var),
    ('stage', stage_var),
    ('operation', operation_var),
)


class LogContext:
    def __init__(self, run_id: Optional[str] = None,
                 stage: Optional[str] = None,
                 operation: Optional[str] = None) -> None:
        self.run_id: Optional[str] = run_id
        self.stage: Optional[str] = stage
        self.operation: Optional[str] = operation
        self.run_id_token: Optional[contextvars.Token] = None
        self.stage_token: Optional[contextvars.Token] = None
        self.operation_token: Optional[contextvars.Token] = None

    def __enter__(self) -> 'LogContext':
        if self.run_id is not None:
            self.run_id_token = run_id_var.set(self.run_id)
        if self.stage is not None:
            self.stage_token = stage_var.set(self.stage)
        if self.operation is not None:
            self.operation_token = operation_var.set(self.operation)
        return self

    def __exit__(self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[Any]) -> None:
        if self.operation_token is not None:
            operation_var.reset(self.operation_token)
        if self.stage_token is not None:
            stage_var.reset(self.stage_token)
        if self.run_id_token is not None:
            run_id_var.reset(self.run_id_token)


def current_context() -> dict:
    """Return the context variables that are currently set."""
    return {name: var.get() for name, var in CONTEXT_VARS if var.get()}


class TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = current_context()
        context_str = " ".join(f"{name}={value}" for name, value in context.items())
        if context_str:
            context_str = f"[{context_str}] "

        level_name = record.levelname
        color = LOG_COLORS.get(level_name, Colors.RESET)
        symbol = LOG_SYMBOLS.get(level_name, '')
        reset = Colors.RESET

        # pylint: disable=protected-access
        self._style._fmt = f'{color}[%(levelname)s] {symbol} %(asctime)s {context_str}[%(filename)s:%(lineno)d] %(message)s{reset}'

        return super().format(record)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'level': record.levelname,
            'symbol': LOG_SYMBOLS.get(record.levelname, ''),
            'message': record.getMessage(),
            'location': f"{record.filename}:{record.lineno}",
            'timestamp': self.formatTime(record),
        }
        log_data.update(current_context())

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class LifecycleLogger(logging.Logger):
    """Logger that forwards ERROR records to a chat webhook."""

    webhook_url: Optional[str]
    webhook_channel: Optional[str]
    webhook_username: str

    def __init__(self, name: str, level: int = logging.NOTSET) -> None:
        super().__init__(name, level)
        self.webhook_url = os.getenv('ALERT_WEBHOOK_URL')
        self.webhook_channel = os.getenv('ALERT_CHANNEL')
        self.webhook_username = os.getenv("ALERT_USERNAME", "graph-lifecycle")

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        super().error(msg, *args, **kwargs)

        if not self.webhook_url:
            return

        if isinstance(msg, Exception):
            error_message = str(msg)
            stack_trace = ''.join(traceback.format_exception(type(msg), msg, msg.__traceback__))
            if LOG_FORMAT == "JSON":
                value = json.dumps({"error": error_message, "stack_trace": stack_trace, **current_context()})
            else:
                value = f"Error: {error_message}\n\nStack Trace:\n{stack_trace}"
        else:
            value = json.dumps(str(msg)) if LOG_FORMAT == "JSON" else str(msg)

        payload = {
            'channel': self.webhook_channel,
            'username': self.webhook_username,
            "text": "ERROR",
            "attachments": [{
                "color": "#FF0000",
                "fields": [{
                    "title": "Error Log",
                    "value": value,
                    "short": False
                }]
            }]
        }
        try:
            requests.post(
                self.webhook_url,
                data=json.dumps(payload),
                headers={'Content-Type': 'application/json'},
                timeout=10
            )
        except requests.RequestException as e:
            super().error(f"Failed to send webhook notification: {e}")


if os.getenv("ENABLE_WEBHOOK_NOTIFICATION") == '1':
    logging.setLoggerClass(LifecycleLogger)


def get_formatter() -> logging.Formatter:
    if LOG_FORMAT == "JSON":
        return JsonFormatter()
    return TextFormatter()


formatter = get_formatter()

log_level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO"))

# Create a stream handler for writing logs to STDOUT
stream_handler = logging.StreamHandler(sys.stdout)
stream_handler.setFormatter(formatter)

logger = logging.getLogger("graph_lifecycle")
logger.setLevel(log_level)
logger.addHandler(stream_handler)


if os.getenv("ENABLE_FILE_LOGGING"):
    try:
        if not os.path.exists(LOG_DIR):
            os.makedirs(LOG_DIR)
        file_handler = logging.FileHandler(log_filename)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error creating log file. Reason = {e}. Proceeding")
