"""
Logging and step timing for the node bootstrap.
"""
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    thread_id: int
    process_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


@dataclass
class StepMetric:
    """Duration and outcome of one bootstrap step."""
    step: str
    duration_ms: float
    timestamp: str
    success: bool
    error_message: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


@dataclass
class ErrorMetric:
    """A fatal error as reported to the operator."""
    error_type: str
    error_message: str
    step: Optional[str]
    timestamp: str
    stack_trace: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_id=record.thread,
            process_id=record.process,
            extra_data=getattr(record, 'extra_data', None)
        )

        if record.exc_info:
            log_entry.exception_info = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class StepTimer:
    """Measures how long each bootstrap step takes."""

    def __init__(self):
        self.metrics: List[StepMetric] = []
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure_step(self, step: str, extra_data: Optional[Dict[str, Any]] = None):
        """Context manager timing a step; exceptions are recorded and re-raised."""
        start_time = time.monotonic()
        success = True
        error_message = None

        try:
            yield
        except Exception as e:
            success = False
            error_message = str(e)
            raise
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000

            metric = StepMetric(
                step=step,
                duration_ms=duration_ms,
                timestamp=datetime.now().isoformat(),
                success=success,
                error_message=error_message,
                extra_data=extra_data
            )

            with self.lock:
                self.metrics.append(metric)

            self.logger.info(
                f"Step {step} {'completed' if success else 'failed'} in {duration_ms:.0f} ms",
                extra={
                    'extra_data': {
                        'step': step,
                        'duration_ms': duration_ms,
                        'success': success,
                        'error_message': error_message,
                        **(extra_data if extra_data else {})
                    }
                }
            )

    def get_metrics(self, step: Optional[str] = None) -> List[StepMetric]:
        with self.lock:
            metrics = self.metrics.copy()
        if step:
            metrics = [m for m in metrics if m.step == step]
        return metrics


class ErrorTracker:
    """Collects fatal errors for the final report."""

    def __init__(self):
        self.errors: List[ErrorMetric] = []
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def track_error(self, error: Exception, extra_data: Optional[Dict[str, Any]] = None):
        error_metric = ErrorMetric(
            error_type=type(error).__name__,
            error_message=str(error),
            step=getattr(error, 'step', None),
            timestamp=datetime.now().isoformat(),
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            extra_data=extra_data
        )

        with self.lock:
            self.errors.append(error_metric)

        self.logger.error(
            f"{error_metric.error_type}: {error_metric.error_message}",
            extra={
                'extra_data': {
                    'error_type': error_metric.error_type,
                    'step': error_metric.step,
                    **(extra_data if extra_data else {})
                }
            },
            exc_info=(type(error), error, error.__traceback__)
        )

    def get_errors(self, error_type: Optional[str] = None) -> List[ErrorMetric]:
        with self.lock:
            errors = self.errors.copy()
        if error_type:
            errors = [e for e in errors if e.error_type == error_type]
        return errors


class LoggingService:
    """Configures root logging and owns the step timer and error tracker."""

    def __init__(self, config):
        self.config = config
        self.step_timer = StepTimer()
        self.error_tracker = ErrorTracker()
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.debug("Logging service initialized")

    def _setup_logging(self):
        log_dir = Path(self.config.log_file_path).parent
        log_dir.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        json_formatter = JSONFormatter()
        console_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.config.log_file_path,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(json_formatter)
        file_handler.setLevel(log_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(log_level)

        error_log_path = str(Path(self.config.log_file_path).with_suffix('.errors.log'))
        error_handler = logging.handlers.RotatingFileHandler(
            filename=error_log_path,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setFormatter(json_formatter)
        error_handler.setLevel(logging.ERROR)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)
        root_logger.addHandler(error_handler)

    def measure_step(self, step: str, extra_data: Optional[Dict[str, Any]] = None):
        return self.step_timer.measure_step(step, extra_data)

    def track_error(self, error: Exception, extra_data: Optional[Dict[str, Any]] = None):
        self.error_tracker.track_error(error, extra_data)

    def get_step_summary(self) -> Dict[str, Any]:
        """Per-step durations for the final report."""
        return {
            m.step: {'duration_ms': round(m.duration_ms, 1), 'success': m.success}
            for m in self.step_timer.get_metrics()
        }
