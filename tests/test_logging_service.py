"""
Tests for logging, step timing and error tracking.
"""
import json
import logging
import os
import tempfile
import unittest

from node_bootstrap.models.config import Config
from node_bootstrap.models.errors import RetrievalExhausted
from node_bootstrap.services.logging_service import (
    ErrorTracker, JSONFormatter, LoggingService, StepTimer
)


class TestJSONFormatter(unittest.TestCase):
    """Test JSON formatter for structured logging."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def test_format_basic_log_record(self):
        logger = logging.getLogger('test')
        record = logger.makeRecord(
            name='node_bootstrap.test', level=logging.INFO, fn='test_file.py',
            lno=42, msg='Serving %s', args=('bundle',), exc_info=None
        )

        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['level'], 'INFO')
        self.assertEqual(log_data['logger_name'], 'node_bootstrap.test')
        self.assertEqual(log_data['message'], 'Serving bundle')
        self.assertEqual(log_data['line_number'], 42)
        self.assertIsNone(log_data['exception_info'])

    def test_format_with_extra_data_and_exception(self):
        logger = logging.getLogger('test')
        try:
            raise ValueError("bad keystore")
        except ValueError:
            import sys
            exc_info = sys.exc_info()
        record = logger.makeRecord(
            name='test', level=logging.ERROR, fn='f.py', lno=1,
            msg='failed', args=(), exc_info=exc_info
        )
        record.extra_data = {'step': 'install'}

        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['extra_data'], {'step': 'install'})
        self.assertEqual(log_data['exception_info']['type'], 'ValueError')
        self.assertEqual(log_data['exception_info']['message'], 'bad keystore')


class TestStepTimer(unittest.TestCase):
    """Test step timing."""

    def test_successful_step(self):
        timer = StepTimer()

        with timer.measure_step("generate", {'backend': 'cryptography'}):
            pass

        metrics = timer.get_metrics()
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].step, "generate")
        self.assertTrue(metrics[0].success)
        self.assertGreaterEqual(metrics[0].duration_ms, 0)
        self.assertEqual(metrics[0].extra_data, {'backend': 'cryptography'})

    def test_failed_step_is_recorded_and_reraised(self):
        timer = StepTimer()

        with self.assertRaises(RuntimeError):
            with timer.measure_step("serve"):
                raise RuntimeError("port in use")

        metric = timer.get_metrics("serve")[0]
        self.assertFalse(metric.success)
        self.assertEqual(metric.error_message, "port in use")
        self.assertEqual(timer.get_metrics("install"), [])


class TestErrorTracker(unittest.TestCase):
    """Test error tracking."""

    def test_track_error_keeps_step(self):
        tracker = ErrorTracker()
        error = RetrievalExhausted("http://10.0.0.10:8000/b.p12", 50, "Connection error")

        with self.assertLogs('node_bootstrap.services.logging_service', level='ERROR'):
            tracker.track_error(error, {'node_name': 'data-1'})

        errors = tracker.get_errors()
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].error_type, "RetrievalExhausted")
        self.assertEqual(errors[0].step, "retrieve")
        self.assertEqual(errors[0].extra_data, {'node_name': 'data-1'})
        self.assertEqual(tracker.get_errors("ValueError"), [])


class TestLoggingService(unittest.TestCase):
    """Test root logger configuration."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        root_logger = logging.getLogger()
        self._saved_handlers = root_logger.handlers[:]
        self._saved_level = root_logger.level

    def tearDown(self):
        import shutil
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()
        for handler in self._saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(self._saved_level)
        shutil.rmtree(self.temp_dir)

    def test_handlers_and_files(self):
        log_path = os.path.join(self.temp_dir, "logs", "node_bootstrap.log")
        service = LoggingService(Config(log_level="DEBUG", log_file_path=log_path))

        root_logger = logging.getLogger()
        self.assertEqual(root_logger.level, logging.DEBUG)
        self.assertEqual(len(root_logger.handlers), 3)

        logging.getLogger("node_bootstrap.test").error("install failed")
        for handler in root_logger.handlers:
            handler.flush()

        with open(log_path) as f:
            lines = [json.loads(line) for line in f if line.strip()]
        self.assertIn("install failed", [entry['message'] for entry in lines])
        error_log = os.path.join(self.temp_dir, "logs", "node_bootstrap.errors.log")
        with open(error_log) as f:
            self.assertIn("install failed", f.read())
        self.assertIsNotNone(service.step_timer)

    def test_step_summary(self):
        service = LoggingService(Config(log_file_path=os.path.join(self.temp_dir, "b.log")))

        with service.measure_step("retrieve"):
            pass

        summary = service.get_step_summary()
        self.assertIn("retrieve", summary)
        self.assertTrue(summary["retrieve"]["success"])


if __name__ == '__main__':
    unittest.main()
