from __future__ import annotations

import json
import logging
import sys
import unittest

from clockapp.logging_utils import JsonFormatter, setup_json_logging


def _record(message: str, **extra) -> logging.LogRecord:  # type: ignore[no-untyped-def]
    logger = logging.getLogger("clockapp.test")
    return logger.makeRecord(
        logger.name,
        logging.INFO,
        __file__,
        1,
        message,
        (),
        None,
        extra=extra,
    )


class JsonFormatterTests(unittest.TestCase):
    def test_extra_fields_and_static_fields_are_merged(self) -> None:
        formatter = JsonFormatter({"kiosk_id": "kiosk-7"})

        payload = json.loads(formatter.format(_record("event_synced", event_id=4, employee_id="E1")))

        self.assertEqual(payload["message"], "event_synced")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["logger"], "clockapp.test")
        self.assertEqual(payload["kiosk_id"], "kiosk-7")
        self.assertEqual(payload["event_id"], 4)
        self.assertEqual(payload["employee_id"], "E1")
        self.assertNotIn("msg", payload)
        self.assertNotIn("lineno", payload)

    def test_exception_is_rendered(self) -> None:
        formatter = JsonFormatter()
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            record = _record("sync_run_failed")
            record.exc_info = sys.exc_info()

        payload = json.loads(formatter.format(record))

        self.assertIn("RuntimeError: disk full", payload["exception"])

    def test_unserializable_values_fall_back_to_str(self) -> None:
        formatter = JsonFormatter()
        payload = json.loads(formatter.format(_record("blob_uploaded", path=object())))
        self.assertTrue(payload["path"].startswith("<object object"))


class SetupJsonLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        root_logger = logging.getLogger()
        self._handlers = list(root_logger.handlers)
        self._level = root_logger.level

    def tearDown(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers[:] = self._handlers
        root_logger.setLevel(self._level)

    def test_installs_single_json_handler(self) -> None:
        setup_json_logging("debug", static_fields={"kiosk_id": "kiosk-1"})
        setup_json_logging("warning")

        root_logger = logging.getLogger()
        self.assertEqual(len(root_logger.handlers), 1)
        self.assertIsInstance(root_logger.handlers[0].formatter, JsonFormatter)
        self.assertEqual(root_logger.level, logging.WARNING)

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_json_logging("chatty")
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
