from __future__ import annotations

import json
import logging
import unittest
from datetime import date

from clockin.logging_utils import JsonFormatter
from clockin.models import CheckSlot


class JsonFormatterTests(unittest.TestCase):
    def _format(self, **extra) -> dict:  # type: ignore[no-untyped-def]
        logger = logging.getLogger("clockin.attendance")
        record = logger.makeRecord(
            logger.name, logging.INFO, __file__, 1, "clock_in_recorded", (), None, extra=extra
        )
        return json.loads(JsonFormatter("clockin").format(record))

    def test_event_and_context_fields(self) -> None:
        payload = self._format(record_id="emp-1_2026-03-02", slot=CheckSlot.CHECK1, day=date(2026, 3, 2))

        self.assertEqual(payload["event"], "clock_in_recorded")
        self.assertEqual(payload["service"], "clockin")
        self.assertEqual(payload["logger"], "clockin.attendance")
        self.assertEqual(payload["record_id"], "emp-1_2026-03-02")
        self.assertEqual(payload["slot"], "check1")
        self.assertEqual(payload["day"], "2026-03-02")

    def test_standard_record_attributes_are_not_emitted(self) -> None:
        payload = self._format()

        for key in ("msg", "args", "levelno", "pathname", "lineno", "thread"):
            self.assertNotIn(key, payload)


if __name__ == "__main__":
    unittest.main()
