import json
import logging
import sys

from aftermeet.utils.logger import JSONFormatter, StructuredLogger


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_structured_fields_travel_as_extra_data_without_nones():
    capture = _Capture()
    log = StructuredLogger("aftermeet.tests.logger")
    log.logger.addHandler(capture)
    log.logger.setLevel(logging.DEBUG)
    try:
        log.warning("Job attempt failed", job_id=7, queue="bot-lifecycle", reason=None)
    finally:
        log.logger.removeHandler(capture)

    (record,) = capture.records
    assert record.levelno == logging.WARNING
    assert record.extra_data == {"job_id": 7, "queue": "bot-lifecycle"}


def test_json_formatter_merges_fields_and_exception():
    record = logging.LogRecord("aftermeet.audit", logging.ERROR, __file__, 1, "Sweep failed", None, None)
    record.extra_data = {"sweep": "prune_finished_jobs", "count": 2}
    try:
        raise RuntimeError("db down")
    except RuntimeError:
        record.exc_info = sys.exc_info()

    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "Sweep failed"
    assert entry["level"] == "ERROR"
    assert entry["sweep"] == "prune_finished_jobs"
    assert entry["count"] == 2
    assert "RuntimeError: db down" in entry["exception"]
