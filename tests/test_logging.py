from __future__ import annotations

import logging

from hostel_metrics.core.logging import configure_logging


def test_configure_logging_writes_to_file(tmp_path) -> None:
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        log_path = configure_logging("debug", tmp_path / "logs")
        logging.getLogger("hostel_metrics.test").info("fetch finished")
        for handler in root.handlers:
            handler.flush()

        assert log_path == tmp_path / "logs" / "hostel_metrics.log"
        assert "fetch finished" in log_path.read_text(encoding="utf-8")
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
