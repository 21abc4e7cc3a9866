import logging

import pytest

from docqueue.logging.logger import Log


class TestLog:
    @pytest.mark.parametrize("method", ["info", "error", "warning", "debug", "exception"])
    def test_every_level_helper_is_documented(self, method: str) -> None:
        assert getattr(Log, method).__doc__

    def test_messages_reach_the_docqueue_logger(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="docqueue"):
            Log.info("dispatching")
            Log.warning("retrying")
            Log.error("failed")
            Log.debug("tick")

        assert [(r.levelname, r.message) for r in caplog.records] == [
            ("INFO", "dispatching"),
            ("WARNING", "retrying"),
            ("ERROR", "failed"),
            ("DEBUG", "tick"),
        ]

    def test_configure_adds_a_single_handler(self) -> None:
        logger = logging.getLogger("docqueue")
        before = list(logger.handlers)
        try:
            Log.configure("warning")
            Log.configure("warning")
            assert logger.level == logging.WARNING
            assert len(logger.handlers) == max(len(before), 1)
        finally:
            logger.handlers = before
            logger.setLevel(logging.NOTSET)
