"""
Log sink for tick reports.
"""
from __future__ import annotations
import logging

from couchlurker.models import TickReport

logger = logging.getLogger(__name__)


class LogReporter:
    """Fire-and-forget reporter writing one log line per tick."""

    def __init__(self, warn_threshold: int = 3, log: logging.Logger | None = None):
        self.warn_threshold = max(1, int(warn_threshold))
        self._log = log or logger

    def report(self, report: TickReport) -> None:
        if report.ok:
            self._log.info(f"[report] tick={report.tick} number of faces: {report.face_count}")
            return

        msg = (f"[report] tick={report.tick} failed kind={report.failure.value} "
               f"consecutive_failures={report.consecutive_failures}")
        if report.consecutive_failures >= self.warn_threshold:
            self._log.warning(msg)
        else:
            self._log.info(msg)
