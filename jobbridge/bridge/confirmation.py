"""
Publisher confirmation path.

One DeliveryConfirmation per publish. The producer calls on_delivery exactly
once; the job handler blocks in wait() with a bound. A second report for the
same publish is ignored and logged, it never overwrites the first.
"""

import logging
import threading
from typing import Optional

from ..broker.models import DeliveryReport

logger = logging.getLogger(__name__)


class DeliveryConfirmation:
    """One-shot delivery result for a single publish."""

    def __init__(self, topic: str):
        self.topic = topic
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._report: Optional[DeliveryReport] = None

    def on_delivery(self, report: DeliveryReport) -> None:
        with self._lock:
            if self._report is not None:
                logger.warning(f"Ignoring extra delivery report for {report.topic} value={report.value}")
                return
            self._report = report

        if report.delivered:
            logger.info(f"Produced event to topic {report.topic}: key = {report.key} value = {report.value}")
        else:
            logger.error(
                f"Failed to deliver message to {report.topic} (key={report.key}, value={report.value}): "
                f"{report.error_code} {report.reason}"
            )
        self._event.set()

    def wait(self, timeout: float) -> Optional[DeliveryReport]:
        """Block until the report arrives.

        Returns:
            The report, or None if none arrived within `timeout` seconds
        """
        if not self._event.wait(timeout):
            return None
        return self._report
