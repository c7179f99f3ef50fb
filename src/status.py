import logging
from typing import Optional

from models import Severity, Status

logger = logging.getLogger(__name__)


class StatusReporter:
    """Keeps the most recent human-readable status. No history is retained."""

    def __init__(self):
        self._status: Optional[Status] = None

    def report(self, message: str, severity: Severity = Severity.INFO):
        self._status = Status(message=message, severity=severity)
        if severity == Severity.ERROR:
            logger.error(f"Status: {message}")
        else:
            logger.info(f"Status: {message}")

    @property
    def status(self) -> Status:
        return self._status or Status(message="")

    @property
    def message(self) -> str:
        return self.status.message

    @property
    def severity(self) -> Severity:
        return self.status.severity

    def to_dict(self) -> dict:
        return {"message": self.message, "severity": self.severity.value}
