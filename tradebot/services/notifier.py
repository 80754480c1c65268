"""User-facing notifications.

Core services never notify directly: they return ``Alert`` values and the
controller hands them to ``dispatch_alerts``, which always logs and then
forwards to whichever notifier is configured (if any).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable

from tradebot.utils.clock import now_ms

logger = logging.getLogger(__name__)

INFO = "info"
WARNING = "warning"
CRITICAL = "critical"

_LOG_LEVELS = {INFO: logging.INFO, WARNING: logging.WARNING, CRITICAL: logging.CRITICAL}


@dataclass
class Alert:
    severity: str  # "info", "warning", "critical"
    title: str
    detail: str = ""
    timestamp: int = field(default_factory=now_ms)


class Notifier(ABC):
    """Fire-and-forget notification sink."""

    @abstractmethod
    def notify(self, severity: str, title: str, detail: str = ""):
        ...



class MemoryNotifier(Notifier):
    """Keeps the most recent alerts in memory, newest last. Backs the alerts API."""

    def __init__(self, max_alerts: int = 100):
        self.max_alerts = max_alerts
        self.alerts: list[Alert] = []

    def notify(self, severity: str, title: str, detail: str = ""):
        self.alerts.append(Alert(severity=severity, title=title, detail=detail))
        del self.alerts[:-self.max_alerts]


class FanoutNotifier(Notifier):
    """Forwards every alert to several notifiers; one failing does not block the others."""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = list(notifiers)

    def notify(self, severity: str, title: str, detail: str = ""):
        for notifier in self.notifiers:
            try:
                notifier.notify(severity, title, detail)
            except Exception as e:
                logger.warning(f"{type(notifier).__name__} failed for '{title}': {e}")


def dispatch_alerts(notifier: Notifier | None, alerts: Iterable[Alert]):
    """Log each alert and forward it. Notifier failures are logged, never raised."""
    for alert in alerts:
        logger.log(_LOG_LEVELS.get(alert.severity, logging.INFO), f"{alert.title}: {alert.detail}")
        if notifier is None:
            continue
        try:
            notifier.notify(alert.severity, alert.title, alert.detail)
        except Exception as e:
            logger.warning(f"Notifier failed for '{alert.title}': {e}")
