"""
Sync Notifier

Receives lifecycle events from the orchestrator (run started, finished,
failed). The default writes them to the application log; deployments can
plug in anything that implements notify().
"""
from typing import Any, Dict, List, Tuple

from storesync.utils.logger import log

LEVELS = ("debug", "info", "success", "warning", "error")


class SyncNotifier:
    """
    Observability hook for sync runs
    """

    def notify(self, event: str, level: str, message: str, **context: Any) -> None:
        raise NotImplementedError


class LogNotifier(SyncNotifier):
    """Writes sync events through loguru, bound with their context"""

    def notify(self, event: str, level: str, message: str, **context: Any) -> None:
        if level not in LEVELS:
            level = "info"
        log.bind(event=event, **context).log(level.upper(), f"[{event}] {message}")


class NullNotifier(SyncNotifier):
    """Discards events but remembers them, for tests"""

    def __init__(self):
        self.events: List[Tuple[str, str, str, Dict[str, Any]]] = []

    def notify(self, event: str, level: str, message: str, **context: Any) -> None:
        self.events.append((event, level, message, context))
