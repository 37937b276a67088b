# Kestrel Console - Notice Channel
#
# The single user-visible notification surface. Every operation outcome
# the operator should see (success, failure, "not implemented yet") is
# published here; front ends subscribe or drain.

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)


class NoticeVariant(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notice:
    """One message for the operator."""

    title: str
    description: str
    variant: NoticeVariant = NoticeVariant.INFO
    kind: Optional[str] = None  # error kind for failures, e.g. "transport"
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_error(self) -> bool:
        return self.variant == NoticeVariant.DESTRUCTIVE


class NoticeChannel:
    """Collects notices and fans them out to subscribers."""

    def __init__(self, max_history: int = 200):
        self._max_history = max_history
        self._history: Deque[Notice] = deque(maxlen=max_history)
        self._subscribers: List[Callable[[Notice], None]] = []

    def subscribe(self, callback: Callable[[Notice], None]) -> None:
        self._subscribers.append(callback)

    def publish(self, notice: Notice) -> Notice:
        self._history.append(notice)
        for callback in list(self._subscribers):
            try:
                callback(notice)
            except Exception:
                logger.exception("Notice subscriber failed")
        return notice

    def success(self, description: str) -> Notice:
        return self.publish(Notice("Success", description, NoticeVariant.SUCCESS))

    def info(self, description: str) -> Notice:
        return self.publish(Notice("Info", description, NoticeVariant.INFO))

    def error(self, description: str, kind: Optional[str] = None) -> Notice:
        return self.publish(
            Notice("Error", description, NoticeVariant.DESTRUCTIVE, kind=kind)
        )

    @property
    def history(self) -> List[Notice]:
        return list(self._history)

    def latest(self) -> Optional[Notice]:
        return self._history[-1] if self._history else None

    def drain(self) -> List[Notice]:
        """Return and forget everything published so far."""
        notices = list(self._history)
        self._history.clear()
        return notices
