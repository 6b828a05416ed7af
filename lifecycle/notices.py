"""
Transient, dismissable user notices (toasts).

Notices expire `lifetime` seconds after they were posted; `active()` only
returns live ones. Listeners hear about every new notice as it is posted.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from realtime.scheduling import Handle

logger = logging.getLogger(__name__)

LEVELS = ("info", "success", "warning", "error")


@dataclass(frozen=True)
class Notice:
    id: int
    level: str
    message: str
    created_at: float


class NoticeBoard:
    def __init__(self, *, lifetime: float = 4.0, clock: Callable[[], float] = time.monotonic):
        self.lifetime = lifetime
        self.clock = clock
        self._notices: List[Notice] = []
        self._ids = itertools.count(1)
        self._listeners: List[Callable[[Notice], None]] = []

    def post(self, level: str, message: str) -> Notice:
        if level not in LEVELS:
            raise ValueError(f"unknown notice level {level!r}")
        now = self.clock()
        # expired notices are dropped on every post, read or not
        self.prune(now)
        notice = Notice(id=next(self._ids), level=level, message=message, created_at=now)
        self._notices.append(notice)
        logger.debug("Notice %s [%s]: %s", notice.id, level, message)
        for listener in list(self._listeners):
            listener(notice)
        return notice

    def info(self, message: str) -> Notice:
        return self.post("info", message)

    def success(self, message: str) -> Notice:
        return self.post("success", message)

    def warning(self, message: str) -> Notice:
        return self.post("warning", message)

    def error(self, message: str) -> Notice:
        return self.post("error", message)

    def dismiss(self, notice_id: int) -> bool:
        before = len(self._notices)
        self._notices = [n for n in self._notices if n.id != notice_id]
        return len(self._notices) != before

    def prune(self, now: Optional[float] = None) -> int:
        """Drops expired notices; returns how many were removed."""
        now = self.clock() if now is None else now
        before = len(self._notices)
        self._notices = [n for n in self._notices if now - n.created_at < self.lifetime]
        return before - len(self._notices)

    def active(self) -> List[Notice]:
        self.prune()
        return list(self._notices)

    def latest(self, level: Optional[str] = None) -> Optional[Notice]:
        for notice in reversed(self.active()):
            if level is None or notice.level == level:
                return notice
        return None

    def subscribe(self, listener: Callable[[Notice], None]) -> Handle:
        self._listeners.append(listener)

        def _release():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Handle(_release)
