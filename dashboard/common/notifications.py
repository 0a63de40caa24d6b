# dashboard/common/notifications.py
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from dashboard.utils.logging_config import setup_logging

logger = setup_logging('notifications')

MAX_PENDING = 100


@dataclass
class Notification:
    title: str
    description: str
    variant: str = 'default'
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, str]:
        return {
            'title': self.title,
            'description': self.description,
            'variant': self.variant,
            'created_at': self.created_at,
        }


class Notifier:
    """Non-blocking operator notifications, drained by the UI"""

    def __init__(self, maxlen: int = MAX_PENDING):
        self._pending = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def _push(self, notification: Notification) -> Notification:
        with self._lock:
            self._pending.append(notification)
        return notification

    def success(self, description: str, title: str = 'Success') -> Notification:
        logger.info(f"{title}: {description}")
        return self._push(Notification(title, description))

    def error(self, description: str, title: str = 'Error') -> Notification:
        logger.warning(f"{title}: {description}")
        return self._push(Notification(title, description, variant='destructive'))

    def pending(self) -> List[Notification]:
        with self._lock:
            return list(self._pending)

    def drain(self) -> List[Notification]:
        with self._lock:
            items = list(self._pending)
            self._pending.clear()
        return items
