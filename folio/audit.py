"""
Bounded in-memory audit log
Diagnostic aid only: oldest entries are evicted first and nothing survives a restart.
"""

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple

logger = logging.getLogger(__name__)

MAX_ENTRIES = 1000


class AuditEntry(NamedTuple):
    timestamp: str
    client_key: str
    method: str
    section: str
    action: str
    outcome: str
    detail: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'clientKey': self.client_key,
            'method': self.method,
            'section': self.section,
            'action': self.action,
            'outcome': self.outcome,
            'detail': self.detail
        }


class AuditLog:
    def __init__(self, capacity: int = MAX_ENTRIES):
        if capacity < 1:
            raise ValueError('capacity must be at least 1')
        self.capacity = capacity
        self._entries = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._sinks: List[Callable[[AuditEntry], Any]] = []

    def add_sink(self, sink: Callable[[AuditEntry], Any]):
        """Call sink(entry) for every appended entry, e.g. to mirror to a shared store"""
        self._sinks.append(sink)

    def append(self, entry: AuditEntry):
        with self._lock:
            self._entries.append(entry)

        logger.info(f"audit {entry.outcome}: {entry.method} {entry.section or '-'} "
                    f"action={entry.action} client={entry.client_key} {entry.detail}".rstrip())

        for sink in self._sinks:
            try:
                sink(entry)
            except Exception as e:
                logger.warning(f"Audit sink {sink!r} failed: {e}")

    def record(self, client_key, method, section, action, outcome, detail='') -> AuditEntry:
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            client_key=client_key or 'unknown',
            method=method,
            section=section or '',
            action=action,
            outcome=outcome,
            detail=detail or ''
        )
        self.append(entry)
        return entry

    def list(self) -> List[AuditEntry]:
        """Entries oldest first, most recent last"""
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)
