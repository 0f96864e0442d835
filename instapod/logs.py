"""
Logging setup and the in-memory log buffer behind /api/logs.
"""

import logging
import sys
import threading
from collections import deque
from datetime import datetime, timezone
from typing import List, Optional

MAX_LOG_ENTRIES = 2000
DEFAULT_LIMIT = 200

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


class LogBuffer(logging.Handler):
    """Ring buffer of recent log records, exposed to the admin API.

    Each entry gets a monotonically increasing id so clients can poll with
    `since_id` and only receive what is new.
    """

    def __init__(self, capacity: int = MAX_LOG_ENTRIES, level=logging.INFO):
        super().__init__(level)
        self._entries = deque(maxlen=capacity)
        self._next_id = 1
        self._lock_entries = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except Exception:
            self.handleError(record)
            return
        with self._lock_entries:
            self._entries.append({
                "id": self._next_id,
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname.lower(),
                "source": record.name,
                "message": message,
            })
            self._next_id += 1

    def get_logs(self, limit: int = DEFAULT_LIMIT, since_id: Optional[int] = None) -> List[dict]:
        """Return at most `limit` newest entries, optionally only those after `since_id`."""
        with self._lock_entries:
            entries = list(self._entries)
        if since_id is not None:
            entries = [e for e in entries if e["id"] > since_id]
        if limit <= 0:
            return []
        return entries[-limit:]


log_buffer = LogBuffer()


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging to stdout plus the shared in-memory buffer."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            log_buffer,
        ],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
