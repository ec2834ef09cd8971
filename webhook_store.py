"""Webhook history - newline-delimited JSON on disk, newest records in memory."""

import json
import logging
import os
import secrets
import threading
import time
from collections import deque
from datetime import datetime, timezone

MEMORY_LIMIT = 100
FILE_LIMIT = 1000


def utc_timestamp():
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def new_webhook_id():
    # millisecond clock plus a short random suffix; unique enough for a local viewer
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class WebhookStore:
    """Append-only JSONL history of received webhooks."""

    def __init__(self, path, memory_limit=MEMORY_LIMIT, file_limit=FILE_LIMIT, logger=None):
        self.path = path
        self.memory_limit = memory_limit
        self.file_limit = file_limit
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._recent = deque(maxlen=memory_limit)

    def load(self):
        """
        Read history from disk, newest first.

        A missing or unreadable file means empty history.
        """
        records = []
        if os.path.exists(self.path):
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    for line in f:
                        line = line.strip()
                        if line:
                            records.append(json.loads(line))
            except (OSError, ValueError) as e:
                self.logger.warning(f"Could not load webhook history from {self.path}: {e}")
                records = []

        records.reverse()
        with self._lock:
            self._recent = deque(records[:self.memory_limit], maxlen=self.memory_limit)
        self.logger.info(f"Loaded {len(self._recent)} stored webhooks")
        return len(self._recent)

    def recent(self):
        """Most-recent-first list of the records held in memory."""
        with self._lock:
            return list(self._recent)

    def append(self, record):
        with self._lock:
            self._recent.appendleft(record)
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(record) + '\n')
            except OSError as e:
                self.logger.error(f"Failed to persist webhook {record.get('id')}: {e}")
                return
            self._truncate()

    def _truncate(self):
        """Keep only the newest file_limit lines on disk."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
            if len(lines) <= self.file_limit:
                return

            temp_path = f"{self.path}.tmp"
            with open(temp_path, 'w', encoding='utf-8') as f:
                f.writelines(lines[-self.file_limit:])
            os.replace(temp_path, self.path)
        except OSError as e:
            self.logger.warning(f"Could not truncate webhook history: {e}")
