"""
Pending state for a single operation.

Writes made during an operation stay in memory until commit() flushes them
to the database in one write batch. Dropping the overlay (or calling
discard()) leaves the database exactly as it was.
"""
import msgpack
from typing import Optional

from quantix.db import DB

_DELETED = object()


class PendingState:
    def __init__(self, db: DB):
        self.db = db
        self._writes = {}

    def get(self, key: bytes) -> Optional[bytes]:
        if key in self._writes:
            value = self._writes[key]
            return None if value is _DELETED else value
        return self.db.get(key)

    def set(self, key: bytes, value: bytes):
        self._writes[key] = value

    def delete(self, key: bytes):
        self._writes[key] = _DELETED

    def get_record(self, key: bytes) -> Optional[dict]:
        """Decode a msgpack record, or None if the key is absent."""
        encoded = self.get(key)
        if encoded:
            return msgpack.unpackb(encoded, raw=False)
        return None

    def set_record(self, key: bytes, record):
        self.set(key, msgpack.packb(record, use_bin_type=True))

    @property
    def dirty(self) -> bool:
        return bool(self._writes)

    def commit(self):
        """Flush every pending write atomically."""
        if not self._writes:
            return
        with self.db.write_batch(holder=self) as batch:
            for key, value in self._writes.items():
                if value is _DELETED:
                    batch.delete(key)
                else:
                    batch.put(key, value)
        self._writes.clear()

    def discard(self):
        self._writes.clear()

    def __len__(self):
        return len(self._writes)
