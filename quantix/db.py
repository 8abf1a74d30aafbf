"""
LevelDB wrapper holding the Quantix ledger state.
"""
import plyvel
import logging
from typing import Optional
from contextlib import contextmanager

from quantix.errors import ReentrantCall

logger = logging.getLogger(__name__)


class DB:
    def __init__(self, db_path: str, create_if_missing: bool = True,
                 write_buffer_size: int = 16 * 1024 * 1024,
                 max_open_files: int = 500):
        """
        Open (or create) the ledger database.

        Args:
            db_path: Path to database directory
            create_if_missing: Create database if it doesn't exist
            write_buffer_size: Size of write buffer
            max_open_files: Maximum number of open files
        """
        try:
            self._db = plyvel.DB(
                db_path,
                create_if_missing=create_if_missing,
                write_buffer_size=write_buffer_size,
                max_open_files=max_open_files,
            )
            self._closed = False
            self._holder = None
            self.path = db_path
            logger.info(f"Ledger database opened at {db_path}")
        except Exception as e:
            logger.error(f"Failed to open ledger database at {db_path}: {e}")
            raise

    def _check_open(self):
        if self._closed:
            raise RuntimeError("Database is closed")

    def _check_writer(self, holder=None):
        if self._holder is not None and holder is not self._holder:
            raise ReentrantCall("Ledger is held by an in-flight operation")

    @contextmanager
    def hold(self, holder):
        """
        Reserve the database for `holder` until the block exits.

        Any write that does not come from the holder is rejected meanwhile.
        """
        if self._holder is not None:
            raise ReentrantCall("Ledger is already held")
        self._holder = holder
        try:
            yield
        finally:
            self._holder = None

    @property
    def held(self) -> bool:
        return self._holder is not None

    def get(self, key: bytes) -> Optional[bytes]:
        """Get value by key, or None if the key is absent."""
        self._check_open()
        return self._db.get(key)

    def put(self, key: bytes, value: bytes):
        self._check_open()
        self._check_writer()
        self._db.put(key, value)

    def delete(self, key: bytes):
        self._check_open()
        self._check_writer()
        self._db.delete(key)

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    @contextmanager
    def write_batch(self, holder=None):
        """
        Context manager for an atomic batch of writes.

        Nothing is written unless the block exits normally:

            with db.write_batch() as batch:
                batch.put(b'VAULT:...', packed)
                batch.delete(b'...')

        While the database is held, only the holder may open a batch.
        """
        self._check_open()
        self._check_writer(holder)
        batch = self._db.write_batch(transaction=True)
        try:
            yield batch
            batch.write()
        except Exception as e:
            logger.error(f"Write batch aborted: {e}")
            batch.clear()
            raise

    def get_prefix(self, prefix: bytes) -> list[tuple[bytes, bytes]]:
        """All key-value pairs whose key starts with prefix."""
        self._check_open()
        return list(self._db.iterator(prefix=prefix))

    def close(self):
        if not self._closed:
            self._db.close()
            self._closed = True
            logger.info("Ledger database closed")

    def is_closed(self) -> bool:
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
