"""State store backed by a file on the local file system."""

import asyncio
import fcntl
import logging
import os
import socket
from pathlib import Path

from migratory.core.exceptions import LockHeldError, StateBackendError
from migratory.state.base import DocumentStateStore, StateLock

logger = logging.getLogger(__name__)


class _FileLock(StateLock):
    def __init__(self, path: Path, fd: int | None):
        super().__init__(str(path))
        self._fd = fd

    async def _release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            await asyncio.to_thread(_unlock_and_close, fd)
        except OSError as e:
            raise StateBackendError(
                f"Failed to release migration state lock {self.resource}: {e}",
                operation="unlock",
                original_error=e,
            )


def _unlock_and_close(fd: int) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class FileStateStore(DocumentStateStore):
    """Stores the migration state in a local file.

    The state is written atomically (write to a temporary file, fsync,
    rename), so a crash never leaves a half-written state behind. Locking
    uses an OS advisory lock on a sidecar ``<path>.lock`` file; the lock
    dies with the process holding it.

    A forced lock replaces the lock file with a new one and locks that, so
    the previous holder keeps a lock on a file nobody else opens any more.

    The conventional file name is ``migration-state``. Its format is
    private to migratory.
    """

    def __init__(self, path: str | Path):
        """Initialize the store.

        Args:
            path: Path of the state file. A missing file is an empty state.
        """
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    async def fetch(self) -> bytes:
        try:
            return await asyncio.to_thread(self._read)
        except OSError as e:
            raise StateBackendError(
                f"Failed to read the migration state file {self.path}: {e}",
                operation="read",
                original_error=e,
            )

    async def update(self, payload: bytes) -> None:
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            raise StateBackendError(
                f"Failed to update the migration state file {self.path}: {e}",
                operation="write",
                original_error=e,
            )

    def _read(self) -> bytes:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return b""

    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp_path, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    async def acquire_lock(self, force: bool = False) -> StateLock:
        try:
            fd = await asyncio.to_thread(self._try_lock)
        except BlockingIOError:
            owner = self._read_owner()
            if not force:
                raise LockHeldError(str(self.lock_path), owner)
            logger.warning(
                f"Taking over migration state lock on {self.lock_path} held by {owner or 'unknown'}"
            )
            try:
                fd = await asyncio.to_thread(self._take_over)
            except BlockingIOError:
                raise LockHeldError(str(self.lock_path), self._read_owner())
            except OSError as e:
                raise self._lock_error(e)
        except OSError as e:
            raise self._lock_error(e)

        os.ftruncate(fd, 0)
        os.write(fd, f"{socket.gethostname()}:{os.getpid()}".encode("utf-8"))
        logger.debug(f"Acquired migration state lock on {self.lock_path}")
        return _FileLock(self.lock_path, fd)

    def _try_lock(self) -> int:
        """Lock the current lock file without blocking.

        Raises:
            BlockingIOError: If another holder has the lock
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BaseException:
                os.close(fd)
                raise
            if self._is_current(fd):
                return fd
            # Replaced by a takeover between open and flock
            _unlock_and_close(fd)

    def _take_over(self) -> int:
        self.lock_path.unlink(missing_ok=True)
        return self._try_lock()

    def _is_current(self, fd: int) -> bool:
        try:
            current = os.stat(self.lock_path)
        except FileNotFoundError:
            return False
        opened = os.fstat(fd)
        return (opened.st_dev, opened.st_ino) == (current.st_dev, current.st_ino)

    def _lock_error(self, error: OSError) -> StateBackendError:
        return StateBackendError(
            f"Failed to lock the migration state lock file {self.lock_path}: {error}",
            operation="lock",
            original_error=error,
        )

    def _read_owner(self) -> str | None:
        try:
            return self.lock_path.read_text(encoding="utf-8").strip() or None
        except OSError:
            return None
