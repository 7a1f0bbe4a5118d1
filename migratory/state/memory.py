"""In-memory state store."""

import logging

from migratory.core.exceptions import LockHeldError
from migratory.state.base import AppliedMigration, DocumentStateStore, StateDocument, StateLock

logger = logging.getLogger(__name__)


class _MemoryLock(StateLock):
    def __init__(self, store: "InMemoryStateStore"):
        super().__init__("memory")
        self._store = store

    async def _release(self) -> None:
        self._store._lock_holders -= 1


class InMemoryStateStore(DocumentStateStore):
    """State store kept in process memory.

    Useful for tests and for dry runs of freshly written plans. Nothing
    survives the process.

    Example:
        >>> store = InMemoryStateStore(applied=["001-init"])
        >>> await store.list_applied()
        ['001-init']
    """

    def __init__(self, applied: list[str] | None = None):
        """Initialize the store.

        Args:
            applied: Migration names to start with, oldest first
        """
        self._payload = b""
        self._lock_holders = 0
        if applied:
            self._payload = StateDocument(
                applied_migrations=[AppliedMigration(name=n) for n in applied]
            ).encode()

    async def fetch(self) -> bytes:
        return self._payload

    async def update(self, payload: bytes) -> None:
        self._payload = payload

    async def acquire_lock(self, force: bool = False) -> StateLock:
        if self._lock_holders:
            if not force:
                raise LockHeldError("memory")
            logger.warning("Force-acquiring held in-memory migration state lock")
        self._lock_holders += 1
        return _MemoryLock(self)

    @property
    def locked(self) -> bool:
        return self._lock_holders > 0
