"""State storage contract for migratory.

A state store keeps the ordered list of applied migration names and
guards it with an exclusive advisory lock. Backends that persist a single
blob (a file, an S3 object) subclass :class:`DocumentStateStore` and only
implement reading, writing and locking of raw bytes.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from migratory.core.exceptions import (
    StateCorruptionError,
    StateError,
    StateOrderingError,
)

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class AppliedMigration(BaseModel):
    """A migration recorded as applied in the state."""

    name: str
    applied_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class StateDocument(BaseModel):
    """Versioned representation of the applied-migrations state."""

    version: int = STATE_VERSION
    applied_migrations: list[AppliedMigration] = Field(default_factory=list)

    def names(self) -> list[str]:
        return [m.name for m in self.applied_migrations]

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, raw: bytes) -> "StateDocument":
        """Decode a stored state document.

        An empty payload is an uninitialized state.

        Raises:
            StateCorruptionError: If the payload cannot be decoded or was
                written with an unknown state version
        """
        if not raw or not raw.strip():
            return cls()

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateCorruptionError(raw, f"invalid JSON: {e}")

        if not isinstance(data, dict):
            raise StateCorruptionError(raw, "expected a JSON object")

        version = data.get("version")
        # Older layouts get upgraded here once a new version is introduced
        if version != STATE_VERSION:
            raise StateCorruptionError(raw, f"unsupported state version {version!r}")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise StateCorruptionError(raw, f"invalid state layout: {e}")


class StateLock(ABC):
    """Handle for an acquired state lock."""

    def __init__(self, resource: str):
        self.resource = resource
        self.released = False

    async def release(self) -> None:
        """Release the lock. Releasing twice is a no-op."""
        if self.released:
            return
        await self._release()
        self.released = True
        logger.debug(f"Released migration state lock on {self.resource}")

    @abstractmethod
    async def _release(self) -> None:
        pass


async def release_lock(handle: StateLock) -> StateError | None:
    """Release a lock, returning the failure instead of raising it.

    Used where another outcome (a run report, an exception already in
    flight) must not be replaced by a failed release.
    """
    try:
        await handle.release()
    except StateError as e:
        logger.error(f"Failed to release migration state lock on {handle.resource}: {e}")
        return e
    return None


class StateStore(ABC):
    """Durable record of which migrations have been applied, in order."""

    @abstractmethod
    async def list_applied(self) -> list[str]:
        """Get the names of applied migrations in the order they were applied."""
        pass

    @abstractmethod
    async def record_applied(self, name: str) -> None:
        """Append a migration name to the applied list."""
        pass

    @abstractmethod
    async def record_rolled_back(self, name: str) -> None:
        """Remove a migration name from the tail of the applied list.

        Raises:
            StateOrderingError: If the name is not the last applied migration
        """
        pass

    @abstractmethod
    async def acquire_lock(self, force: bool = False) -> StateLock:
        """Acquire the exclusive lock on this state.

        Args:
            force: Take the lock even if another runner holds it

        Raises:
            LockHeldError: If the lock is held and ``force`` is False
        """
        pass

    @asynccontextmanager
    async def lock(self, force: bool = False) -> AsyncGenerator[StateLock, None]:
        """Hold the state lock for the duration of the block.

        If the block raises, a failure to release the lock is logged and the
        original exception propagates.
        """
        handle = await self.acquire_lock(force=force)
        try:
            yield handle
        except BaseException:
            await release_lock(handle)
            raise
        await handle.release()


class DocumentStateStore(StateStore):
    """State store persisting a single :class:`StateDocument` blob.

    Every mutation is a read-modify-write of the whole document, so each
    ``record_*`` call is durable by the time it returns.
    """

    @abstractmethod
    async def fetch(self) -> bytes:
        """Return the stored bytes, or ``b""`` if nothing was stored yet."""
        pass

    @abstractmethod
    async def update(self, payload: bytes) -> None:
        """Replace the stored bytes."""
        pass

    async def load(self) -> StateDocument:
        return StateDocument.decode(await self.fetch())

    async def list_applied(self) -> list[str]:
        return (await self.load()).names()

    async def record_applied(self, name: str) -> None:
        document = await self.load()
        document.applied_migrations.append(AppliedMigration(name=name))
        await self.update(document.encode())

    async def record_rolled_back(self, name: str) -> None:
        document = await self.load()
        tail = document.applied_migrations[-1].name if document.applied_migrations else None
        if tail != name:
            raise StateOrderingError(name, tail)
        document.applied_migrations.pop()
        await self.update(document.encode())
