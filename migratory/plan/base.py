"""Base contracts for migratory migrations and their execution contexts."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

Ctx = TypeVar("Ctx")


class RunMode(str, Enum):
    """How a plan is executed."""

    # Commit changes to the target resource and record them in the state
    COMMIT = "commit"
    # Run against a safe context supplied by the provider, record nothing
    NO_COMMIT = "no-commit"


class Direction(str, Enum):
    """Direction migrations are run in."""

    UP = "up"
    DOWN = "down"


class Migration(ABC, Generic[Ctx]):
    """A single change operation against the migration target.

    Subclasses implement ``up`` and, when the change can be undone,
    ``down``. A migration that does not override ``down`` is forward-only
    and is refused by rollback selections before anything runs.

    Example:
        class CreateUsersTable(Migration[Database]):
            async def up(self, db):
                await db.execute("CREATE TABLE users (id INT)")

            async def down(self, db):
                await db.execute("DROP TABLE users")
    """

    description: str = ""

    @abstractmethod
    async def up(self, ctx: Ctx) -> None:
        """Apply the migration.

        Args:
            ctx: The context produced by the plan's context provider
        """
        pass

    async def down(self, ctx: Ctx) -> None:
        """Revert the migration.

        Args:
            ctx: The context produced by the plan's context provider

        Raises:
            NotImplementedError: If the migration is not reversible
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} does not support rollback"
        )

    @property
    def reversible(self) -> bool:
        """Whether this migration provides a ``down`` operation."""
        return type(self).down is not Migration.down


@dataclass
class FunctionMigration(Migration[Ctx]):
    """Migration built from plain coroutine functions.

    Example:
        FunctionMigration(
            up_func=create_users_table,
            down_func=drop_users_table,
            description="Create the users table",
        )
    """

    up_func: Callable[[Ctx], Awaitable[None]]
    down_func: Callable[[Ctx], Awaitable[None]] | None = None
    description: str = ""

    async def up(self, ctx: Ctx) -> None:
        await self.up_func(ctx)

    async def down(self, ctx: Ctx) -> None:
        if self.down_func is None:
            raise NotImplementedError(
                f"Migration '{self.description or self.up_func.__name__}' "
                "has no down function"
            )
        await self.down_func(ctx)

    @property
    def reversible(self) -> bool:
        return self.down_func is not None


def make_migration(
    up: Callable[[Any], Awaitable[None]],
    down: Callable[[Any], Awaitable[None]] | None = None,
    description: str = "",
) -> FunctionMigration:
    """Shorthand for creating a :class:`FunctionMigration`."""
    return FunctionMigration(up_func=up, down_func=down, description=description)


@dataclass(frozen=True)
class PlanEntry:
    """A migration registered in a plan, with its position in the plan."""

    index: int
    name: str
    migration: Migration

    @property
    def reversible(self) -> bool:
        return self.migration.reversible


class ContextProvider(ABC, Generic[Ctx]):
    """Creates the context migrations run against.

    The provider decides what a context is: a database client, an S3
    client, a path on disk. It is asked for a context once per run, in the
    run mode requested by the caller.
    """

    @abstractmethod
    async def create_in_commit_mode(self) -> Ctx:
        """Create a context that commits changes to the real target."""
        pass

    async def create_in_no_commit_mode(self) -> Ctx | None:
        """Create a context that does not commit changes.

        Returns:
            A safe context (e.g. a fake client that only logs), or None if
            the provider does not support no-commit mode
        """
        return None

    async def release(self, ctx: Ctx) -> None:
        """Release resources held by a context once the run is over."""
        pass

    def __str__(self) -> str:
        return self.__class__.__name__
