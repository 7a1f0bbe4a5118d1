"""Plan assembly and the high-level plan API."""

import importlib.util
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from migratory.core.exceptions import (
    DuplicateNameError,
    EmptyPlanError,
    MigrationLoadError,
    MissingContextProviderError,
)
from migratory.plan.base import ContextProvider, Migration, PlanEntry, RunMode
from migratory.plan.executor import Report, execute
from migratory.plan.selection import Resolution, Selection, resolve
from migratory.state.base import StateStore, release_lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationStatus:
    """Whether a plan migration is currently applied."""

    index: int
    name: str
    applied: bool
    reversible: bool
    description: str = ""


class Plan:
    """Ordered, immutable set of migrations bound to a provider and a state.

    Plans are created with :class:`PlanBuilder`. The order of migrations is
    the only valid forward order; rollbacks run in the mirrored order.
    """

    def __init__(
        self,
        entries: tuple[PlanEntry, ...],
        provider: ContextProvider,
        state_store: StateStore,
    ):
        self._entries = entries
        self.provider = provider
        self.state_store = state_store

    @property
    def entries(self) -> tuple[PlanEntry, ...]:
        return self._entries

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def resolve_against(self, applied: list[str], selection: Selection) -> Resolution:
        """Resolve a selection against an already-read applied list."""
        return resolve(self._entries, applied, selection)

    async def resolve(self, selection: Selection, force_lock: bool = False) -> Resolution:
        """Lock the state, read it, and resolve a selection without running it."""
        async with self.state_store.lock(force=force_lock):
            applied = await self.state_store.list_applied()
            return self.resolve_against(applied, selection)

    async def run(
        self,
        selection: Selection,
        run_mode: RunMode = RunMode.COMMIT,
        force_lock: bool = False,
    ) -> Report:
        """Resolve and execute a selection under the state lock.

        The lock is taken before the state is read and released once the
        run completes or fails.

        Args:
            selection: Which migrations to run
            run_mode: Commit changes or run in no-commit mode
            force_lock: Take the state lock even if another runner holds it

        Returns:
            The run report. If the run succeeded but the lock could not be
            released, the release failure is the report's error.

        Raises:
            LockHeldError: If another runner holds the state lock
            ResolutionError: If the selection cannot be resolved
            ContextCreationError: If the context cannot be created
        """
        handle = await self.state_store.acquire_lock(force=force_lock)
        try:
            applied = await self.state_store.list_applied()
            resolution = self.resolve_against(applied, selection)
            logger.info(f"Resolved '{selection}' to {len(resolution.steps)} migration(s)")
            report = await execute(self, resolution, run_mode)
        except BaseException:
            await release_lock(handle)
            raise

        release_error = await release_lock(handle)
        # A run error outranks the release failure, which is already logged
        if release_error is not None and report.ok:
            report.error = release_error
        return report

    async def status(self) -> list[MigrationStatus]:
        """Report which plan migrations are applied.

        Raises:
            StateDriftError: If the state does not match the plan
        """
        applied = await self.state_store.list_applied()
        self.resolve_against(applied, Selection.apply_all())
        return [
            MigrationStatus(
                index=entry.index,
                name=entry.name,
                applied=entry.index < len(applied),
                reversible=entry.reversible,
                description=entry.migration.description,
            )
            for entry in self._entries
        ]

    def describe(self) -> str:
        """List the registered migrations in order."""
        if not self._entries:
            return "No migrations registered"
        lines = []
        for entry in self._entries:
            line = f"#{entry.index} {entry.name}"
            if entry.migration.description:
                line += f": {entry.migration.description}"
            if not entry.reversible:
                line += " (irreversible)"
            lines.append(line)
        return "\n".join(lines)


class PlanBuilder:
    """Collects migrations in order and validates them into a :class:`Plan`.

    Example:
        plan = (
            PlanBuilder(FileStateStore("migration-state"))
            .context_provider(DatabaseProvider(url))
            .migration("001-create-users", CreateUsers())
            .migration("002-add-email", AddEmail())
            .build()
        )
    """

    def __init__(
        self,
        state_store: StateStore,
        provider: ContextProvider | None = None,
        allow_empty: bool = False,
    ):
        """Initialize the builder.

        Args:
            state_store: Where applied migrations are recorded
            provider: Context provider, may also be set later
            allow_empty: Build an empty plan instead of raising EmptyPlanError
        """
        self.state_store = state_store
        self._provider = provider
        self.allow_empty = allow_empty
        self._registrations: list[tuple[str, Migration]] = []

    def context_provider(self, provider: ContextProvider) -> "PlanBuilder":
        self._provider = provider
        return self

    def migration(self, name: str, migration: Migration) -> "PlanBuilder":
        """Register the next migration in order."""
        if not isinstance(migration, Migration):
            raise TypeError(
                f"Migration '{name}' must be a Migration instance, got {type(migration).__name__}"
            )
        self._registrations.append((name, migration))
        return self

    def discover(self, directory: str | Path) -> "PlanBuilder":
        """Register migrations from the Python files in a directory.

        Files are registered sorted by file name; files starting with an
        underscore are skipped. Each file must define a module-level
        ``migration`` attribute, and may define ``name`` to override the
        migration name (the file stem by default).

        Raises:
            MigrationLoadError: If a file cannot be imported or does not
                define a migration
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise MigrationLoadError(str(directory), "not a directory")

        for file_path in sorted(directory.glob("*.py")):
            if file_path.name.startswith("_"):
                continue
            name, migration = _load_migration_file(file_path)
            self.migration(name, migration)
        return self

    def build(self) -> Plan:
        """Validate the registrations and create the plan.

        Raises:
            DuplicateNameError: If a name is registered twice
            EmptyPlanError: If nothing is registered and empty plans are
                not allowed
            MissingContextProviderError: If no context provider is set
        """
        seen: dict[str, int] = {}
        for index, (name, _) in enumerate(self._registrations):
            if name in seen:
                raise DuplicateNameError(name, seen[name], index)
            seen[name] = index

        if not self._registrations and not self.allow_empty:
            raise EmptyPlanError()
        if self._provider is None:
            raise MissingContextProviderError()

        entries = tuple(
            PlanEntry(index, name, migration)
            for index, (name, migration) in enumerate(self._registrations)
        )
        return Plan(entries, self._provider, self.state_store)


def _load_migration_file(file_path: Path) -> tuple[str, Migration]:
    module_name = f"migratory_migration_{file_path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if not spec or not spec.loader:
        raise MigrationLoadError(str(file_path), "not an importable Python file")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise MigrationLoadError(str(file_path), repr(e)) from e

    migration = getattr(module, "migration", None)
    if not isinstance(migration, Migration):
        raise MigrationLoadError(str(file_path), "no module-level `migration` defined")

    name = getattr(module, "name", None) or file_path.stem
    logger.debug(f"Loaded migration {name} from {file_path}")
    return name, migration
