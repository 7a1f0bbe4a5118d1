"""migratory: apply and roll back ordered migrations against any resource."""

__version__ = "0.1.0"

# Core components
from migratory.core.exceptions import (
    MigrateError,
    ConfigurationError,
    PlanBuildError,
    DuplicateNameError,
    EmptyPlanError,
    MissingContextProviderError,
    MigrationLoadError,
    ResolutionError,
    StateDriftError,
    TargetNotFoundError,
    IrreversibleMigrationError,
    DryRunUnsupportedError,
    LockHeldError,
    StateError,
    StateCorruptionError,
    StateOrderingError,
    StateBackendError,
    ExecutionError,
    MigrationFailedError,
    StateRecordError,
    ContextCreationError,
)
from migratory.core.settings import MigrateSettings

# Plan components
from migratory.plan import (
    ContextProvider,
    Direction,
    FunctionMigration,
    Migration,
    MigrationStatus,
    Plan,
    PlanBuilder,
    Report,
    Resolution,
    RunMode,
    Selection,
    StepStatus,
    execute,
    make_migration,
    resolve,
)

# State components
from migratory.state import (
    FileStateStore,
    InMemoryStateStore,
    S3StateStore,
    StateLock,
    StateStore,
    create_state_store,
)

__all__ = [
    # Version
    "__version__",
    # Errors
    "MigrateError",
    "ConfigurationError",
    "PlanBuildError",
    "DuplicateNameError",
    "EmptyPlanError",
    "MissingContextProviderError",
    "MigrationLoadError",
    "ResolutionError",
    "StateDriftError",
    "TargetNotFoundError",
    "IrreversibleMigrationError",
    "DryRunUnsupportedError",
    "LockHeldError",
    "StateError",
    "StateCorruptionError",
    "StateOrderingError",
    "StateBackendError",
    "ExecutionError",
    "MigrationFailedError",
    "StateRecordError",
    "ContextCreationError",
    # Settings
    "MigrateSettings",
    # Plan
    "ContextProvider",
    "Direction",
    "FunctionMigration",
    "Migration",
    "MigrationStatus",
    "Plan",
    "PlanBuilder",
    "Report",
    "Resolution",
    "RunMode",
    "Selection",
    "StepStatus",
    "execute",
    "make_migration",
    "resolve",
    # State
    "FileStateStore",
    "InMemoryStateStore",
    "S3StateStore",
    "StateLock",
    "StateStore",
    "create_state_store",
]
