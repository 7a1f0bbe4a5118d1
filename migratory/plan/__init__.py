"""Plan engine: migrations, selection, and execution."""

from migratory.plan.base import (
    ContextProvider,
    Direction,
    FunctionMigration,
    Migration,
    PlanEntry,
    RunMode,
    make_migration,
)
from migratory.plan.builder import MigrationStatus, Plan, PlanBuilder
from migratory.plan.executor import Report, StepResult, StepStatus, execute
from migratory.plan.selection import Resolution, Selection, SelectionKind, resolve

__all__ = [
    "ContextProvider",
    "Direction",
    "FunctionMigration",
    "Migration",
    "MigrationStatus",
    "Plan",
    "PlanBuilder",
    "PlanEntry",
    "Report",
    "Resolution",
    "RunMode",
    "Selection",
    "SelectionKind",
    "StepResult",
    "StepStatus",
    "execute",
    "make_migration",
    "resolve",
]
