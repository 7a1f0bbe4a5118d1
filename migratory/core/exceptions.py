"""Exceptions raised by the migratory plan engine.

Errors fall into families so callers can react to a whole class of
problems at once:

- ``PlanBuildError``: the registered migrations are structurally invalid
- ``ResolutionError``: the requested selection cannot be resolved safely
  against the persisted state (detected before anything runs)
- ``StateError``: the state backend misbehaved or holds unreadable data
- ``ExecutionError``: something went wrong while migrations were running
"""


class MigrateError(Exception):
    """Base exception for all migratory errors.

    All migratory exceptions inherit from this class, making it easy
    to catch all engine-specific errors.
    """

    def __init__(self, message: str, hint: str | None = None):
        """Initialize the exception.

        Args:
            message: The error message
            hint: Optional hint for resolving the error
        """
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ConfigurationError(MigrateError):
    """Raised when migratory configuration is invalid."""

    def __init__(
        self,
        message: str | None = None,
        missing_fields: list[str] | None = None,
    ):
        """Initialize the configuration error.

        Args:
            message: Custom error message
            missing_fields: List of missing configuration fields
        """
        self.missing_fields = missing_fields or []

        if missing_fields:
            fields_str = ", ".join(missing_fields)
            message = f"Missing required configuration: {fields_str}"
            hint = "Set these as environment variables or in your .env file."
        else:
            hint = "Check your migratory configuration."

        super().__init__(message or "Invalid migratory configuration", hint)


# Plan build errors


class PlanBuildError(MigrateError):
    """Raised when the registered migrations cannot form a valid plan."""


class DuplicateNameError(PlanBuildError):
    """Raised when two migrations are registered under the same name."""

    def __init__(self, name: str, first_index: int, second_index: int):
        self.name = name
        self.first_index = first_index
        self.second_index = second_index
        super().__init__(
            f"Migration name '{name}' is registered twice "
            f"(positions {first_index} and {second_index})",
            "Migration names are stored in the state and must be unique.",
        )


class EmptyPlanError(PlanBuildError):
    """Raised when a plan is built without any migrations."""

    def __init__(self):
        super().__init__(
            "No migrations were registered in the plan",
            "Register migrations before building, or pass allow_empty=True "
            "if an empty plan is expected.",
        )


class MissingContextProviderError(PlanBuildError):
    """Raised when a plan is built without a context provider."""

    def __init__(self):
        super().__init__(
            "No migration context provider was configured",
            "Call PlanBuilder.context_provider() before build().",
        )


class MigrationLoadError(PlanBuildError):
    """Raised when a migration file cannot be loaded."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Failed to load migration from {path}: {reason}",
            "Each migration file must define a module-level `migration` "
            "attribute holding a Migration instance.",
        )


# Resolution errors


class ResolutionError(MigrateError):
    """Raised when a selection cannot be resolved against the state."""


class StateDriftError(ResolutionError):
    """Raised when the applied migrations are not a prefix of the plan."""

    def __init__(
        self,
        index: int,
        expected: str | None,
        actual: str,
    ):
        """Initialize the drift error.

        Args:
            index: Position in the applied list where the mismatch is
            expected: Name the plan has at that position (None if the plan
                is shorter than the applied list)
            actual: Name recorded in the state at that position
        """
        self.index = index
        self.expected = expected
        self.actual = actual

        if expected is None:
            message = (
                f"Applied migration '{actual}' at position {index} "
                "is not present in the plan"
            )
        else:
            message = (
                f"Applied migration '{actual}' at position {index} does not "
                f"match plan migration '{expected}'"
            )
        super().__init__(
            message,
            "Migrations may only be appended to the end of the plan. Do not "
            "reorder, rename or remove migrations that were already applied.",
        )


class TargetNotFoundError(ResolutionError):
    """Raised when a selection targets a migration that is not in the plan."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        super().__init__(
            f"Unknown migration name specified: '{name}'",
            f"Available migrations: [{', '.join(available)}]",
        )


class IrreversibleMigrationError(ResolutionError):
    """Raised when a rollback selection includes forward-only migrations."""

    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(
            f"Cannot roll back irreversible migration(s): {', '.join(names)}",
            "Define a down() operation for these migrations or choose a "
            "rollback bound above them.",
        )


class DryRunUnsupportedError(ResolutionError):
    """Raised when no-commit mode is requested but the provider lacks it."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"No-commit mode is not supported by context provider {provider}",
            "Implement create_in_no_commit_mode() on the provider or run "
            "in commit mode.",
        )


class LockHeldError(ResolutionError):
    """Raised when the migration state is locked by another runner."""

    def __init__(self, resource: str, owner: str | None = None):
        self.resource = resource
        self.owner = owner
        message = f"Migration state lock on {resource} is held"
        if owner:
            message = f"{message} by {owner}"
        super().__init__(
            message,
            "Wait for the other runner to finish. If it crashed, re-run "
            "with --force-lock.",
        )


# State errors


class StateError(MigrateError):
    """Raised when the state backend fails or holds invalid data."""


class StateCorruptionError(StateError):
    """Raised when the stored state cannot be decoded."""

    def __init__(self, raw: bytes, reason: str):
        self.raw = raw
        self.reason = reason
        try:
            shown = raw.decode("utf-8")
        except UnicodeDecodeError:
            shown = repr(raw)
        super().__init__(
            f"Failed to decode the migration state ({reason}), read state: {shown}",
            "The state may be corrupted or written by a newer version.",
        )


class StateOrderingError(StateError):
    """Raised when a rollback record does not match the applied tail."""

    def __init__(self, name: str, tail: str | None):
        self.name = name
        self.tail = tail
        super().__init__(
            f"Cannot remove '{name}' from the state: the last applied "
            f"migration is {repr(tail) if tail else 'nothing'}",
            "Migrations are rolled back strictly in reverse order.",
        )


class StateBackendError(StateError):
    """Raised when reading or writing the state backend fails."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        original_error: Exception | None = None,
    ):
        """Initialize the backend error.

        Args:
            message: The error message
            operation: The backend operation that failed
            original_error: The original exception
        """
        self.operation = operation
        self.original_error = original_error

        hint = None
        if original_error is not None:
            error_str = str(original_error)
            if "NoSuchBucket" in error_str:
                hint = "The configured state bucket does not exist."
            elif "AccessDenied" in error_str:
                hint = "Check your IAM permissions for the state bucket."
            elif isinstance(original_error, PermissionError):
                hint = "Check file permissions of the state file."

        super().__init__(message, hint)


# Execution errors


class ExecutionError(MigrateError):
    """Raised when a migration run fails."""


class MigrationFailedError(ExecutionError):
    """Raised when a migration's own up() or down() fails."""

    def __init__(
        self,
        name: str,
        index: int,
        direction: str,
        original_error: BaseException,
    ):
        self.name = name
        self.index = index
        self.direction = direction
        self.original_error = original_error
        super().__init__(
            f"Migration '{name}' (#{index}) failed running {direction}: "
            f"{original_error!r}",
            "Fix the migration and re-run the same command; completed "
            "migrations are not repeated.",
        )


class StateRecordError(ExecutionError):
    """Raised when a migration ran but its state update failed.

    The real-world effect of the migration happened but was not recorded,
    so the state no longer reflects reality. Manual intervention is needed.
    """

    def __init__(
        self,
        name: str,
        index: int,
        direction: str,
        original_error: BaseException,
    ):
        self.name = name
        self.index = index
        self.direction = direction
        self.original_error = original_error
        super().__init__(
            f"Migration '{name}' (#{index}) completed {direction} but the "
            f"state could not be updated: {original_error!r}",
            "The target resource and the migration state are now out of "
            "sync. Inspect the resource and fix the state manually before "
            "running migrations again.",
        )


class ContextCreationError(ExecutionError):
    """Raised when the context provider fails to create a context."""

    def __init__(self, provider: str, run_mode: str, original_error: Exception):
        self.provider = provider
        self.run_mode = run_mode
        self.original_error = original_error
        super().__init__(
            f"Provider {provider} failed to create migration context in "
            f"{run_mode} mode: {original_error!r}",
        )
