"""Execution of resolved migrations."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from migratory.core.exceptions import (
    ContextCreationError,
    DryRunUnsupportedError,
    MigrateError,
    MigrationFailedError,
    StateRecordError,
)
from migratory.plan.base import ContextProvider, Direction, PlanEntry, RunMode
from migratory.plan.selection import Resolution

if TYPE_CHECKING:
    from migratory.plan.builder import Plan

logger = logging.getLogger(__name__)


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # The migration ran but its state update failed
    UNRECORDED = "unrecorded"


@dataclass
class StepResult:
    """Outcome of running a single migration."""

    index: int
    name: str
    status: StepStatus
    duration: float = 0.0
    error: MigrateError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass
class Report:
    """Outcome of a plan run.

    Attributes:
        direction: Direction the migrations ran in
        run_mode: Whether changes were committed
        steps: One result per migration attempted, in execution order
        error: The error that stopped the run, if any
    """

    direction: Direction
    run_mode: RunMode
    steps: list[StepResult] = field(default_factory=list)
    error: MigrateError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def completed(self) -> int:
        """Number of migrations that ran successfully."""
        return sum(1 for step in self.steps if step.succeeded)

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if not step.succeeded:
                return step
        return None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def render(self) -> str:
        """Render the report as text, one migration per line."""
        verb = "applied" if self.direction is Direction.UP else "rolled back"
        suffix = " (no-commit)" if self.run_mode is RunMode.NO_COMMIT else ""

        if not self.steps and self.ok:
            return "Nothing to do, the state is already up to date"

        lines = []
        for step in self.steps:
            mark = {
                StepStatus.SUCCEEDED: "✓",
                StepStatus.FAILED: "✗",
                StepStatus.UNRECORDED: "!",
            }[step.status]
            lines.append(f"{mark} #{step.index} {step.name} ({step.duration:.2f}s)")
        if self.error is not None:
            lines.append("")
            lines.append(str(self.error))
        lines.append("")
        lines.append(f"{self.completed} migration(s) {verb}{suffix}")
        return "\n".join(lines)


async def create_context(provider: ContextProvider, run_mode: RunMode):
    """Create the execution context for a run.

    Raises:
        DryRunUnsupportedError: If no-commit mode was requested and the
            provider does not support it
        ContextCreationError: If the provider fails
    """
    try:
        if run_mode is RunMode.COMMIT:
            return await provider.create_in_commit_mode()
        ctx = await provider.create_in_no_commit_mode()
    except Exception as e:
        raise ContextCreationError(str(provider), run_mode.value, e) from e

    if ctx is None:
        raise DryRunUnsupportedError(str(provider))
    return ctx


async def release_context(provider: ContextProvider, ctx) -> None:
    """Hand a context back to its provider.

    Failures are logged rather than raised so they cannot replace the
    outcome of the run that used the context.
    """
    try:
        await provider.release(ctx)
    except Exception as e:
        logger.error(f"Provider {provider} failed to release migration context: {e!r}")


async def execute(
    plan: "Plan",
    resolution: Resolution,
    run_mode: RunMode = RunMode.COMMIT,
) -> Report:
    """Run resolved migrations in order.

    Each migration is awaited to completion, and in commit mode its state
    update is awaited before the next one starts. The run stops at the
    first failure; migrations after it are not attempted.

    Args:
        plan: The plan providing the context provider and the state store
        resolution: The migrations to run, from :func:`resolve`
        run_mode: Commit changes or run against a no-commit context

    Returns:
        A report of every migration attempted. Migration failures and
        failed state updates are reported, not raised.

    Raises:
        DryRunUnsupportedError: If no-commit mode is unsupported
        ContextCreationError: If the context cannot be created
    """
    report = Report(direction=resolution.direction, run_mode=run_mode)
    if resolution.is_noop:
        if run_mode is RunMode.NO_COMMIT:
            # A dry run must fail on providers without no-commit mode even
            # when there is nothing to run
            await release_context(
                plan.provider, await create_context(plan.provider, run_mode)
            )
        logger.info("No migrations to run")
        return report

    ctx = await create_context(plan.provider, run_mode)
    try:
        for step in resolution.steps:
            result = await _run_step(plan, step, ctx, resolution.direction, run_mode)
            report.steps.append(result)
            if result.error is not None:
                report.error = result.error
                break
    finally:
        await release_context(plan.provider, ctx)

    if report.ok:
        logger.info(
            f"Ran {report.completed} migration(s) {resolution.direction.value} "
            f"in {run_mode.value} mode"
        )
    return report


async def _run_step(
    plan: "Plan",
    step: PlanEntry,
    ctx,
    direction: Direction,
    run_mode: RunMode,
) -> StepResult:
    logger.info(f"Running migration #{step.index} {step.name} {direction.value}")
    started = time.monotonic()

    try:
        if direction is Direction.UP:
            await step.migration.up(ctx)
        else:
            await step.migration.down(ctx)
    except Exception as e:
        error = MigrationFailedError(step.name, step.index, direction.value, e)
        logger.error(f"Migration #{step.index} {step.name} failed: {e!r}")
        return StepResult(
            step.index, step.name, StepStatus.FAILED,
            time.monotonic() - started, error,
        )

    duration = time.monotonic() - started

    if run_mode is RunMode.COMMIT:
        try:
            if direction is Direction.UP:
                await plan.state_store.record_applied(step.name)
            else:
                await plan.state_store.record_rolled_back(step.name)
        except Exception as e:
            error = StateRecordError(step.name, step.index, direction.value, e)
            logger.critical(str(error))
            return StepResult(
                step.index, step.name, StepStatus.UNRECORDED, duration, error
            )

    logger.info(f"Migration #{step.index} {step.name} finished in {duration:.2f}s")
    return StepResult(step.index, step.name, StepStatus.SUCCEEDED, duration)
