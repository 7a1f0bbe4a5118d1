"""migratory CLI."""

import asyncio
import importlib.util
import inspect
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import click

from migratory.core.client import S3ClientManager
from migratory.core.exceptions import MigrateError, MigrationLoadError
from migratory.core.settings import MigrateSettings
from migratory.plan.base import RunMode
from migratory.plan.builder import Plan, PlanBuilder
from migratory.plan.selection import Selection
from migratory.state import create_state_store

logger = logging.getLogger(__name__)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_target(app_file: str, attr: str):
    """Load the plan builder (or builder factory) from a Python file."""
    path = Path(app_file)
    if not path.exists():
        raise MigrationLoadError(app_file, "file not found")

    spec = importlib.util.spec_from_file_location("migratory_app", path)
    if not spec or not spec.loader:
        raise MigrationLoadError(app_file, "not an importable Python file")

    module = importlib.util.module_from_spec(spec)
    sys.modules["migratory_app"] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise MigrationLoadError(app_file, repr(e)) from e

    if not hasattr(module, attr):
        raise MigrationLoadError(app_file, f"no attribute named '{attr}'")
    return getattr(module, attr)


@asynccontextmanager
async def _open_plan(obj: dict) -> AsyncGenerator[Plan, None]:
    """Build the plan, creating the configured state store when needed.

    The target is either a ready ``PlanBuilder`` (which brings its own
    state store) or a callable taking a state store and returning one.
    """
    settings: MigrateSettings = obj["settings"]
    target = obj.get("target")
    if target is None:
        target = _load_target(obj["app_file"], obj["attr"])

    if isinstance(target, PlanBuilder):
        if obj.get("state_options"):
            raise click.UsageError(
                f"{', '.join(obj['state_options'])} cannot be used with a PlanBuilder "
                "that brings its own state store; expose a factory taking the "
                "state store instead"
            )
        yield target.build()
        return

    if not callable(target):
        raise click.UsageError(
            f"'{obj['attr']}' must be a PlanBuilder or a callable returning one"
        )

    async def _builder(state_store) -> PlanBuilder:
        builder = target(state_store)
        if inspect.isawaitable(builder):
            builder = await builder
        if not isinstance(builder, PlanBuilder):
            raise click.UsageError(
                f"'{obj['attr']}' returned {type(builder).__name__}, expected PlanBuilder"
            )
        return builder

    if settings.state_backend == "s3":
        manager = S3ClientManager(settings)
        async with manager.get_async_client() as s3_client:
            builder = await _builder(create_state_store(settings, s3_client))
            yield builder.build()
    else:
        builder = await _builder(create_state_store(settings))
        yield builder.build()


def _invoke(coro_fn) -> None:
    """Run an async command body and translate failures into exit codes."""
    ctx = click.get_current_context()
    try:
        ok = asyncio.run(coro_fn())
    except MigrateError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)
        return
    if not ok:
        ctx.exit(1)


def _run_selection(
    obj: dict,
    selection: Selection,
    no_commit: bool,
    no_run: bool,
    force_lock: bool,
) -> None:
    if no_commit and no_run:
        raise click.UsageError("--no-commit and --no-run cannot be used together")

    async def _run():
        async with _open_plan(obj) as plan:
            if no_run:
                resolution = await plan.resolve(selection, force_lock=force_lock)
                click.echo(resolution.describe())
                return True

            run_mode = RunMode.NO_COMMIT if no_commit else RunMode.COMMIT
            report = await plan.run(selection, run_mode, force_lock=force_lock)
            click.echo(report.render())
            if report.ok:
                click.echo("✅ Done")
            return report.ok

    _invoke(_run)


def _plan_options(func):
    func = click.option(
        "--force-lock", is_flag=True,
        help="Take the state lock even if another runner holds it",
    )(func)
    func = click.option(
        "--no-run", is_flag=True,
        help="Only show the migrations that would run",
    )(func)
    func = click.option(
        "--no-commit", is_flag=True,
        help="Run migrations against a no-commit context and record nothing",
    )(func)
    return func


@click.group()
@click.option("--app", "app_file", default="migrations.py", help="Python file defining the plan")
@click.option("--attr", default="plan", help="Name of the PlanBuilder (or factory) in the app file")
@click.option("--state-backend", type=click.Choice(["file", "s3", "memory"]), help="State storage backend")
@click.option("--state-file", help="State file path (file backend)")
@click.option("--bucket", help="S3 bucket name (s3 backend)")
@click.option("--key", help="S3 key of the state object (s3 backend)")
@click.option("--endpoint", help="S3 endpoint URL (for LocalStack)")
@click.option("--log-level", help="Logging level")
@click.pass_context
def cli(ctx, app_file, attr, state_backend, state_file, bucket, key, endpoint, log_level):
    """migratory CLI - Apply and roll back migrations."""
    overrides = {
        "state_backend": state_backend,
        "state_file": state_file,
        "aws_bucket_name": bucket,
        "state_key": key,
        "aws_url": endpoint,
        "log_level": log_level,
    }
    settings = MigrateSettings(**{k: v for k, v in overrides.items() if v is not None})
    _configure_logging(settings.log_level)

    ctx.ensure_object(dict)
    ctx.obj.setdefault("target", None)
    ctx.obj.update(
        settings=settings,
        app_file=app_file,
        attr=attr,
        state_options=[
            flag for flag, value in (
                ("--state-backend", state_backend),
                ("--state-file", state_file),
                ("--bucket", bucket),
                ("--key", key),
                ("--endpoint", endpoint),
            ) if value is not None
        ],
    )


@cli.command()
@click.option("--count", "-n", type=click.IntRange(min=0), help="Apply only the next N pending migrations")
@click.option("--to", "target", help="Name of the last migration to apply (inclusive)")
@_plan_options
@click.pass_obj
def up(obj, count, target, no_commit, no_run, force_lock):
    """Apply pending migrations."""
    if count is not None and target:
        raise click.UsageError("--count and --to cannot be used together")

    if target:
        selection = Selection.apply_to(target)
    elif count is not None:
        selection = Selection.apply_next(count)
    else:
        selection = Selection.apply_all()

    _run_selection(obj, selection, no_commit, no_run, force_lock)


@cli.command()
@click.option("--count", "-n", type=click.IntRange(min=0), help="Roll back the last N applied migrations")
@click.option("--to", "target", help="Name of the last migration to roll back (inclusive)")
@click.option("--all", "rollback_all", is_flag=True, help="Roll back every applied migration")
@_plan_options
@click.pass_obj
def down(obj, count, target, rollback_all, no_commit, no_run, force_lock):
    """Roll back applied migrations.

    A bound is required so that a bare `down` never wipes the target.
    """
    chosen = [opt for opt, value in (("--count", count is not None), ("--to", target), ("--all", rollback_all)) if value]
    if len(chosen) != 1:
        raise click.UsageError("Specify exactly one of --count, --to or --all")

    if target:
        selection = Selection.rollback_to(target)
    elif count is not None:
        selection = Selection.rollback(count)
    else:
        selection = Selection.rollback_all()

    _run_selection(obj, selection, no_commit, no_run, force_lock)


@cli.command("list")
@click.pass_obj
def list_migrations(obj):
    """List registered migrations in order."""

    async def _list():
        async with _open_plan(obj) as plan:
            click.echo(plan.describe())
        return True

    _invoke(_list)


@cli.command()
@click.pass_obj
def status(obj):
    """Show which migrations are applied."""

    async def _status():
        async with _open_plan(obj) as plan:
            rows = await plan.status()

        click.echo("\n📋 Migration Status:\n")
        if not rows:
            click.echo("No migrations registered")
            return True

        for row in rows:
            mark = "✓" if row.applied else "○"
            line = f"  {mark} #{row.index} {row.name}"
            if row.description:
                line += f": {row.description}"
            click.echo(line)

        applied = sum(1 for row in rows if row.applied)
        click.echo(f"\nApplied: {applied}, pending: {len(rows) - applied}")
        return True

    _invoke(_status)


@cli.command()
def version():
    """Show migratory version."""
    from migratory import __version__

    click.echo(f"migratory version: {__version__}")


def run(target, args: list[str] | None = None) -> None:
    """Run the CLI around an in-process plan.

    Lets a project ship its own migration script instead of pointing
    ``--app`` at a file.

    Example:
        if __name__ == "__main__":
            migratory.cli.run(
                PlanBuilder(FileStateStore("migration-state"))
                .context_provider(DatabaseProvider())
                .migration("001-init", Init())
            )

    Args:
        target: A PlanBuilder, or a callable taking a state store and
            returning one
        args: Command line arguments (defaults to ``sys.argv[1:]``)
    """
    cli.main(args=args, obj={"target": target}, prog_name="migratory")


if __name__ == "__main__":
    cli()
