"""Tests for the migratory CLI."""

import asyncio
import json

import pytest
from click.testing import CliRunner

from migratory import __version__
from migratory.cli import cli, run
from migratory.plan.builder import PlanBuilder
from migratory.state.memory import InMemoryStateStore
from migratory.testing import RecordingContextProvider, recording_migration

APP_FILE = '''
from migratory import PlanBuilder
from migratory.testing import RecordingContextProvider, recording_migration


def plan(state_store):
    return (
        PlanBuilder(state_store, RecordingContextProvider())
        .migration("001-init", recording_migration("001-init"))
        .migration("002-users", recording_migration("002-users"))
    )
'''


def make_builder(store, provider, *names, irreversible=(), failing=None):
    failing = failing or {}
    builder = PlanBuilder(store, provider)
    for name in names:
        builder.migration(
            name,
            recording_migration(
                name,
                reversible=name not in irreversible,
                fail_up=failing.get(name),
            ),
        )
    return builder


def applied(store):
    return asyncio.run(store.list_applied())


@pytest.fixture
def runner():
    return CliRunner()


class TestUp:
    """Tests for the up command."""

    def test_apply_all(self, runner, provider):
        """Test up applies every pending migration."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a", "b")

        result = runner.invoke(cli, ["up"], obj={"target": builder})

        assert result.exit_code == 0
        assert "✓ #0 a" in result.output
        assert "✅ Done" in result.output
        assert provider.last.calls == ["a:up", "b:up"]
        assert applied(store) == ["a", "b"]

    def test_apply_count(self, runner, provider):
        """Test up --count applies only the next N."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a", "b", "c")

        result = runner.invoke(cli, ["up", "-n", "2"], obj={"target": builder})

        assert result.exit_code == 0
        assert applied(store) == ["a", "b"]

    def test_apply_to(self, runner, provider):
        """Test up --to stops at the named migration."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a", "b", "c")

        result = runner.invoke(cli, ["up", "--to", "b"], obj={"target": builder})

        assert result.exit_code == 0
        assert applied(store) == ["a", "b"]

    def test_count_and_to_conflict(self, runner, provider):
        """Test --count and --to are mutually exclusive."""
        builder = make_builder(InMemoryStateStore(), provider, "a")

        result = runner.invoke(cli, ["up", "-n", "1", "--to", "a"], obj={"target": builder})

        assert result.exit_code == 2
        assert provider.contexts == []

    def test_negative_count_rejected(self, runner, provider):
        """Test counts must not be negative."""
        builder = make_builder(InMemoryStateStore(), provider, "a")

        result = runner.invoke(cli, ["up", "-n", "-1"], obj={"target": builder})

        assert result.exit_code == 2

    def test_unknown_target(self, runner, provider):
        """Test an unknown --to name fails with the available names."""
        builder = make_builder(InMemoryStateStore(), provider, "a")

        result = runner.invoke(cli, ["up", "--to", "zzz"], obj={"target": builder})

        assert result.exit_code == 1
        assert "❌ Unknown migration name specified: 'zzz'" in result.output
        assert "Available migrations: [a]" in result.output

    def test_no_run(self, runner, provider):
        """Test --no-run prints the resolution without running it."""
        store = InMemoryStateStore(applied=["a"])
        builder = make_builder(store, provider, "a", "b", "c")

        result = runner.invoke(cli, ["up", "--no-run"], obj={"target": builder})

        assert result.exit_code == 0
        assert "2 migration(s) to run up" in result.output
        assert "#1 b" in result.output
        assert provider.contexts == []
        assert applied(store) == ["a"]

    def test_no_commit(self, runner, provider):
        """Test --no-commit runs migrations but records nothing."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a")

        result = runner.invoke(cli, ["up", "--no-commit"], obj={"target": builder})

        assert result.exit_code == 0
        assert "(no-commit)" in result.output
        assert provider.last.mode == "no-commit"
        assert applied(store) == []

    def test_no_commit_and_no_run_conflict(self, runner, provider):
        """Test --no-commit and --no-run cannot be combined."""
        builder = make_builder(InMemoryStateStore(), provider, "a")

        result = runner.invoke(cli, ["up", "--no-commit", "--no-run"], obj={"target": builder})

        assert result.exit_code == 2

    def test_failure_exit_code(self, runner, provider):
        """Test a failing migration exits non-zero after the report."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a", "b", failing={"b": RuntimeError("boom")})

        result = runner.invoke(cli, ["up"], obj={"target": builder})

        assert result.exit_code == 1
        assert "✗ #1 b" in result.output
        assert "✅ Done" not in result.output
        assert applied(store) == ["a"]

    def test_drift_is_reported(self, runner, provider):
        """Test drifted state fails before anything runs."""
        store = InMemoryStateStore(applied=["x"])
        builder = make_builder(store, provider, "a")

        result = runner.invoke(cli, ["up"], obj={"target": builder})

        assert result.exit_code == 1
        assert "❌ Applied migration 'x'" in result.output
        assert provider.contexts == []

    def test_lock_held(self, runner, provider):
        """Test a held lock fails the run unless forced."""
        store = InMemoryStateStore()
        asyncio.run(store.acquire_lock())
        builder = make_builder(store, provider, "a")

        result = runner.invoke(cli, ["up"], obj={"target": builder})

        assert result.exit_code == 1
        assert "lock" in result.output
        assert applied(store) == []

        result = runner.invoke(cli, ["up", "--force-lock"], obj={"target": builder})

        assert result.exit_code == 0
        assert applied(store) == ["a"]


class TestDown:
    """Tests for the down command."""

    def test_requires_a_bound(self, runner, provider):
        """Test a bare down is refused."""
        store = InMemoryStateStore(applied=["a"])
        builder = make_builder(store, provider, "a")

        result = runner.invoke(cli, ["down"], obj={"target": builder})

        assert result.exit_code == 2
        assert "Specify exactly one of --count, --to or --all" in result.output
        assert applied(store) == ["a"]

    def test_rejects_multiple_bounds(self, runner, provider):
        """Test only one bound may be given."""
        builder = make_builder(InMemoryStateStore(applied=["a"]), provider, "a")

        result = runner.invoke(cli, ["down", "--all", "-n", "1"], obj={"target": builder})

        assert result.exit_code == 2

    def test_rollback_count(self, runner, provider):
        """Test down --count rolls back the newest migrations."""
        store = InMemoryStateStore(applied=["a", "b", "c"])
        builder = make_builder(store, provider, "a", "b", "c")

        result = runner.invoke(cli, ["down", "-n", "1"], obj={"target": builder})

        assert result.exit_code == 0
        assert "1 migration(s) rolled back" in result.output
        assert provider.last.calls == ["c:down"]
        assert applied(store) == ["a", "b"]

    def test_rollback_to(self, runner, provider):
        """Test down --to includes the named migration."""
        store = InMemoryStateStore(applied=["a", "b", "c"])
        builder = make_builder(store, provider, "a", "b", "c")

        result = runner.invoke(cli, ["down", "--to", "b"], obj={"target": builder})

        assert result.exit_code == 0
        assert applied(store) == ["a"]

    def test_irreversible(self, runner, provider):
        """Test down --all refuses irreversible migrations up front."""
        store = InMemoryStateStore(applied=["a", "b"])
        builder = make_builder(store, provider, "a", "b", irreversible=("a",))

        result = runner.invoke(cli, ["down", "--all"], obj={"target": builder})

        assert result.exit_code == 1
        assert "Cannot roll back irreversible migration(s): a" in result.output
        assert provider.contexts == []
        assert applied(store) == ["a", "b"]


class TestInspection:
    """Tests for list, status and version."""

    def test_list(self, runner, provider):
        """Test list shows migrations in plan order."""
        builder = make_builder(InMemoryStateStore(), provider, "a", "b", irreversible=("b",))

        result = runner.invoke(cli, ["list"], obj={"target": builder})

        assert result.exit_code == 0
        assert "#0 a: Recording migration a" in result.output
        assert "#1 b: Recording migration b (irreversible)" in result.output

    def test_status(self, runner, provider):
        """Test status marks applied and pending migrations."""
        builder = make_builder(InMemoryStateStore(applied=["a"]), provider, "a", "b")

        result = runner.invoke(cli, ["status"], obj={"target": builder})

        assert result.exit_code == 0
        assert "✓ #0 a" in result.output
        assert "○ #1 b" in result.output
        assert "Applied: 1, pending: 1" in result.output

    def test_version(self, runner):
        """Test version prints the package version."""
        result = runner.invoke(cli, ["version"])

        assert result.exit_code == 0
        assert f"migratory version: {__version__}" in result.output


class TestAppFile:
    """Tests for loading the plan from a Python file."""

    def test_up_with_file_state(self, runner, tmp_path):
        """Test a factory in an app file gets the configured state store."""
        app_file = tmp_path / "migrations.py"
        app_file.write_text(APP_FILE)
        state_file = tmp_path / "state" / "migration-state"
        args = ["--app", str(app_file), "--state-backend", "file", "--state-file", str(state_file)]

        result = runner.invoke(cli, args + ["up"])

        assert result.exit_code == 0, result.output
        data = json.loads(state_file.read_text())
        assert [m["name"] for m in data["applied_migrations"]] == ["001-init", "002-users"]

        result = runner.invoke(cli, args + ["status"])

        assert "Applied: 2, pending: 0" in result.output

    def test_state_options_with_ready_builder(self, runner, provider, tmp_path):
        """Test state options are refused when the builder has its own store."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a")

        result = runner.invoke(
            cli,
            ["--state-file", str(tmp_path / "state"), "up"],
            obj={"target": builder},
        )

        assert result.exit_code == 2
        assert "--state-file cannot be used with a PlanBuilder" in result.output
        assert provider.contexts == []
        assert applied(store) == []

    def test_missing_app_file(self, runner, tmp_path):
        """Test a missing app file is reported."""
        result = runner.invoke(cli, ["--app", str(tmp_path / "nope.py"), "list"])

        assert result.exit_code == 1
        assert "Failed to load migration" in result.output

    def test_missing_attr(self, runner, tmp_path):
        """Test a missing plan attribute is reported."""
        app_file = tmp_path / "migrations.py"
        app_file.write_text(APP_FILE)

        result = runner.invoke(cli, ["--app", str(app_file), "--attr", "other", "list"])

        assert result.exit_code == 1
        assert "no attribute named 'other'" in result.output

    def test_attr_of_wrong_type(self, runner, tmp_path):
        """Test a plan attribute that is not a builder is a usage error."""
        app_file = tmp_path / "migrations.py"
        app_file.write_text("plan = 42\n")

        result = runner.invoke(cli, ["--app", str(app_file), "list"])

        assert result.exit_code == 2

    def test_s3_backend_requires_bucket(self, runner, tmp_path, monkeypatch):
        """Test the s3 backend refuses to start without a bucket."""
        monkeypatch.delenv("AWS_BUCKET_NAME", raising=False)
        monkeypatch.chdir(tmp_path)
        app_file = tmp_path / "migrations.py"
        app_file.write_text(APP_FILE)

        result = runner.invoke(cli, ["--app", str(app_file), "--state-backend", "s3", "list"])

        assert result.exit_code == 1
        assert "AWS_BUCKET_NAME" in result.output


class TestRun:
    """Tests for embedding the CLI around an in-process plan."""

    def test_run(self, provider, capsys):
        """Test run drives the CLI with the given builder."""
        store = InMemoryStateStore()
        builder = make_builder(store, provider, "a")

        with pytest.raises(SystemExit) as exc_info:
            run(builder, ["up"])

        assert exc_info.value.code == 0
        assert "✅ Done" in capsys.readouterr().out
        assert applied(store) == ["a"]
