"""Pytest fixtures for migratory testing.

To use these fixtures, add to your conftest.py:

    pytest_plugins = ["migratory.testing.fixtures"]
"""

import pytest

from migratory.core.settings import MigrateSettings
from migratory.state.memory import InMemoryStateStore
from migratory.testing.mocks import InMemoryS3, RecordingContextProvider


@pytest.fixture
def migrate_settings(tmp_path) -> MigrateSettings:
    """Provide settings pointing the file backend at a temporary directory."""
    return MigrateSettings(
        _env_file=None,
        state_backend="file",
        state_file=str(tmp_path / "migration-state"),
        aws_bucket_name="test-bucket",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def mock_s3() -> InMemoryS3:
    """Provide in-memory S3 mock."""
    s3 = InMemoryS3()
    yield s3
    s3.clear()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    """Provide an empty in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def provider() -> RecordingContextProvider:
    """Provide a context provider that supports no-commit mode."""
    return RecordingContextProvider()
