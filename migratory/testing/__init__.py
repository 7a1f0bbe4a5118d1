"""Testing utilities for migratory plans and state backends.

Usage in conftest.py:
    pytest_plugins = ["migratory.testing.fixtures"]

Or build test plans directly:
    from migratory.testing import RecordingContextProvider, recording_migration
"""

from migratory.testing.mocks import (
    InMemoryS3,
    RecordingContext,
    RecordingContextProvider,
    mock_s3_client,
    recording_migration,
)
from migratory.testing.state import check_state_locking, check_state_store

__all__ = [
    "InMemoryS3",
    "RecordingContext",
    "RecordingContextProvider",
    "check_state_locking",
    "check_state_store",
    "mock_s3_client",
    "recording_migration",
]
