"""State storage backends for migratory."""

from migratory.core.exceptions import ConfigurationError
from migratory.core.settings import MigrateSettings
from migratory.state.base import (
    AppliedMigration,
    DocumentStateStore,
    StateDocument,
    StateLock,
    StateStore,
)
from migratory.state.file import FileStateStore
from migratory.state.memory import InMemoryStateStore
from migratory.state.s3 import S3StateStore


def create_state_store(settings: MigrateSettings, s3_client=None) -> StateStore:
    """Create the state store configured in the settings.

    Args:
        settings: migratory settings
        s3_client: Async S3 client, required for the ``s3`` backend

    Returns:
        The configured state store

    Raises:
        ConfigurationError: If the backend is missing required settings
    """
    if settings.state_backend == "file":
        return FileStateStore(settings.state_file)
    if settings.state_backend == "memory":
        return InMemoryStateStore()

    if not settings.aws_bucket_name:
        raise ConfigurationError(missing_fields=["AWS_BUCKET_NAME"])
    if s3_client is None:
        raise ConfigurationError("The s3 state backend requires an S3 client")
    return S3StateStore(s3_client, settings.aws_bucket_name, settings.state_key)


__all__ = [
    "AppliedMigration",
    "DocumentStateStore",
    "FileStateStore",
    "InMemoryStateStore",
    "S3StateStore",
    "StateDocument",
    "StateLock",
    "StateStore",
    "create_state_store",
]
