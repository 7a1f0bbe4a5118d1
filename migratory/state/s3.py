"""State store backed by an S3 object."""

import json
import logging
import os
import socket
import uuid
from datetime import datetime, timezone

from botocore.exceptions import ClientError

from migratory.core.exceptions import LockHeldError, StateBackendError
from migratory.state.base import DocumentStateStore, StateLock

logger = logging.getLogger(__name__)

LOCK_HELD_CODES = ("PreconditionFailed", "412", "ConditionalRequestConflict")


class _S3Lock(StateLock):
    def __init__(self, store: "S3StateStore", token: str):
        super().__init__(f"s3://{store.bucket_name}/{store.lock_key}")
        self._store = store
        self.token = token

    async def _release(self) -> None:
        current = await self._store._read_lock()
        if current is None or current.get("token") != self.token:
            logger.warning(
                f"Migration state lock {self.resource} was taken over, leaving it in place"
            )
            return
        try:
            await self._store.s3_client.delete_object(
                Bucket=self._store.bucket_name,
                Key=self._store.lock_key,
            )
        except ClientError as e:
            raise StateBackendError(
                f"Failed to release migration state lock {self.resource}: {e}",
                operation="delete_object",
                original_error=e,
            )


class S3StateStore(DocumentStateStore):
    """Stores the migration state as a JSON object in S3.

    Locking creates a sibling ``<key>.lock`` object with a conditional put
    (``IfNoneMatch="*"``), which S3 only accepts when the object does not
    exist yet. The lock object names the host and process holding it and
    carries a random token; a holder only deletes the lock object if it
    still holds its token, so a forced takeover survives the previous
    holder releasing.
    """

    def __init__(
        self,
        s3_client,
        bucket_name: str,
        key: str = "_system/migration_state.json",
    ):
        """Initialize the store.

        Args:
            s3_client: An async S3 client (aiobotocore or compatible)
            bucket_name: The S3 bucket name
            key: Key of the state object
        """
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.key = key
        self.lock_key = f"{key}.lock"

    async def fetch(self) -> bytes:
        try:
            response = await self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=self.key,
            )
            return await response["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return b""
            raise StateBackendError(
                f"Failed to load migration state s3://{self.bucket_name}/{self.key}: {e}",
                operation="get_object",
                original_error=e,
            )

    async def update(self, payload: bytes) -> None:
        try:
            await self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self.key,
                Body=payload,
                ContentType="application/json",
            )
        except ClientError as e:
            raise StateBackendError(
                f"Failed to save migration state s3://{self.bucket_name}/{self.key}: {e}",
                operation="put_object",
                original_error=e,
            )

    async def acquire_lock(self, force: bool = False) -> StateLock:
        token = uuid.uuid4().hex
        body = json.dumps({
            "token": token,
            "owner": f"{socket.gethostname()}:{os.getpid()}",
            "locked_at": datetime.now(timezone.utc).isoformat(),
        }).encode("utf-8")

        params = {
            "Bucket": self.bucket_name,
            "Key": self.lock_key,
            "Body": body,
            "ContentType": "application/json",
        }
        if not force:
            params["IfNoneMatch"] = "*"

        try:
            await self.s3_client.put_object(**params)
        except ClientError as e:
            if e.response["Error"]["Code"] in LOCK_HELD_CODES:
                raise LockHeldError(
                    f"s3://{self.bucket_name}/{self.lock_key}",
                    await self._read_owner(),
                )
            raise StateBackendError(
                f"Failed to acquire migration state lock s3://{self.bucket_name}/{self.lock_key}: {e}",
                operation="put_object",
                original_error=e,
            )

        if force:
            logger.warning(
                f"Force-acquired migration state lock s3://{self.bucket_name}/{self.lock_key}"
            )
        return _S3Lock(self, token)

    async def _read_lock(self) -> dict | None:
        """Read the lock object, or None if nobody holds the lock."""
        try:
            response = await self.s3_client.get_object(
                Bucket=self.bucket_name,
                Key=self.lock_key,
            )
            raw = await response["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                return None
            raise StateBackendError(
                f"Failed to read migration state lock s3://{self.bucket_name}/{self.lock_key}: {e}",
                operation="get_object",
                original_error=e,
            )
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def _read_owner(self) -> str | None:
        try:
            data = await self._read_lock()
        except StateBackendError as e:
            logger.debug(f"Could not read migration lock owner: {e}")
            return None
        if not data:
            return None
        return f"{data.get('owner')} since {data.get('locked_at')}"
