"""State stores that load and save the whole Pickem document as one JSON blob.

Two media are supported:
- a local JSON file (``file:///path/state.json`` or a bare path)
- an S3 object (``s3://bucket/key``)

Every store records an opaque revision on the state it loads. Saving a state
whose revision no longer matches the stored object raises ``WriteConflict``
instead of silently overwriting a concurrent writer.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import unquote, urlsplit

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .models import MalformedState, PickemState, decode_state, encode_state

logger = logging.getLogger("pickem.connectors")

# Revision recorded when the location held no object at load time.
ABSENT_REVISION = "absent"

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}
_CONFLICT_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}


class StoreError(Exception):
    """Base class for persistence failures."""


class NotReadable(StoreError):
    """Raised when the storage medium cannot be read."""


class Malformed(StoreError):
    """Raised when stored bytes cannot be decoded into a Pickem state."""


class UnsupportedLocation(StoreError):
    """Raised when a state location uses an unknown scheme."""


class WriteFailed(StoreError):
    """Raised when the storage medium rejects a write."""


class WriteConflict(WriteFailed):
    """Raised when the stored object changed since it was loaded."""


def _decode_blob(raw: bytes, location: str, state: PickemState) -> PickemState:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise Malformed(f"Failed to parse {location}: {exc}") from exc
    try:
        return decode_state(payload, state)
    except MalformedState as exc:
        raise Malformed(f"Unexpected document in {location}: {exc}") from exc


def _encode_blob(state: PickemState) -> bytes:
    return json.dumps(encode_state(state), indent=2).encode("utf-8")


class StateStore:
    """Whole-document store: load everything, save everything."""

    location: str = ""

    async def load(self, state: PickemState) -> PickemState:
        raise NotImplementedError

    async def save(self, state: PickemState) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.location}>"


class FileStateStore(StateStore):
    def __init__(self, path: Path):
        self.path = Path(path)
        self.location = str(self.path)

    def _revision(self) -> str:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return ABSENT_REVISION
        return f"{stat.st_mtime_ns}:{stat.st_size}"

    def _read(self) -> Tuple[str, Optional[bytes]]:
        revision = self._revision()
        if revision == ABSENT_REVISION:
            return revision, None
        return revision, self.path.read_bytes()

    def _write(self, data: bytes, expected: Optional[str]) -> str:
        if expected is not None:
            current = self._revision()
            if current != expected:
                raise WriteConflict(
                    f"{self.path} changed since it was loaded ({expected} -> {current})"
                )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        replaced = False
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, self.path)
            replaced = True
        finally:
            if not replaced:
                try:
                    os.unlink(tmp_name)
                except FileNotFoundError:
                    pass
        return self._revision()

    async def load(self, state: PickemState) -> PickemState:
        try:
            revision, raw = await asyncio.to_thread(self._read)
        except OSError as exc:
            raise NotReadable(f"Unable to read {self.path}: {exc}") from exc
        if raw is None:
            logger.debug("No state at %s; starting empty.", self.path)
            state.revision = ABSENT_REVISION
            return state
        loaded = _decode_blob(raw, self.location, state)
        loaded.revision = revision
        logger.debug("Loaded %s channels from %s", len(loaded.channels), self.path)
        return loaded

    async def save(self, state: PickemState) -> None:
        data = _encode_blob(state)
        try:
            revision = await asyncio.to_thread(self._write, data, state.revision)
        except OSError as exc:
            logger.error("Failed to write %s: %s", self.path, exc)
            raise WriteFailed(f"Unable to write {self.path}: {exc}") from exc
        state.revision = revision
        logger.debug("Saved %s channels to %s", len(state.channels), self.path)


class S3StateStore(StateStore):
    def __init__(self, bucket: str, key: str, *, client: Any = None):
        self.bucket = bucket
        self.key = key
        self.location = f"s3://{bucket}/{key}"
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _get_object(self) -> Optional[dict]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_OBJECT_CODES:
                return None
            raise
        return {"ETag": response.get("ETag"), "Body": response["Body"].read()}

    def _put_object(self, body: bytes, revision: Optional[str]) -> Optional[str]:
        params = {
            "Bucket": self.bucket,
            "Key": self.key,
            "Body": body,
            "ContentType": "application/json",
        }
        if revision == ABSENT_REVISION:
            params["IfNoneMatch"] = "*"
        elif revision is not None:
            params["IfMatch"] = revision
        response = self.client.put_object(**params)
        return response.get("ETag")

    async def load(self, state: PickemState) -> PickemState:
        try:
            obj = await asyncio.to_thread(self._get_object)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("Unable to read %s: %s", self.location, exc)
            raise NotReadable(f"Unable to read {self.location}: {exc}") from exc
        if obj is None:
            logger.debug("No state at %s; starting empty.", self.location)
            state.revision = ABSENT_REVISION
            return state
        loaded = _decode_blob(obj["Body"], self.location, state)
        loaded.revision = obj["ETag"]
        logger.debug("Loaded %s channels from %s", len(loaded.channels), self.location)
        return loaded

    async def save(self, state: PickemState) -> None:
        data = _encode_blob(state)
        try:
            etag = await asyncio.to_thread(self._put_object, data, state.revision)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _CONFLICT_CODES:
                raise WriteConflict(f"{self.location} changed since it was loaded") from exc
            logger.error("Failed to write %s: %s", self.location, exc)
            raise WriteFailed(f"Unable to write {self.location}: {exc}") from exc
        except BotoCoreError as exc:
            logger.error("Failed to write %s: %s", self.location, exc)
            raise WriteFailed(f"Unable to write {self.location}: {exc}") from exc
        state.revision = etag
        logger.debug("Saved %s channels to %s", len(state.channels), self.location)


def store_from_url(url: str, *, s3_client: Any = None) -> StateStore:
    """Build the store addressed by ``url``."""
    raw = (url or "").strip()
    if not raw:
        raise UnsupportedLocation("State location is empty")
    parts = urlsplit(raw)
    scheme = parts.scheme.lower()
    if scheme == "":
        return FileStateStore(Path(raw).expanduser())
    if scheme == "file":
        path = unquote(parts.path)
        if not path:
            raise UnsupportedLocation(f"No path in state location {raw}")
        return FileStateStore(Path(path))
    if scheme == "s3":
        bucket = parts.netloc
        key = unquote(parts.path.lstrip("/"))
        if not bucket or not key:
            raise UnsupportedLocation(f"Cannot parse bucket and key from {raw}")
        return S3StateStore(bucket, key, client=s3_client)
    raise UnsupportedLocation(f"Unknown protocol: {parts.scheme}:")


__all__ = [
    "ABSENT_REVISION",
    "FileStateStore",
    "Malformed",
    "NotReadable",
    "S3StateStore",
    "StateStore",
    "StoreError",
    "UnsupportedLocation",
    "WriteConflict",
    "WriteFailed",
    "store_from_url",
]
