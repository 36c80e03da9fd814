"""Object store collaborator and its two backends.

``LocalObjectStore`` keeps objects on the filesystem and hands out
HMAC-signed ``file://`` URLs with an expiry.  ``S3ObjectStore`` uses boto3
with server-side encryption and presigned URLs.  Both run their blocking
calls through ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import parse_qs, unquote, urlencode, urlparse

if TYPE_CHECKING:
    from contractforge.config import ForgeConfig

logger = logging.getLogger(__name__)

_META_DIR = ".meta"
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
_EXISTS_CODES = frozenset({"412", "PreconditionFailed", "409", "ConditionalRequestConflict"})


class ObjectNotFoundError(LookupError):
    """No object is stored under the requested key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No object stored under {key}")
        self.key = key


class ObjectExistsError(FileExistsError):
    """A conditional write found an object already stored under the key."""

    def __init__(self, key: str) -> None:
        super().__init__(f"An object is already stored under {key}")
        self.key = key


@runtime_checkable
class ObjectStore(Protocol):
    """Minimal async object storage surface used by the pipeline."""

    async def put(
        self,
        key: str,
        data: bytes,
        metadata: dict[str, str] | None = None,
        *,
        if_absent: bool = False,
    ) -> None:
        """Write ``data`` under ``key``.

        With ``if_absent`` the write is atomic and conditional: it raises
        :class:`ObjectExistsError` when the key is already taken.
        """
        ...

    async def get(self, key: str) -> bytes:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        ...

    async def list_keys(self, prefix: str) -> list[str]:
        ...


# ---------------------------------------------------------------------------
# Local filesystem backend
# ---------------------------------------------------------------------------


class LocalObjectStore:
    """Filesystem-backed store rooted at ``root``.

    Object metadata lives beside the objects under ``.meta/`` and is never
    listed as an object.
    """

    def __init__(self, root: Path, *, signing_secret: str = "contractforge-dev-secret") -> None:
        self.root = Path(root)
        self._secret = signing_secret.encode("utf-8")
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes the store root: {key}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self.root / _META_DIR / f"{key}.json"

    # -- blocking implementations -------------------------------------------

    def _put_sync(
        self, key: str, data: bytes, metadata: dict[str, str] | None, if_absent: bool
    ) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        tmp.write_bytes(data)
        try:
            if if_absent:
                # link fails when the target exists, so only one writer wins
                try:
                    os.link(tmp, path)
                except FileExistsError as exc:
                    raise ObjectExistsError(key) from exc
            else:
                tmp.replace(path)
        finally:
            tmp.unlink(missing_ok=True)
        if metadata:
            meta_path = self._meta_path(key)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            meta_path.write_text(json.dumps(metadata, sort_keys=True), encoding="utf-8")

    def _get_sync(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    def _list_sync(self, prefix: str) -> list[str]:
        keys: list[str] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.name.endswith(".tmp"):
                continue
            relative = path.relative_to(self.root).as_posix()
            if relative.startswith(f"{_META_DIR}/"):
                continue
            if relative.startswith(prefix):
                keys.append(relative)
        return sorted(keys)

    # -- ObjectStore ---------------------------------------------------------

    async def put(
        self,
        key: str,
        data: bytes,
        metadata: dict[str, str] | None = None,
        *,
        if_absent: bool = False,
    ) -> None:
        await asyncio.to_thread(self._put_sync, key, data, metadata, if_absent)
        logger.debug("Stored %d bytes at %s", len(data), key)

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get_sync, key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)

    async def head(self, key: str) -> dict[str, str]:
        """Stored object metadata, empty when none was written."""
        meta_path = self._meta_path(key)
        if not await asyncio.to_thread(meta_path.is_file):
            return {}
        return json.loads(await asyncio.to_thread(meta_path.read_text, encoding="utf-8"))

    async def list_keys(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        query = urlencode({"expires": expires, "signature": self._sign(key, expires)})
        return f"{self._path(key).as_uri()}?{query}"

    def _sign(self, key: str, expires: int) -> str:
        message = f"{key}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def verify_url(self, url: str, *, now: float | None = None) -> bool:
        """Check a URL produced by :meth:`signed_url`: signature and expiry."""
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        try:
            expires = int(params["expires"][0])
            signature = params["signature"][0]
        except (KeyError, IndexError, ValueError):
            return False
        try:
            key = Path(unquote(parsed.path)).resolve().relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return False
        if (now if now is not None else time.time()) > expires:
            return False
        return hmac.compare_digest(signature, self._sign(key, expires))


# ---------------------------------------------------------------------------
# S3 backend
# ---------------------------------------------------------------------------


class S3ObjectStore:
    """S3-backed store.

    Parameters
    ----------
    bucket:
        Target bucket name.
    region:
        AWS region used when no client is supplied.
    s3_client:
        Pre-built boto3 S3 client, for tests or shared sessions.
    """

    def __init__(self, bucket: str, *, region: str = "us-east-1", s3_client: Any = None) -> None:
        if not bucket:
            raise ValueError("S3ObjectStore requires a bucket name")
        self.bucket = bucket
        if s3_client is None:
            import boto3

            s3_client = boto3.client("s3", region_name=region)
        self.s3_client = s3_client

    async def put(
        self,
        key: str,
        data: bytes,
        metadata: dict[str, str] | None = None,
        *,
        if_absent: bool = False,
    ) -> None:
        from botocore.exceptions import ClientError

        content_type = "application/json" if key.endswith(".json") else (
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
        )
        conditions = {"IfNoneMatch": "*"} if if_absent else {}
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {},
                ServerSideEncryption="AES256",
                **conditions,
            )
        except ClientError as exc:
            if if_absent and _client_error_code(exc) in _EXISTS_CODES:
                raise ObjectExistsError(key) from exc
            raise
        logger.debug("Stored %d bytes at s3://%s/%s", len(data), self.bucket, key)

    async def get(self, key: str) -> bytes:
        from botocore.exceptions import ClientError

        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object, Bucket=self.bucket, Key=key
            )
        except ClientError as exc:
            if _client_error_code(exc) in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from exc
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(self.s3_client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _client_error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise
        return True

    async def head(self, key: str) -> dict[str, str]:
        response = await asyncio.to_thread(self.s3_client.head_object, Bucket=self.bucket, Key=key)
        return dict(response.get("Metadata", {}))

    async def signed_url(self, key: str, ttl_seconds: int) -> str:
        return await asyncio.to_thread(
            self.s3_client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )

    async def list_keys(self, prefix: str) -> list[str]:
        def _list() -> list[str]:
            keys: list[str] = []
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))
            return sorted(keys)

        return await asyncio.to_thread(_list)


def _client_error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def build_object_store(cfg: ForgeConfig) -> ObjectStore:
    """Instantiate the backend named by ``cfg.storage_backend``."""
    if cfg.storage_backend == "s3":
        logger.info("Using S3 object store: bucket=%s region=%s", cfg.s3_bucket, cfg.aws_region)
        return S3ObjectStore(cfg.s3_bucket, region=cfg.aws_region)
    logger.info("Using local object store at %s", cfg.storage_path)
    return LocalObjectStore(cfg.storage_path, signing_secret=cfg.signing_secret)
