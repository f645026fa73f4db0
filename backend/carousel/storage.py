"""Blob store adapter.

Assets are addressed by ``(bucket, path)``. Writing the same path twice
overwrites, which is what makes re-hosting idempotent. No retries here:
callers decide what to do with a :class:`PersistenceError`.
"""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
from pathlib import Path
from urllib.parse import quote

import requests

from carousel.config import settings
from carousel.errors import PersistenceError

logger = logging.getLogger("carousel.storage")

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+)?(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)
_EXTENSION_OVERRIDES = {"image/jpeg": "jpg", "image/png": "png", "video/mp4": "mp4", "image/webp": "webp"}


def is_data_uri(value: str | None) -> bool:
    return bool(value) and value.startswith("data:")


def decode_data_uri(data_uri: str) -> tuple[bytes, str]:
    match = _DATA_URI_RE.match(data_uri or "")
    if not match:
        raise PersistenceError("Invalid embedded data format")
    mime = match.group("mime") or "application/octet-stream"
    raw = match.group("data")
    try:
        payload = base64.b64decode(raw, validate=True) if match.group("b64") else raw.encode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise PersistenceError(f"Invalid base64 payload: {exc}") from exc
    return payload, mime


def extension_for(content_type: str, default: str = "bin") -> str:
    if content_type in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[content_type]
    guessed = mimetypes.guess_extension(content_type or "")
    return guessed.lstrip(".") if guessed else default


def _check_key(bucket: str, path: str) -> None:
    parts = [bucket, *path.split("/")]
    if any(part in {"", ".", ".."} for part in parts):
        raise PersistenceError(f"Invalid storage key: {bucket}/{path}")


class BlobStore:
    """Subclasses implement ``put_bytes``; uploads from data URIs and URLs build on it."""

    def put_bytes(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    def put_data_uri(self, bucket: str, path: str, data_uri: str) -> str:
        data, content_type = decode_data_uri(data_uri)
        return self.put_bytes(bucket, path, data, content_type)

    def put_from_url(self, bucket: str, path: str, source_url: str, default_content_type: str) -> str:
        try:
            response = requests.get(source_url, timeout=settings.asset_fetch_timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to fetch {source_url}: {exc}") from exc
        content_type = (response.headers.get("content-type") or "").split(";")[0].strip() or default_content_type
        return self.put_bytes(bucket, path, response.content, content_type)


class LocalBlobStore(BlobStore):
    """Files under ``storage_root/files``, served by the API at ``/files``."""

    def __init__(self, root: Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, bucket: str, path: str) -> Path:
        _check_key(bucket, path)
        return self.root / bucket / path

    def put_bytes(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        target = self.path_for(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise PersistenceError(f"Local upload failed for {bucket}/{path}: {exc}") from exc
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/files/{quote(bucket)}/{quote(path)}"


class S3BlobStore(BlobStore):
    def __init__(self, client, public_base_url: str):
        self._client = client
        self.public_base_url = public_base_url.rstrip("/")

    def put_bytes(self, bucket: str, path: str, data: bytes, content_type: str) -> str:
        _check_key(bucket, path)
        try:
            self._client.put_object(Bucket=bucket, Key=path, Body=data, ContentType=content_type)
        except Exception as exc:
            raise PersistenceError(f"S3 upload failed for {bucket}/{path}: {exc}") from exc
        return self.public_url(bucket, path)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{quote(bucket)}/{quote(path)}"


def _build_s3_store() -> S3BlobStore:
    import boto3
    from botocore.client import Config

    if not (settings.s3_endpoint and settings.s3_access_key and settings.s3_secret_key):
        raise PersistenceError("S3 is not configured; set S3_ENDPOINT/S3_ACCESS_KEY/S3_SECRET_KEY")

    client = boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
        config=Config(signature_version="s3v4"),
    )
    return S3BlobStore(client, settings.s3_public_base_url or settings.s3_endpoint)


_blob_store: BlobStore | None = None


def get_blob_store() -> BlobStore:
    """Return the configured blob store (local filesystem unless ``blob_backend=s3``)."""
    global _blob_store
    if _blob_store is not None:
        return _blob_store
    backend = settings.blob_backend.lower()
    if backend == "s3":
        _blob_store = _build_s3_store()
        logger.info("Using S3 blob store at %s", settings.s3_endpoint)
    else:
        if backend != "local":
            logger.warning("Unknown blob backend '%s', using local files", backend)
        _blob_store = LocalBlobStore(settings.files_root, settings.public_base_url)
        logger.info("Using local blob store under %s", settings.files_root)
    return _blob_store
