"""
Media store adapter (S3-compatible) plus helpers for staged uploads.

Photos and videos are accepted as multipart files, staged on local disk under
``settings.UPLOAD_DIR``, then pushed to the bucket. The store hands back the
public URL and an opaque ``media_id`` (the object key), which is all a Post
keeps.

boto3 is synchronous, so every call is moved to a worker thread. The batch
helpers run one task per item and report every outcome in a ``BatchResult``
rather than stopping at the first failure.
"""
import asyncio
import logging
import mimetypes
import shutil
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config
from fastapi import UploadFile

from social_api.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaItem:
    url: str
    media_id: str

    def to_dict(self) -> dict:
        return {"url": self.url, "media_id": self.media_id}


class MediaStore(Protocol):
    async def upload(self, local_path: Path) -> MediaItem: ...

    async def delete(self, media_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# S3 implementation
# ---------------------------------------------------------------------------

class S3MediaStore:
    """Media store backed by an S3-compatible bucket (AWS S3, MinIO, ...)."""

    def __init__(
        self,
        bucket: str = settings.MEDIA_BUCKET,
        endpoint_url: str | None = settings.MEDIA_ENDPOINT_URL,
        public_url: str | None = settings.MEDIA_PUBLIC_URL,
    ) -> None:
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_url = public_url
        self._s3 = None

    def _client(self):
        if self._s3 is None:
            self._s3 = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=settings.MEDIA_ACCESS_KEY,
                aws_secret_access_key=settings.MEDIA_SECRET_KEY,
                config=Config(signature_version="s3v4"),
                region_name=settings.MEDIA_REGION,
            )
        return self._s3

    def _object_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{settings.MEDIA_REGION}.amazonaws.com/{key}"

    def _upload_sync(self, local_path: Path) -> MediaItem:
        kind = (mimetypes.guess_type(local_path.name)[0] or "application/octet-stream")
        key = f"{kind.split('/')[0]}/{uuid.uuid4().hex}{local_path.suffix.lower()}"
        self._client().upload_file(
            str(local_path),
            self.bucket,
            key,
            ExtraArgs={"ContentType": kind},
        )
        logger.debug("Uploaded %s to s3://%s/%s", local_path.name, self.bucket, key)
        return MediaItem(url=self._object_url(key), media_id=key)

    def _delete_sync(self, media_id: str) -> bool:
        self._client().delete_object(Bucket=self.bucket, Key=media_id)
        logger.debug("Deleted s3://%s/%s", self.bucket, media_id)
        return True

    async def upload(self, local_path: Path) -> MediaItem:
        if not local_path.is_file():
            raise FileNotFoundError(f"Upload source {local_path} is missing")
        return await asyncio.to_thread(self._upload_sync, local_path)

    async def delete(self, media_id: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, media_id)


# ---------------------------------------------------------------------------
# Batch helpers
# ---------------------------------------------------------------------------

@dataclass
class BatchResult:
    """Per-item outcome of a batch of media-store calls."""

    succeeded: list[Any] = field(default_factory=list)
    failed: list[tuple[Any, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


async def upload_all(store: MediaStore, paths: list[Path]) -> BatchResult:
    """
    Upload every staged file concurrently.

    ``succeeded`` holds the ``MediaItem`` results in input order; failed paths
    land in ``failed`` with the error text. Staged files are removed whatever
    the outcome.
    """
    async def _one(path: Path):
        try:
            return await store.upload(path)
        except Exception as exc:
            return exc
        finally:
            path.unlink(missing_ok=True)

    batch = BatchResult()
    for path, outcome in zip(paths, await asyncio.gather(*(_one(p) for p in paths))):
        if isinstance(outcome, Exception):
            logger.warning("Upload of %s failed: %s", path.name, outcome)
            batch.failed.append((path, str(outcome)))
        else:
            batch.succeeded.append(outcome)
    return batch


async def delete_all(store: MediaStore, media_ids: list[str]) -> BatchResult:
    """Delete every media id concurrently; ``succeeded`` holds the deleted ids."""
    async def _one(media_id: str):
        try:
            return await store.delete(media_id)
        except Exception as exc:
            return exc

    batch = BatchResult()
    for media_id, outcome in zip(media_ids, await asyncio.gather(*(_one(m) for m in media_ids))):
        if outcome is True:
            batch.succeeded.append(media_id)
        else:
            reason = str(outcome) if isinstance(outcome, Exception) else "store reported failure"
            logger.warning("Delete of media %s failed: %s", media_id, reason)
            batch.failed.append((media_id, reason))
    return batch


# ---------------------------------------------------------------------------
# Multipart staging
# ---------------------------------------------------------------------------

def _stage_sync(upload: UploadFile, target: Path) -> Path:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        shutil.copyfileobj(upload.file, out)
    return target


async def stage_uploads(uploads: list[UploadFile] | None) -> list[Path]:
    """
    Copy multipart uploads to the staging directory and return their paths.

    If any copy fails, the files already staged by this call are removed
    before the error propagates.
    """
    paths: list[Path] = []
    try:
        for upload in uploads or []:
            if not upload.filename:
                continue
            name = Path(upload.filename).name
            target = Path(settings.UPLOAD_DIR) / f"{uuid.uuid4().hex}-{name}"
            paths.append(target)
            await asyncio.to_thread(_stage_sync, upload, target)
    except BaseException:
        for path in paths:
            path.unlink(missing_ok=True)
        raise
    return paths


# Lazily-configured singleton used by the ``get_media_store`` dependency.
media_store = S3MediaStore()
