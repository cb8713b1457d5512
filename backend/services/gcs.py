"""GCS helpers for interview recordings: keys, signed write URLs, server-side writes."""

import logging
import os
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "mockview-recordings"
UPLOAD_URL_EXPIRATION_SECONDS = 3600  # 1 hour
DEFAULT_CONTENT_TYPE = "video/webm"
KEY_PREFIX = "videos"

_KEY_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
_KEY_SUFFIX_LENGTH = 12


@dataclass(frozen=True)
class ObjectInfo:
    exists: bool
    size: int | None = None
    last_modified: datetime | None = None
    content_type: str | None = None


def get_bucket_name() -> str:
    """Bucket name from env or default."""
    return os.environ.get("GCS_BUCKET", "").strip() or DEFAULT_BUCKET


def get_upload_url_expiration() -> int:
    raw = os.environ.get("UPLOAD_URL_EXPIRATION_SECONDS", "").strip()
    return int(raw) if raw.isdigit() else UPLOAD_URL_EXPIRATION_SECONDS


def generate_storage_key(*, now_ms: int | None = None, prefix: str = KEY_PREFIX) -> str:
    """
    New object key for one recording: videos/interview-<epoch ms>-<random>.webm.

    Timestamp plus a random suffix, so keys never repeat across sessions.
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(_KEY_SUFFIX_LENGTH))
    return f"{prefix}/interview-{millis}-{suffix}.webm"


def gcs_uri(blob_name: str, *, bucket_name: str | None = None) -> str:
    return f"gs://{bucket_name or get_bucket_name()}/{blob_name}"


def upload_blob(
    blob_name: str,
    data: bytes,
    *,
    bucket_name: str | None = None,
    content_type: str = DEFAULT_CONTENT_TYPE,
) -> None:
    """
    Upload raw bytes to a GCS object using the server's own credentials.

    :param blob_name: Object path in bucket, e.g. "videos/interview-1700000000000-abc.webm"
    :param data: Raw bytes to upload
    :param bucket_name: GCS bucket; default from GCS_BUCKET env or "mockview-recordings"
    :param content_type: MIME type stored on the object
    """
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    bucket = client.bucket(bucket_name)
    blob = bucket.blob(blob_name)
    blob.upload_from_string(data, content_type=content_type)
    logger.info("[gcs] Uploaded %d bytes to gs://%s/%s", len(data), bucket_name, blob_name)


def generate_signed_url(
    blob_name: str,
    *,
    bucket_name: str | None = None,
    expiration_seconds: int = UPLOAD_URL_EXPIRATION_SECONDS,
    method: str = "PUT",
    content_type: str | None = DEFAULT_CONTENT_TYPE,
) -> str:
    """
    Generate a V4 signed URL for a single GCS object.

    Used as the scoped write credential: the URL authorizes exactly one method on
    exactly one object key and expires after expiration_seconds. For PUT the
    uploader must send the same Content-Type the URL was signed with.

    :param blob_name: Object path in bucket
    :param bucket_name: GCS bucket; default from GCS_BUCKET env
    :param expiration_seconds: URL validity in seconds
    :param method: HTTP method for the signed URL ("PUT" for uploads, "GET" for downloads)
    :param content_type: Content-Type bound into the signature (PUT only)
    :return: Signed URL string
    """
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    bucket = client.bucket(bucket_name)
    blob = bucket.blob(blob_name)
    expiration = datetime.now(timezone.utc) + timedelta(seconds=expiration_seconds)
    kwargs = {}
    if method == "PUT" and content_type:
        kwargs["content_type"] = content_type
    return blob.generate_signed_url(
        expiration=expiration,
        method=method,
        version="v4",
        **kwargs,
    )


def head_blob(blob_name: str, *, bucket_name: str | None = None) -> ObjectInfo:
    """Existence, size and mtime of an object; exists=False when it is missing."""
    from google.cloud import storage

    bucket_name = bucket_name or get_bucket_name()
    client = storage.Client()
    blob = client.bucket(bucket_name).get_blob(blob_name)
    if blob is None:
        return ObjectInfo(exists=False)
    return ObjectInfo(
        exists=True,
        size=blob.size,
        last_modified=blob.updated,
        content_type=blob.content_type,
    )
