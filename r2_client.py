import logging
from typing import Optional

import boto3
from botocore.config import Config

from settings import settings

logger = logging.getLogger(__name__)

ORIGINALS_PREFIX = "originals/"
TRANSFORMED_PREFIX = "transformed/"

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

# --- R2 / S3 client ---------------------------------------------------------

# NOTE:
# - endpoint_url MUST be the S3 API endpoint (the cloudflarestorage.com host),
#   NOT the public/dev domain. Region must be "auto" and path-style is required.


def r2_enabled() -> bool:
    return all([
        settings.r2_endpoint_url,
        settings.r2_bucket,
        settings.r2_access_key_id,
        settings.r2_secret_access_key,
    ])


def _endpoint() -> str:
    # Normalize accidental trailing slashes or bucket suffixes
    endpoint = settings.r2_endpoint_url.rstrip("/")
    bucket = settings.r2_bucket
    if bucket and endpoint.endswith(f"/{bucket}"):
        endpoint = endpoint[: -(len(bucket) + 1)]
    return endpoint


_s3 = None


def _client():
    global _s3
    if not r2_enabled():
        raise RuntimeError("R2 storage is not configured.")
    if _s3 is None:
        _s3 = boto3.client(
            "s3",
            endpoint_url=_endpoint(),  # e.g. https://<account>.r2.cloudflarestorage.com
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            region_name="auto",
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
    return _s3


# --- Helpers ----------------------------------------------------------------

def extension_for(content_type: Optional[str], default: str = "jpg") -> str:
    return _EXTENSIONS.get((content_type or "").split(";")[0].strip().lower(), default)


def original_key(job_id: str, content_type: Optional[str]) -> str:
    return f"{ORIGINALS_PREFIX}{job_id}.{extension_for(content_type)}"


def transformed_key(job_id: str, content_type: Optional[str]) -> str:
    return f"{TRANSFORMED_PREFIX}{job_id}.{extension_for(content_type, default='png')}"


def public_or_signed_url(key: str, expires: int = 3600) -> str:
    """
    Prefer the configured public base (custom domain / r2.dev) for read URLs.
    Fall back to a presigned GET URL if no public base is set.
    """
    base = settings.r2_public_base.rstrip("/")
    if base:
        return f"{base}/{key.lstrip('/')}"
    return _client().generate_presigned_url(
        "get_object",
        Params={"Bucket": settings.r2_bucket, "Key": key},
        ExpiresIn=expires,
    )


# --- API used by the app -----------------------------------------------------

def upload_to_key(data: bytes, key: str, *, content_type: str = "image/png") -> None:
    """Low-level upload: PUT the object to a specific key."""
    _client().put_object(
        Bucket=settings.r2_bucket,
        Key=key,
        Body=data,
        ContentType=content_type,
    )


def delete_prefix(prefix: str) -> int:
    """Delete every object under `prefix`; returns how many were removed."""
    client = _client()
    removed = 0
    paginator = client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=settings.r2_bucket, Prefix=prefix):
        keys = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
        if not keys:
            continue
        # list_objects_v2 pages are <= 1000 keys, which is also the delete_objects cap
        resp = client.delete_objects(Bucket=settings.r2_bucket, Delete={"Objects": keys, "Quiet": True})
        errors = resp.get("Errors", [])
        for err in errors:
            logger.warning("R2 delete failed for %s: %s", err.get("Key"), err.get("Message"))
        removed += len(keys) - len(errors)
    return removed
