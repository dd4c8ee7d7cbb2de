# webhook.py
# Turning a Replicate "completed" callback into job-record fields, plus the
# best-effort work that follows a success (durable copy, email).
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlmodel import Session

import db
import r2_client
from job_store import now_iso
from notifier import send_notification
from replicate_client import download_output
from settings import settings

logger = logging.getLogger(__name__)

NO_FACE = "no_face_detected"
SAFETY = "safety_filter"
PROCESSING = "processing_error"

# Substrings seen in the provider's free-text errors. Wording changes upstream
# will fall through to PROCESSING.
_NO_FACE_PATTERNS = ("facexlib", "align face fail")
_SAFETY_PATTERNS = ("NSFW", "safety")

USER_MESSAGES = {
    NO_FACE: "No human face detected in the image. Please upload a photo with a clear face.",
    SAFETY: "Image rejected by safety filter. Please use an appropriate photo.",
    PROCESSING: "Processing failed. Please try again with a different image.",
}


def classify_error(raw: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """Map a provider error string to (kind, record fields)."""
    raw = raw or "Unknown error"
    if any(p in raw for p in _NO_FACE_PATTERNS):
        kind = NO_FACE
    elif any(p in raw for p in _SAFETY_PATTERNS):
        kind = SAFETY
    else:
        kind = PROCESSING
    fields = {"error": USER_MESSAGES[kind], "errorType": kind}
    if kind == PROCESSING:
        fields["errorDetails"] = raw
    return kind, fields


def extract_output_url(output: Any) -> Optional[str]:
    """Replicate's `output` may be a URL string, a list of them, or an object with `url`."""
    if isinstance(output, list):
        return extract_output_url(output[0]) if output else None
    if isinstance(output, dict):
        url = output.get("url")
        return url if isinstance(url, str) and url else None
    if isinstance(output, str) and output:
        return output
    return None


SUCCEEDED = "succeeded"
FAILED = "failed"
# Prediction states that mean "not finished yet"; a callback carrying one changes nothing.
_IN_FLIGHT = ("starting", "processing")


def terminal_status(raw: Optional[str]) -> Optional[str]:
    """Collapse Replicate's status to succeeded|failed, or None while still running.

    canceled/aborted and any other unknown terminal value count as failed.
    """
    if not raw or raw in _IN_FLIGHT:
        return None
    return SUCCEEDED if raw == SUCCEEDED else FAILED


def build_update(payload: Dict[str, Any]) -> Dict[str, Any]:
    raw_status = payload.get("status")
    status = terminal_status(raw_status)
    if status is None:
        raise ValueError(f"non-terminal status {raw_status!r}")
    # Replicate stamps completed_at; using it keeps redeliveries byte-identical
    update: Dict[str, Any] = {"status": status, "updated_at": payload.get("completed_at") or now_iso()}
    if status == SUCCEEDED:
        update["imageUrl"] = extract_output_url(payload.get("output"))
        predict_time = (payload.get("metrics") or {}).get("predict_time")
        if predict_time is not None:
            update["processingTime"] = predict_time
    else:
        _, fields = classify_error(payload.get("error") or f"Prediction {raw_status}")
        update.update(fields)
    return update


def record_failure(engine, job_id: str, error_type: Optional[str]) -> None:
    with Session(engine) as session:
        db.update_transformation(session, job_id, status="failed", error_type=error_type,
                                 completed_at=datetime.now(timezone.utc))


async def archive_output(engine, job_id: str, image_url: str) -> Optional[str]:
    """Copy the provider's (short-lived) output into R2 and stamp the transformation row."""
    durable_url = None
    fields = {"status": "succeeded", "completed_at": datetime.now(timezone.utc)}
    if r2_client.r2_enabled():
        resp = await download_output(image_url)
        content_type = resp.headers.get("content-type", "image/png")
        transformed_key = r2_client.transformed_key(job_id, content_type)
        r2_client.upload_to_key(resp.content, transformed_key, content_type=content_type)
        durable_url = r2_client.public_or_signed_url(transformed_key)
        fields.update(transformed_key=transformed_key, transformed_url=durable_url)

    with Session(engine) as session:
        db.update_transformation(session, job_id, **fields)
    return durable_url


async def finalize_success(engine, record: Dict[str, Any]) -> None:
    """Background step after a successful webhook. Never raises."""
    job_id = record["id"]
    try:
        await archive_output(engine, job_id, record["imageUrl"])
    except Exception:
        logger.exception("Durable copy failed for %s", job_id)

    email = record.get("email")
    short_id = record.get("shortId")
    if email and short_id:
        # let the durable writes settle before the email links to them
        await asyncio.sleep(settings.notify_delay_seconds)
        try:
            await send_notification(email, record.get("name"), short_id)
        except Exception:
            logger.exception("Notification failed for %s", job_id)
