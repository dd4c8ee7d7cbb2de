# job_store.py
# Transient job state kept in KV:
#   <job_id>          -> JSON job record              (JOB_TTL_SECONDS)
#   short:<short_id>  -> job_id                       (JOB_TTL_SECONDS)
#   public_feed       -> newest-first {imageUrl, timestamp} list (FEED_TTL_SECONDS)
import json
import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from settings import settings

logger = logging.getLogger(__name__)

FEED_KEY = "public_feed"
SHORT_PREFIX = "short:"
_SHORT_ALPHABET = string.ascii_lowercase + string.digits


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_short_id(length: int = 6) -> str:
    # No collision check against live links; a clash overwrites the older mapping.
    return "".join(secrets.choice(_SHORT_ALPHABET) for _ in range(length))


class JobStore:
    def __init__(self, kv, *, job_ttl: Optional[int] = None, feed_ttl: Optional[int] = None,
                 feed_max: Optional[int] = None):
        self.kv = kv
        self.job_ttl = job_ttl or settings.job_ttl_seconds
        self.feed_ttl = feed_ttl or settings.feed_ttl_seconds
        self.feed_max = feed_max or settings.feed_max_items

    # ---------- jobs ----------
    def create(self, job_id: str, *, short_id: str, email: Optional[str] = None,
               name: Optional[str] = None) -> Dict[str, Any]:
        record = {
            "id": job_id,
            "status": "processing",
            "created_at": now_iso(),
            "email": email or None,
            "name": name or "Friend",
            "shortId": short_id,
        }
        self.save(record)
        self.kv.set(f"{SHORT_PREFIX}{short_id}", job_id, ttl=self.job_ttl)
        return record

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        raw = self.kv.get(job_id)
        return json.loads(raw) if raw else None

    def save(self, record: Dict[str, Any]) -> None:
        self.kv.set(record["id"], json.dumps(record), ttl=self.job_ttl)

    def merge(self, job_id: str, update: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay `update` onto the stored record (or an empty one) and write it back.

        Plain read-modify-write: concurrent merges for the same job are last-write-wins.
        """
        merged = {**(self.get(job_id) or {}), **update, "id": job_id}
        self.save(merged)
        return merged

    def resolve_short_id(self, short_id: str) -> Optional[str]:
        return self.kv.get(f"{SHORT_PREFIX}{short_id}")

    def delete_job(self, job_id: str, short_id: Optional[str] = None) -> int:
        removed = int(self.kv.delete(job_id))
        if short_id:
            removed += int(self.kv.delete(f"{SHORT_PREFIX}{short_id}"))
        return removed

    # ---------- public feed ----------
    def push_feed(self, image_url: str) -> None:
        entry = json.dumps({"imageUrl": image_url, "timestamp": now_iso()})
        self.kv.push_bounded(FEED_KEY, entry, self.feed_max, ttl=self.feed_ttl)

    def recent(self) -> List[Dict[str, Any]]:
        return [json.loads(item) for item in self.kv.read_list(FEED_KEY)]

    def delete_feed(self) -> int:
        return int(self.kv.delete(FEED_KEY))
