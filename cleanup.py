# cleanup.py
# Admin purge: every stored object, KV entry and DB row. Not transactional;
# each category is attempted on its own and failures are only logged.
import logging
from typing import Dict

from sqlmodel import Session

import db
import r2_client
from job_store import JobStore

logger = logging.getLogger(__name__)


def purge_all(store: JobStore, engine) -> Dict[str, int]:
    stats = {
        "r2_originals": 0,
        "r2_transformed": 0,
        "kv_keys": 0,
        "db_transformations": 0,
        "db_users": 0,
    }

    if r2_client.r2_enabled():
        for stat, prefix in (("r2_originals", r2_client.ORIGINALS_PREFIX),
                             ("r2_transformed", r2_client.TRANSFORMED_PREFIX)):
            try:
                stats[stat] = r2_client.delete_prefix(prefix)
            except Exception:
                logger.exception("R2 cleanup failed for prefix %s", prefix)

    # KV has no listing; the DB rows are the index of what was written.
    try:
        with Session(engine) as session:
            rows = db.list_transformations(session)
        for row in rows:
            try:
                stats["kv_keys"] += store.delete_job(row.id, row.short_id)
            except Exception:
                logger.exception("KV cleanup failed for %s", row.id)
    except Exception:
        logger.exception("Could not list transformations for KV cleanup")

    try:
        stats["kv_keys"] += store.delete_feed()
    except Exception:
        logger.exception("KV cleanup failed for public feed")

    try:
        with Session(engine) as session:
            stats.update(db.truncate_all(session))
    except Exception:
        logger.exception("DB cleanup failed")

    logger.warning("Admin cleanup removed %s", stats)
    return stats
