import logging
from datetime import datetime
from typing import Optional

from rq import get_current_job

from neo_edu.core.config import get_settings
from neo_edu.core.database import get_session_factory
from neo_edu.services.exam_engine import EngineConfig, ExamEngine

logger = logging.getLogger(__name__)


def expire_stale_attempts(now: Optional[datetime] = None, session_factory=None) -> int:
    """Auto-submit abandoned attempts. Returns how many were closed."""
    job = get_current_job()
    if job:
        job.meta.update({"state": "running"}); job.save_meta()

    factory = session_factory or get_session_factory()
    db = factory()
    try:
        engine = ExamEngine(db, EngineConfig.from_settings(get_settings()))
        closed = engine.expire_stale(now)
    except Exception:
        logger.exception("Expiry sweep failed")
        if job:
            job.meta.update({"state": "failed"}); job.save_meta()
        raise
    finally:
        db.close()

    if job:
        job.meta.update({"state": "done", "closed": closed}); job.save_meta()
    return closed
