from functools import lru_cache

from redis import Redis
from rq import Queue

from neo_edu.core.config import get_settings


@lru_cache()
def get_queue() -> Queue:
    settings = get_settings()
    # rq pickles job payloads, so this connection must not decode responses
    return Queue(settings.EXAM_SWEEP_QUEUE, connection=Redis.from_url(settings.REDIS_URL))
