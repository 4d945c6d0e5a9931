import logging

from rq import Worker

from neo_edu.core.config import get_settings
from neo_edu.jobs.queue import get_queue

if __name__ == "__main__":
    logging.basicConfig(level=get_settings().LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    queue = get_queue()
    w = Worker([queue], connection=queue.connection)
    w.work(with_scheduler=True)
