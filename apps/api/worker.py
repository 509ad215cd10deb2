"""RQ worker process entrypoint for expertise jobs."""

import logging

from rq import Worker

from config import settings
from services.dispatcher import EXPERTISE_QUEUE_NAME, get_redis_connection


def main():
    logging.basicConfig(level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO))
    redis_conn = get_redis_connection()
    worker = Worker([EXPERTISE_QUEUE_NAME], connection=redis_conn)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
