# worker.py
from readsync.core.celery_app import celery_app
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if __name__ == '__main__':
    logger.info("Starting Celery worker with beat scheduler...")
    celery_app.start(argv=['worker', '--beat', '--loglevel=info', '--concurrency=2'])
