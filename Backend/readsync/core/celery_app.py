from celery import Celery
from readsync.config import REDIS_URL, READWISE_SYNC_INTERVAL_SECONDS

# Add SSL certificate requirements to Redis URL if using rediss://
if REDIS_URL and REDIS_URL.startswith('rediss://'):
    redis_url = f"{REDIS_URL}?ssl_cert_reqs=CERT_NONE"
else:
    redis_url = REDIS_URL

celery_app = Celery(
    'readsync',
    broker=redis_url,
    backend=redis_url,
    broker_connection_retry_on_startup=True,
    include=['readsync.core.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    beat_schedule={
        'reader-sync-pass': {
            'task': 'readsync.core.tasks.run_sync_pass_task',
            'schedule': float(READWISE_SYNC_INTERVAL_SECONDS),
        },
    },
)
