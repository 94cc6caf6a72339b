# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks have to be imported explicitly for the worker to register them
celery_app.conf.imports = (
    "storefront.tasks.expire",
)

celery_app.conf.beat_schedule = {
    "purge-buy-now-sessions-every-minute": {
        "task": "storefront.tasks.expire.purge_buy_now_sessions_task",
        "schedule": 60.0,
    },
}

celery_app.conf.timezone = "UTC"
