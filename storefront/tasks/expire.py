# storefront/tasks/expire.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.buy_now_service import BuyNowService
from storefront.utils.logging import get_logger

# register every table on the worker side too
import storefront.data.models  # noqa: F401

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.expire.purge_buy_now_sessions_task")
def purge_buy_now_sessions_task(session_factory=SessionLocal):
    logger.info("Purge buy now sessions task started")

    db = session_factory()
    try:
        purged = BuyNowService(db).purge_expired()
    finally:
        db.close()

    logger.info(f"Purged {purged} expired or consumed buy now sessions")
    return {"purged": purged}
