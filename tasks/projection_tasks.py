"""Celery tasks that keep planned-payment projections rolling forward."""

from __future__ import annotations

import logging
import os
from typing import Optional

from celery_app import celery_app
from recurring_engine.database import SessionLocal
from recurring_engine.db_helpers import clear_request_user_id, set_request_user_id
from recurring_engine.errors import AppError
from recurring_engine.models import UserServiceSubscription
from recurring_engine.services.event_publisher import EventPublisher
from recurring_engine.services.user_subscriptions_service import UserSubscriptionsService

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@celery_app.task(bind=True, max_retries=2, name="tasks.projection_tasks.refresh_subscription_projections")
def refresh_subscription_projections(self, user_id: Optional[str] = None) -> dict:
    """
    Regenerate planned payments for every active subscription so the
    projection horizon keeps pace with the calendar.

    Args:
        user_id: Restrict the refresh to one owner (all owners when omitted)
    """
    if user_id is None and not _env_bool("PROJECTION_REFRESH_ENABLED", default=False):
        logger.info("[PROJECTION_REFRESH] Skipped: PROJECTION_REFRESH_ENABLED is disabled")
        return {"skipped": True, "reason": "PROJECTION_REFRESH_DISABLED"}

    session = SessionLocal()
    publisher = EventPublisher()
    summary = {"users": 0, "created": 0, "deleted": 0, "failed": 0, "errors": 0}
    try:
        query = session.query(UserServiceSubscription.user_id).filter(
            UserServiceSubscription.is_active == True  # noqa: E712
        )
        if user_id:
            query = query.filter(UserServiceSubscription.user_id == user_id)
        owner_ids = [row[0] for row in query.distinct().all()]

        for owner_id in owner_ids:
            token = set_request_user_id(owner_id)
            try:
                service = UserSubscriptionsService(session, publisher=publisher)
                result = service.refresh_projections()
                summary["users"] += 1
                summary["created"] += result.created
                summary["deleted"] += result.deleted
                summary["failed"] += result.failed
            except AppError as exc:
                summary["errors"] += 1
                logger.error(f"[PROJECTION_REFRESH] Failed for user {owner_id}: {exc.message}")
            finally:
                clear_request_user_id(token)

        logger.info(
            "[PROJECTION_REFRESH] Refreshed users=%s created=%s deleted=%s failed=%s errors=%s",
            summary["users"],
            summary["created"],
            summary["deleted"],
            summary["failed"],
            summary["errors"],
        )
        return summary
    except Exception as exc:  # noqa: BLE001
        logger.exception("[PROJECTION_REFRESH] Failed projection refresh: %s", exc)
        raise
    finally:
        publisher.close()
        session.close()
