"""Celery tasks for the escalation sweep and outbox housekeeping."""
import logging

from spendflow.db.session import SessionLocal
from spendflow.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="spendflow.workers.escalation_tasks.escalate_stalled_requests")
def escalate_stalled_requests():
    """Advance or flag PENDING_APPROVAL requests past their tier's escalation_days.

    Safe to run concurrently with human approvals and with itself: every
    write goes through the request's version guard.
    """
    logger.info("escalate_stalled_requests: starting sweep")
    try:
        from spendflow.services.escalation import run_escalation_sweep

        with SessionLocal() as db:
            return run_escalation_sweep(db)
    except Exception as exc:
        logger.exception("escalate_stalled_requests failed: %s", exc)
        return {"status": "error", "error": str(exc)}


@celery_app.task(name="spendflow.workers.escalation_tasks.expire_pre_approvals")
def expire_pre_approvals():
    """Mark PENDING/APPROVED pre-approvals past expires_at as EXPIRED."""
    try:
        from spendflow.services.pre_approvals import expire_stale

        with SessionLocal() as db:
            expired = expire_stale(db)
        logger.info("expire_pre_approvals: complete, expired=%d", expired)
        return {"expired": expired}
    except Exception as exc:
        logger.exception("expire_pre_approvals failed: %s", exc)
        return {"status": "error", "error": str(exc)}


@celery_app.task(name="spendflow.workers.escalation_tasks.dispatch_notifications")
def dispatch_notifications():
    """Retry outbox rows left pending by post-commit delivery."""
    try:
        from spendflow.services.notifications import dispatch

        with SessionLocal() as db:
            stats = dispatch(db)
        if stats["sent"] or stats["failed"] or stats["retrying"]:
            logger.info(
                "dispatch_notifications: sent=%d, failed=%d, retrying=%d",
                stats["sent"], stats["failed"], stats["retrying"],
            )
        return stats
    except Exception as exc:
        logger.exception("dispatch_notifications failed: %s", exc)
        return {"status": "error", "error": str(exc)}
