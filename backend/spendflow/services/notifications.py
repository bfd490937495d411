"""Notification dispatcher built on an outbox table.

``enqueue`` writes a Notification row inside the caller's transaction, so the
event commits or rolls back together with the transition that caused it.
``dispatch`` delivers pending rows after commit; delivery failures are logged
and counted but never touch the transition.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.core.config import settings
from spendflow.models.notification import Notification
from spendflow.models.user import User
from spendflow.services import email as email_svc

logger = logging.getLogger(__name__)


def enqueue(
    db: Session,
    event_type: str,
    payload: dict,
    request_id: uuid.UUID | None = None,
    pre_approval_id: uuid.UUID | None = None,
    recipient_id: uuid.UUID | None = None,
    recipient_role: str | None = None,
) -> Notification:
    notification = Notification(
        event_type=event_type,
        request_id=request_id,
        pre_approval_id=pre_approval_id,
        recipient_id=recipient_id,
        recipient_role=recipient_role,
        payload=payload,
        status="pending",
        attempts=0,
    )
    db.add(notification)
    db.flush()
    return notification


def alert_administrators(db: Session, event_type: str, payload: dict) -> None:
    """Commit an ADMIN-pool notification in its own transaction.

    Used for configuration errors, where the failing command itself persists
    nothing and has already been rolled back.
    """
    notification = enqueue(db, event_type, payload, recipient_role="ADMIN")
    db.commit()
    dispatch_safely(db, [notification.id])


def _recipients(db: Session, notification: Notification) -> list[str]:
    if notification.recipient_id is not None:
        email = db.execute(
            select(User.email).where(User.id == notification.recipient_id)
        ).scalar_one_or_none()
        return [email] if email else []
    if notification.recipient_role:
        return list(
            db.execute(
                select(User.email).where(
                    User.role == notification.recipient_role,
                    User.is_active.is_(True),
                    User.deleted_at.is_(None),
                )
            ).scalars().all()
        )
    return []


def _deliver(db: Session, notification: Notification) -> None:
    subject = email_svc.render_subject(notification.event_type, notification.payload or {})
    body = "\n".join(f"{k}: {v}" for k, v in sorted((notification.payload or {}).items()))
    email_svc.send_email(_recipients(db, notification), subject, body)


def dispatch(
    db: Session,
    notification_ids: Iterable[uuid.UUID] | None = None,
    limit: int = 100,
) -> dict:
    """Deliver pending notifications, committing each outcome separately.

    Returns counts: {"sent": n, "failed": n, "retrying": n}.
    """
    stmt = select(Notification).where(Notification.status == "pending")
    if notification_ids is not None:
        ids = list(notification_ids)
        if not ids:
            return {"sent": 0, "failed": 0, "retrying": 0}
        stmt = stmt.where(Notification.id.in_(ids))
    stmt = stmt.order_by(Notification.created_at).limit(limit)

    stats = {"sent": 0, "failed": 0, "retrying": 0}
    for notification in db.execute(stmt).scalars().all():
        notification.attempts += 1
        try:
            _deliver(db, notification)
        except Exception as exc:
            notification.last_error = str(exc)[:1000]
            if notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS:
                notification.status = "failed"
                stats["failed"] += 1
                logger.error(
                    "Notification %s (%s) failed permanently after %d attempts: %s",
                    notification.id, notification.event_type, notification.attempts, exc,
                )
            else:
                stats["retrying"] += 1
                logger.warning(
                    "Notification %s (%s) delivery failed (attempt %d): %s",
                    notification.id, notification.event_type, notification.attempts, exc,
                )
        else:
            notification.status = "sent"
            notification.sent_at = datetime.now(timezone.utc)
            stats["sent"] += 1
        db.commit()
    return stats


def dispatch_safely(db: Session, notification_ids: Iterable[uuid.UUID]) -> None:
    """Fire-and-forget delivery right after a transition commits."""
    try:
        dispatch(db, notification_ids)
    except Exception as exc:
        # Rows stay pending; the periodic dispatcher picks them up.
        db.rollback()
        logger.warning("Post-commit notification dispatch failed: %s", exc)
