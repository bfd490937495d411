"""Email transport - console mock while MAIL_ENABLED=False.

When MAIL_ENABLED is False, email content is written to logs instead of
being sent via SMTP.
"""
import logging

from spendflow.core.config import settings

logger = logging.getLogger(__name__)

SUBJECTS = {
    "request.submitted": "Approval needed: {request_number} ({amount})",
    "request.advanced": "Approval needed at tier {tier}: {request_number}",
    "request.approved": "Approved: {request_number}",
    "request.rejected": "Rejected: {request_number}",
    "request.clarification_requested": "Clarification requested: {request_number}",
    "request.resubmitted": "Resubmitted: {request_number}",
    "request.withdrawn": "Withdrawn: {request_number}",
    "request.paid": "Paid: {request_number}",
    "request.escalated": "Auto-escalated: {request_number}",
    "request.stalled": "Manual intervention needed: {request_number}",
    "pre_approval.requested": "Pre-approval requested: {pre_approval_number}",
    "pre_approval.approved": "Pre-approval approved: {pre_approval_number}",
    "pre_approval.rejected": "Pre-approval rejected: {pre_approval_number}",
    "config.no_tier": "Approval tier configuration gap: {detail}",
}


def render_subject(event_type: str, payload: dict) -> str:
    template = SUBJECTS.get(event_type, event_type)
    try:
        return template.format(**payload)
    except KeyError:
        return template


def send_email(recipients: list[str], subject: str, body: str) -> None:
    """Send (or mock-log) one email to ``recipients``."""
    if not recipients:
        logger.info("Email '%s' has no recipients; skipped.", subject)
        return

    if not settings.MAIL_ENABLED:
        logger.info(
            "\n"
            "=== NOTIFICATION EMAIL ===\n"
            "From: %s <%s>\n"
            "To: %s\n"
            "Subject: %s\n"
            "%s\n"
            "==========================",
            settings.MAIL_FROM_NAME,
            settings.MAIL_FROM,
            ", ".join(recipients),
            subject,
            body,
        )
        return

    # SMTP transport is not wired yet; surface that instead of silently dropping.
    raise RuntimeError("MAIL_ENABLED=True but no SMTP transport is configured.")
