"""Seed default data into the database."""
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.db.session import SessionLocal
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.services.tiers import DEFAULT_TIERS, validate_tier_schedule

logger = logging.getLogger(__name__)


def seed_approval_tiers(db: Session) -> list[ApprovalTier]:
    """Insert the default tier schedule when no tier is active yet."""
    existing = db.execute(
        select(ApprovalTier).where(ApprovalTier.is_active.is_(True))
    ).scalars().all()
    if existing:
        logger.info("Approval tiers already configured (%d active), skipping", len(existing))
        return list(existing)

    bands = [
        {
            "name": name,
            "tier_order": order,
            "min_amount": low,
            "max_amount": high,
            "approver_role": role,
            "escalation_days": None,
        }
        for name, order, low, high, role in DEFAULT_TIERS
    ]
    validate_tier_schedule(bands)

    tiers = [ApprovalTier(is_active=True, **band) for band in bands]
    db.add_all(tiers)
    db.commit()
    for tier in tiers:
        logger.info("Seeded tier %d: %s -> %s", tier.tier_order, tier.name, tier.approver_role)
    return tiers


def run_seed() -> None:
    with SessionLocal() as db:
        seed_approval_tiers(db)
    logger.info("Seeding complete.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_seed()
