"""Tier resolver: maps a base-currency amount to its approval tier.

Active tiers partition [0, ∞) at the base currency's minor unit: each band's
``min_amount`` sits exactly one unit (0.01) above the previous band's
``max_amount`` and the last band is unbounded. An amount equal to a band's
``max_amount`` belongs to that band.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from spendflow.core.errors import (
    NoTierConfiguredError,
    NotFoundError,
    RequestValidationError,
    TierConfigurationError,
    UnauthorizedApproverError,
)
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.models.user import APPROVING_ROLES
from spendflow.services import audit as audit_svc

logger = logging.getLogger(__name__)

MINOR_UNIT = Decimal("0.01")

TIER_CONFIG_ROLES = ("ADMIN", "CEO")

# Seeded schedule (PKR): (name, tier_order, min, max, approver_role)
DEFAULT_TIERS = [
    ("Low Value (0 - 25,000)", 1, Decimal("0"), Decimal("25000"), "APPROVER"),
    ("Medium Value (25,000.01 - 100,000)", 2, Decimal("25000.01"), Decimal("100000"), "APPROVER"),
    ("High Value (100,000.01 - 250,000)", 3, Decimal("100000.01"), Decimal("250000"), "FINANCE"),
    ("High Value (250,000.01 - 500,000)", 4, Decimal("250000.01"), Decimal("500000"), "FINANCE"),
    ("Executive (500,000.01+)", 5, Decimal("500000.01"), None, "CEO"),
]


@dataclass(frozen=True)
class TierResolution:
    tier: ApprovalTier
    required_role: str


def quantize_amount(amount: Any) -> Decimal:
    return Decimal(str(amount)).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def _field(band: Any, name: str) -> Any:
    return band[name] if isinstance(band, dict) else getattr(band, name)


# ─── Pure selection ───

def select_tier(tiers: Iterable[Any], amount: Any) -> Any | None:
    """Return the first active tier (by tier_order) whose band contains ``amount``."""
    value = quantize_amount(amount)
    candidates = sorted(
        (t for t in tiers if _field(t, "is_active")),
        key=lambda t: _field(t, "tier_order"),
    )
    for tier in candidates:
        low = Decimal(str(_field(tier, "min_amount")))
        high = _field(tier, "max_amount")
        if low <= value and (high is None or value <= Decimal(str(high))):
            return tier
    return None


def validate_tier_schedule(bands: Sequence[Any]) -> None:
    """Raise TierConfigurationError unless ``bands`` partition [0, ∞)."""
    if not bands:
        raise TierConfigurationError("At least one approval tier is required.")

    ordered = sorted(bands, key=lambda b: _field(b, "tier_order"))
    orders = [_field(b, "tier_order") for b in ordered]
    if len(set(orders)) != len(orders):
        raise TierConfigurationError("tier_order values must be unique.")

    expected_min = Decimal("0")
    for index, band in enumerate(ordered):
        order = _field(band, "tier_order")
        low = quantize_amount(_field(band, "min_amount"))
        high = _field(band, "max_amount")
        role = _field(band, "approver_role")
        escalation_days = _field(band, "escalation_days")

        if role not in APPROVING_ROLES:
            raise TierConfigurationError(f"Tier {order}: '{role}' is not an approving role.")
        if escalation_days is not None and escalation_days <= 0:
            raise TierConfigurationError(f"Tier {order}: escalation_days must be positive.")
        if low != expected_min:
            gap_or_overlap = "gap" if low > expected_min else "overlap"
            raise TierConfigurationError(
                f"Tier {order}: min_amount {low} leaves a {gap_or_overlap}; expected {expected_min}."
            )

        is_last = index == len(ordered) - 1
        if high is None:
            if not is_last:
                raise TierConfigurationError(f"Tier {order}: only the last tier may be unbounded.")
            continue
        high = quantize_amount(high)
        if high < low:
            raise TierConfigurationError(f"Tier {order}: max_amount is below min_amount.")
        if is_last:
            raise TierConfigurationError(f"Tier {order}: the last tier must be unbounded.")
        expected_min = high + MINOR_UNIT


# ─── DB-backed lookups ───

def active_tiers(db: Session) -> list[ApprovalTier]:
    return list(
        db.execute(
            select(ApprovalTier)
            .where(ApprovalTier.is_active.is_(True))
            .order_by(ApprovalTier.tier_order)
        ).scalars().all()
    )


def resolve_tier(db: Session, base_currency_amount: Any) -> TierResolution:
    """Resolve the tier and approver role for a base-currency amount.

    Raises:
        RequestValidationError: negative amount.
        NoTierConfiguredError: no active tier covers the amount.
    """
    amount = quantize_amount(base_currency_amount)
    if amount < 0:
        raise RequestValidationError("Amount must be non-negative.")

    tier = select_tier(active_tiers(db), amount)
    if tier is None:
        logger.error("No active approval tier covers amount %s", amount)
        raise NoTierConfiguredError(
            f"No active approval tier covers {amount}; an administrator must fix the tier schedule."
        )
    return TierResolution(tier=tier, required_role=tier.approver_role)


def get_tier(db: Session, tier_order: int) -> ApprovalTier | None:
    return db.execute(
        select(ApprovalTier).where(
            ApprovalTier.is_active.is_(True),
            ApprovalTier.tier_order == tier_order,
        )
    ).scalars().first()


def next_tier(db: Session, tier_order: int) -> ApprovalTier | None:
    return db.execute(
        select(ApprovalTier)
        .where(
            ApprovalTier.is_active.is_(True),
            ApprovalTier.tier_order > tier_order,
        )
        .order_by(ApprovalTier.tier_order)
        .limit(1)
    ).scalars().first()


def highest_tier(db: Session) -> ApprovalTier | None:
    return db.execute(
        select(ApprovalTier)
        .where(ApprovalTier.is_active.is_(True))
        .order_by(ApprovalTier.tier_order.desc())
        .limit(1)
    ).scalars().first()


def bump_tier(db: Session, tier: ApprovalTier) -> ApprovalTier:
    """One tier above ``tier``, or ``tier`` itself when it is already the highest."""
    return next_tier(db, tier.tier_order) or tier


# ─── Administration ───

def _snapshot(tier: ApprovalTier) -> dict:
    return {
        "tier_order": tier.tier_order,
        "name": tier.name,
        "min_amount": str(tier.min_amount),
        "max_amount": str(tier.max_amount) if tier.max_amount is not None else None,
        "approver_role": tier.approver_role,
        "escalation_days": tier.escalation_days,
    }


def _require_tier_admin(actor) -> None:
    if actor.role not in TIER_CONFIG_ROLES:
        raise UnauthorizedApproverError("Only ADMIN or CEO can configure approval tiers.")


def replace_tier_schedule(db: Session, actor, bands: Sequence[dict]) -> list[ApprovalTier]:
    """Validate ``bands`` and swap them in for the active schedule.

    Old tiers are deactivated, never deleted.
    """
    _require_tier_admin(actor)
    validate_tier_schedule(bands)

    previous = active_tiers(db)
    for tier in previous:
        tier.is_active = False

    created = []
    for band in sorted(bands, key=lambda b: b["tier_order"]):
        tier = ApprovalTier(
            name=band.get("name") or f"Tier {band['tier_order']}",
            tier_order=band["tier_order"],
            min_amount=quantize_amount(band["min_amount"]),
            max_amount=quantize_amount(band["max_amount"]) if band.get("max_amount") is not None else None,
            approver_role=band["approver_role"],
            escalation_days=band.get("escalation_days"),
            is_active=True,
        )
        db.add(tier)
        created.append(tier)
    db.flush()

    audit_svc.log(
        db=db,
        action="approval_tiers.replaced",
        entity_type="approval_tier",
        actor_id=actor.id,
        actor_email=actor.email,
        before=[_snapshot(t) for t in previous],
        after=[_snapshot(t) for t in created],
    )
    db.commit()
    logger.info("Approval tier schedule replaced by %s: %d tiers", actor.id, len(created))
    return created


def update_tier(
    db: Session,
    actor,
    tier_id: uuid.UUID,
    name: str | None = None,
    escalation_days: int | None = None,
    clear_escalation: bool = False,
) -> ApprovalTier:
    """Edit the non-band attributes of an active tier."""
    _require_tier_admin(actor)
    tier = db.execute(select(ApprovalTier).where(ApprovalTier.id == tier_id)).scalars().first()
    if tier is None or not tier.is_active:
        raise NotFoundError(f"Active approval tier {tier_id} not found.")
    if escalation_days is not None and escalation_days <= 0:
        raise RequestValidationError("escalation_days must be positive.")

    before = _snapshot(tier)
    if name:
        tier.name = name
    if clear_escalation:
        tier.escalation_days = None
    elif escalation_days is not None:
        tier.escalation_days = escalation_days
    db.flush()

    audit_svc.log(
        db=db,
        action="approval_tier.updated",
        entity_type="approval_tier",
        entity_id=tier.id,
        actor_id=actor.id,
        actor_email=actor.email,
        before=before,
        after=_snapshot(tier),
    )
    db.commit()
    return tier
