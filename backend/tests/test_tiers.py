"""Tests for the tier resolver and tier schedule administration."""
from decimal import Decimal

import pytest
from hypothesis import given, settings as hyp_settings, strategies as st
from sqlalchemy import select

from spendflow.core.errors import (
    NoTierConfiguredError,
    RequestValidationError,
    TierConfigurationError,
    UnauthorizedApproverError,
)
from spendflow.models.approval_matrix import ApprovalTier
from spendflow.models.audit import AuditLog
from spendflow.services import tiers as tier_svc
from spendflow.services.tiers import MINOR_UNIT, select_tier, validate_tier_schedule


def _band(order, low, high, role="APPROVER", escalation_days=None):
    return {
        "name": f"Tier {order}",
        "tier_order": order,
        "min_amount": Decimal(str(low)),
        "max_amount": Decimal(str(high)) if high is not None else None,
        "approver_role": role,
        "escalation_days": escalation_days,
        "is_active": True,
    }


# ─── Seeded schedule boundaries ───────────────────────────────────────────────

def test_boundary_amount_stays_in_lower_tier(db, seeded_tiers):
    """25000 is tier 1's max_amount, so it resolves to tier 1."""
    resolution = tier_svc.resolve_tier(db, Decimal("25000"))
    assert resolution.tier.tier_order == 1
    assert resolution.required_role == "APPROVER"


def test_amount_above_boundary_moves_to_next_tier(db, seeded_tiers):
    resolution = tier_svc.resolve_tier(db, Decimal("25001"))
    assert resolution.tier.tier_order == 2
    assert resolution.required_role == "APPROVER"


def test_minor_unit_above_boundary_moves_to_next_tier(db, seeded_tiers):
    assert tier_svc.resolve_tier(db, Decimal("25000.01")).tier.tier_order == 2
    assert tier_svc.resolve_tier(db, Decimal("500000.01")).required_role == "CEO"


def test_zero_resolves_to_first_tier(db, seeded_tiers):
    assert tier_svc.resolve_tier(db, Decimal("0")).tier.tier_order == 1


def test_negative_amount_rejected(db, seeded_tiers):
    with pytest.raises(RequestValidationError):
        tier_svc.resolve_tier(db, Decimal("-1"))


def test_no_active_tier_raises(db):
    with pytest.raises(NoTierConfiguredError):
        tier_svc.resolve_tier(db, Decimal("100"))


def test_bump_tier_stops_at_highest(db, seeded_tiers):
    top = tier_svc.highest_tier(db)
    assert top.tier_order == 5
    assert tier_svc.bump_tier(db, top) is top
    first = tier_svc.get_tier(db, 1)
    assert tier_svc.bump_tier(db, first).tier_order == 2


# ─── Schedule validation ──────────────────────────────────────────────────────

def test_gap_rejected():
    bands = [_band(1, 0, 100), _band(2, "100.02", None)]
    with pytest.raises(TierConfigurationError, match="gap"):
        validate_tier_schedule(bands)


def test_overlap_rejected():
    bands = [_band(1, 0, 100), _band(2, 100, None)]
    with pytest.raises(TierConfigurationError, match="overlap"):
        validate_tier_schedule(bands)


def test_bounded_last_tier_rejected():
    with pytest.raises(TierConfigurationError, match="unbounded"):
        validate_tier_schedule([_band(1, 0, 100)])


def test_non_approving_role_rejected():
    with pytest.raises(TierConfigurationError, match="approving role"):
        validate_tier_schedule([_band(1, 0, None, role="ADMIN")])


def test_empty_schedule_rejected():
    with pytest.raises(TierConfigurationError):
        validate_tier_schedule([])


# ─── Partition property ───────────────────────────────────────────────────────

@st.composite
def tier_schedules(draw):
    """Random gap-free schedules: sorted cut points in minor units."""
    cuts = sorted(draw(st.lists(st.integers(min_value=0, max_value=5_000_000), max_size=6, unique=True)))
    bands = []
    low = Decimal("0")
    for order, cut in enumerate(cuts, start=1):
        high = Decimal(cut) / 100
        bands.append(_band(order, low, high, role=draw(st.sampled_from(["APPROVER", "FINANCE", "CEO"]))))
        low = high + MINOR_UNIT
    bands.append(_band(len(cuts) + 1, low, None, role="CEO"))
    return bands


def _contains(band, amount):
    high = band["max_amount"]
    return band["min_amount"] <= amount and (high is None or amount <= high)


@hyp_settings(max_examples=200, deadline=None)
@given(bands=tier_schedules(), cents=st.integers(min_value=0, max_value=6_000_000))
def test_every_amount_maps_to_exactly_one_tier(bands, cents):
    validate_tier_schedule(bands)
    amount = Decimal(cents) / 100

    matching = [b for b in bands if _contains(b, amount)]
    assert len(matching) == 1
    assert select_tier(bands, amount) is matching[0]


@hyp_settings(max_examples=100, deadline=None)
@given(bands=tier_schedules())
def test_shifted_band_breaks_the_partition(bands):
    if len(bands) < 2:
        return
    broken = [dict(b) for b in bands]
    broken[1]["min_amount"] = broken[1]["min_amount"] + MINOR_UNIT
    with pytest.raises(TierConfigurationError):
        validate_tier_schedule(broken)


# ─── Administration ───────────────────────────────────────────────────────────

def test_replace_schedule_deactivates_old_tiers(db, org, seeded_tiers):
    bands = [_band(1, 0, 1000), _band(2, "1000.01", None, role="FINANCE")]
    created = tier_svc.replace_tier_schedule(db, org["admin"], bands)

    assert [t.tier_order for t in created] == [1, 2]
    active = tier_svc.active_tiers(db)
    assert {t.id for t in active} == {t.id for t in created}
    inactive = db.execute(select(ApprovalTier).where(ApprovalTier.is_active.is_(False))).scalars().all()
    assert len(inactive) == 5
    assert tier_svc.resolve_tier(db, Decimal("5000")).required_role == "FINANCE"

    audit = db.execute(select(AuditLog).where(AuditLog.action == "approval_tiers.replaced")).scalars().all()
    assert len(audit) == 1


def test_replace_schedule_requires_admin_or_ceo(db, org, seeded_tiers):
    with pytest.raises(UnauthorizedApproverError):
        tier_svc.replace_tier_schedule(db, org["approver"], [_band(1, 0, None)])


def test_invalid_schedule_leaves_active_tiers_untouched(db, org, seeded_tiers):
    with pytest.raises(TierConfigurationError):
        tier_svc.replace_tier_schedule(db, org["ceo"], [_band(1, 0, 100)])
    assert len(tier_svc.active_tiers(db)) == 5


def test_update_tier_sets_escalation_days(db, org, seeded_tiers):
    tier = tier_svc.get_tier(db, 1)
    updated = tier_svc.update_tier(db, org["admin"], tier.id, escalation_days=3)
    assert updated.escalation_days == 3

    cleared = tier_svc.update_tier(db, org["admin"], tier.id, clear_escalation=True)
    assert cleared.escalation_days is None
