# Overview: Service-layer operations for membership tiers and point accrual.

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import Customer, Invoice, Member, MembershipTierConfig, PointTransaction
from ..time_utils import normalize_datetime, utcnow
from ..validation import ConflictError, ValidationError, coerce_bps, coerce_cents, coerce_int, require_text
from .concurrency import UnitOfWork, run_unit_of_work
"""
Membership Invariants (authoritative)

- Member.points and Member.total_spent_cents are running totals.
- Every change to points appends a PointTransaction with before/after snapshots.
- Accrual happens once, at invoice creation, on the amount paid at that moment.
- earned points = floor(paid_cents x points_rate_bps / 1_000_000)
  (points_rate_bps 10000 = one point per currency unit).
"""

TIERS = ("regular", "silver", "gold", "platinum", "diamond")
MEMBER_STATUSES = ("active", "inactive", "suspended")

DEFAULT_DISCOUNT_RATE_BPS = 0
DEFAULT_POINTS_RATE_BPS = 10_000

# cents per currency unit x bps denominator
POINTS_DENOMINATOR = 100 * 10_000

DEFAULT_TIER_CONFIGS = (
    ("regular", "Regular", 0, 10_000, 0),
    ("silver", "Silver", 300, 12_000, 100_000),
    ("gold", "Gold", 500, 15_000, 500_000),
    ("platinum", "Platinum", 800, 18_000, 1_000_000),
    ("diamond", "Diamond", 1000, 20_000, 2_000_000),
)


class MembershipError(Exception):
    """Raised for membership operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class MemberNotFound(MembershipError):
    pass


@dataclass(frozen=True)
class TierRates:
    tier: str
    discount_rate_bps: int
    points_rate_bps: int


def tier_rates(tier: str) -> TierRates:
    """Active rates for a tier; no discount and 1x points if the tier has no active config."""
    config = (
        db.session.query(MembershipTierConfig)
        .filter_by(tier=tier, is_active=True)
        .first()
    )
    if config is None:
        return TierRates(tier, DEFAULT_DISCOUNT_RATE_BPS, DEFAULT_POINTS_RATE_BPS)
    return TierRates(tier, config.discount_rate_bps, config.points_rate_bps)


def find_active_member(customer_id: int) -> Member | None:
    return (
        db.session.query(Member)
        .filter_by(customer_id=customer_id, status="active")
        .first()
    )


def points_for(paid_amount_cents: int, points_rate_bps: int) -> int:
    if paid_amount_cents <= 0:
        return 0
    return (paid_amount_cents * points_rate_bps) // POINTS_DENOMINATOR


def accrue(
    member: Member,
    rates: TierRates,
    paid_amount_cents: int,
    *,
    invoice: Invoice,
    operator: str,
    occurred_at: datetime | None = None,
) -> PointTransaction | None:
    """
    Credit points and cumulative spend for an amount paid on an invoice.

    No-op for inactive members or when nothing was paid. Only flushes.
    """
    if member is None or not member.is_active or paid_amount_cents <= 0:
        return None

    earned = points_for(paid_amount_cents, rates.points_rate_bps)
    before = member.points

    tx = PointTransaction(
        member_id=member.id,
        member_number=member.member_number,
        type="earn",
        points=earned,
        before_points=before,
        after_points=before + earned,
        related_id=str(invoice.id),
        related_type="invoice",
        description=f"Points earned on invoice {invoice.invoice_number}",
        operator=operator,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(tx)

    member.points = before + earned
    member.total_spent_cents += paid_amount_cents
    db.session.flush()
    return tx


# =============================================================================
# MEMBERS AND TIER CONFIGURATION
# =============================================================================

def _validate_tier(tier) -> str:
    tier = require_text(tier, "tier", max_length=16).lower()
    if tier not in TIERS:
        raise ValidationError(f"Invalid tier: {tier}. Must be one of {list(TIERS)}")
    return tier


_MEMBER_SEQ = re.compile(r"-(\d+)$")


def next_member_number(tier: str, now: datetime | None = None) -> str:
    """<tier initial><YYYYMMDD>-<seq:03d>, e.g. G20250114-002."""
    now = normalize_datetime(now)
    prefix = f"{tier[0].upper()}{now:%Y%m%d}-"
    numbers = (
        db.session.query(Member.member_number)
        .filter(Member.member_number.like(f"{prefix}%"))
        .all()
    )
    max_seq = 0
    for (number,) in numbers:
        match = _MEMBER_SEQ.search(number)
        if match:
            max_seq = max(max_seq, int(match.group(1)))
    return f"{prefix}{max_seq + 1:03d}"


def create_member(customer_id: int, *, tier: str = "regular", created_by) -> Member:
    tier = _validate_tier(tier)
    created_by = require_text(created_by, "created_by", max_length=128)

    def _op():
        uow = UnitOfWork("create_member")
        with uow.transaction(passthrough=(MembershipError,)):
            with uow.step("member"):
                customer = db.session.get(Customer, customer_id)
                if customer is None:
                    raise ValidationError(f"Customer {customer_id} not found")
                if db.session.query(Member.id).filter_by(customer_id=customer_id).first():
                    raise ConflictError(f"Customer {customer.name} is already a member")

                member = Member(
                    member_number=next_member_number(tier),
                    customer_id=customer_id,
                    tier=tier,
                    status="active",
                    points=0,
                    total_spent_cents=0,
                    join_date=utcnow(),
                    created_by=created_by,
                )
                db.session.add(member)
        return member

    return run_unit_of_work(_op, name="create_member")


def set_member_status(member_id: int, status: str) -> Member:
    status = require_text(status, "status", max_length=16).lower()
    if status not in MEMBER_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {list(MEMBER_STATUSES)}")

    def _op():
        uow = UnitOfWork("set_member_status")
        with uow.transaction(passthrough=(MembershipError,)):
            with uow.step("member"):
                member = db.session.get(Member, member_id)
                if member is None:
                    raise MemberNotFound(f"Member {member_id} not found")
                member.status = status
        return member

    return run_unit_of_work(_op, name="set_member_status")


def upsert_tier_config(
    tier: str,
    *,
    name: str | None = None,
    discount_rate_bps=0,
    points_rate_bps=DEFAULT_POINTS_RATE_BPS,
    min_spending_cents=0,
    color: str | None = None,
    is_active: bool = True,
) -> MembershipTierConfig:
    tier = _validate_tier(tier)
    discount_rate_bps = coerce_bps(discount_rate_bps, "discount_rate_bps")
    # multipliers above 1x are allowed, capped at 100x
    points_rate_bps = coerce_int(points_rate_bps, "points_rate_bps", minimum=0, maximum=1_000_000)
    min_spending_cents = coerce_cents(min_spending_cents, "min_spending_cents")

    def _op():
        uow = UnitOfWork("upsert_tier_config")
        with uow.transaction():
            with uow.step("tier_config"):
                config = db.session.query(MembershipTierConfig).filter_by(tier=tier).first()
                if config is None:
                    config = MembershipTierConfig(tier=tier)
                    db.session.add(config)
                config.name = name or config.name or tier.title()
                config.discount_rate_bps = discount_rate_bps
                config.points_rate_bps = points_rate_bps
                config.min_spending_cents = min_spending_cents
                config.color = color
                config.is_active = bool(is_active)
        return config

    return run_unit_of_work(_op, name="upsert_tier_config")


def seed_default_tiers() -> list[MembershipTierConfig]:
    """Create the default tier table (idempotent: existing tiers are left alone)."""
    created = []
    existing = {tier for (tier,) in db.session.query(MembershipTierConfig.tier).all()}
    for tier, name, discount_bps, points_bps, min_spending in DEFAULT_TIER_CONFIGS:
        if tier in existing:
            continue
        created.append(upsert_tier_config(
            tier,
            name=name,
            discount_rate_bps=discount_bps,
            points_rate_bps=points_bps,
            min_spending_cents=min_spending,
        ))
    return created


def list_point_transactions(member_id: int) -> list[PointTransaction]:
    return (
        db.session.query(PointTransaction)
        .filter_by(member_id=member_id)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
        .all()
    )


def earned_for_invoice(invoice_id: int) -> int:
    total = (
        db.session.query(db.func.coalesce(db.func.sum(PointTransaction.points), 0))
        .filter(
            PointTransaction.related_type == "invoice",
            PointTransaction.related_id == str(invoice_id),
            PointTransaction.type == "earn",
        )
        .scalar()
    )
    return int(total or 0)


def get_member(member_id: int) -> Member:
    member = db.session.get(Member, member_id)
    if member is None:
        raise MemberNotFound(f"Member {member_id} not found")
    return member


def list_members(*, tier: str | None = None, status: str | None = None) -> list[Member]:
    q = db.session.query(Member)
    if tier:
        q = q.filter(Member.tier == tier)
    if status:
        q = q.filter(Member.status == status)
    return q.order_by(Member.member_number.asc()).all()


def list_tier_configs() -> list[MembershipTierConfig]:
    return db.session.query(MembershipTierConfig).order_by(MembershipTierConfig.min_spending_cents.asc()).all()
