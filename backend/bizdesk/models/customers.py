from __future__ import annotations

from ..extensions import db
from bizdesk.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data. Read-only from the invoicing engine's point of view:
    invoices copy name/phone/address at creation time.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    contact = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact": self.contact,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "notes": self.notes,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MembershipTierConfig(db.Model):
    """
    Tier rate table: tier -> (discount rate, points rate).

    discount_rate_bps: member discount on the invoice subtotal (500 = 5%).
    points_rate_bps: points per currency unit paid (10000 = 1x, 15000 = 1.5x).

    Only active rows are consulted. A tier without an active row falls back to
    no discount and 1x points.
    """
    __tablename__ = "membership_tier_configs"
    __table_args__ = (
        db.UniqueConstraint("tier", name="uq_tier_configs_tier"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tier = db.Column(db.String(16), nullable=False)  # regular, silver, gold, platinum, diamond
    name = db.Column(db.String(64), nullable=False)

    discount_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    points_rate_bps = db.Column(db.Integer, nullable=False, default=10000)
    min_spending_cents = db.Column(db.Integer, nullable=False, default=0)
    color = db.Column(db.String(16), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tier": self.tier,
            "name": self.name,
            "discount_rate_bps": self.discount_rate_bps,
            "points_rate_bps": self.points_rate_bps,
            "min_spending_cents": self.min_spending_cents,
            "color": self.color,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Member(db.Model):
    """
    Loyalty membership for a customer (at most one per customer).

    points and total_spent_cents are running totals; every change is mirrored
    by a PointTransaction row with before/after snapshots.
    """
    __tablename__ = "members"
    __table_args__ = (
        db.UniqueConstraint("customer_id", name="uq_members_customer"),
        db.UniqueConstraint("member_number", name="uq_members_member_number"),
        db.Index("ix_members_tier", "tier"),
        db.Index("ix_members_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_number = db.Column(db.String(32), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    tier = db.Column(db.String(16), nullable=False, default="regular")
    status = db.Column(db.String(16), nullable=False, default="active")  # active, inactive, suspended

    points = db.Column(db.Integer, nullable=False, default=0)
    total_spent_cents = db.Column(db.Integer, nullable=False, default=0)

    join_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("member", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_number": self.member_number,
            "customer_id": self.customer_id,
            "tier": self.tier,
            "status": self.status,
            "points": self.points,
            "total_spent_cents": self.total_spent_cents,
            "join_date": to_utc_z(self.join_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class PointTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    TRANSACTION TYPES:
    - earn: points credited from an invoice payment
    - redeem: points spent
    - adjust: manual correction
    - expire: points expired per policy

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "point_transactions"
    __table_args__ = (
        db.Index("ix_point_txns_member_created", "member_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    member_id = db.Column(db.Integer, db.ForeignKey("members.id"), nullable=False, index=True)
    member_number = db.Column(db.String(32), nullable=False)

    type = db.Column(db.String(16), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False)
    before_points = db.Column(db.Integer, nullable=False)
    after_points = db.Column(db.Integer, nullable=False)

    related_id = db.Column(db.String(64), nullable=True)
    related_type = db.Column(db.String(32), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    operator = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    member = db.relationship("Member", backref=db.backref("point_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "member_number": self.member_number,
            "type": self.type,
            "points": self.points,
            "before_points": self.before_points,
            "after_points": self.after_points,
            "related_id": self.related_id,
            "related_type": self.related_type,
            "description": self.description,
            "operator": self.operator,
            "created_at": to_utc_z(self.created_at),
        }
