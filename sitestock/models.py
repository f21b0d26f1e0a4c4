"""
Site Inventory – Domain Models

Covers:
- Users with an approval lifecycle (pending -> approved / rejected, approved <-> suspended)
- Sites with per-material low-stock thresholds
- Per-site access grants (read / write / admin)
- Generic inventory rows and an append-only transaction log, keyed by material key
  (built-in materials and admin-defined custom materials share the same tables)
- Custom material definitions
- Audit log

IMPORTANT:
- UI is never trusted. Stock invariants (no negative stock, no outgoing above
  current stock) are validated in sitestock/inventory.py before any write.
"""

from __future__ import annotations

from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db


# ---------------------------------------------------------------------
# Enumerations (stored as plain strings)
# ---------------------------------------------------------------------
STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_SUSPENDED = "suspended"
USER_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_SUSPENDED)

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
USER_ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)

ACCESS_READ = "read"
ACCESS_WRITE = "write"
ACCESS_ADMIN = "admin"
ACCESS_LEVELS = (ACCESS_READ, ACCESS_WRITE, ACCESS_ADMIN)

SITE_STATUSES = ("active", "completed", "on_hold", "cancelled")

DIRECTION_INCOMING = "incoming"
DIRECTION_OUTGOING = "outgoing"


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """Login user + profile (the approval status gates sign-in)."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    full_name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    company_name = db.Column(db.String(200), nullable=True)
    requested_access_reason = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING, index=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, index=True)

    approved_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    approved_at = db.Column(db.DateTime, nullable=True)
    last_login = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    approved_by = db.relationship("User", remote_side=[id])

    site_access = db.relationship(
        "SiteAccess",
        back_populates="user",
        foreign_keys="SiteAccess.user_id",
        cascade="all, delete-orphan",
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self) -> bool:
        # Flask-Login refuses to log in inactive users; only approved accounts qualify.
        return self.status == STATUS_APPROVED

    @property
    def is_authenticated(self) -> bool:
        # A loaded session counts as signed in until the status guard in create_app ends it.
        return True

    @property
    def is_admin(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_SUPER_ADMIN)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    def access_for(self, site_id: int) -> str | None:
        """Access level for a site. Admins implicitly have admin access everywhere."""
        if self.is_admin:
            return ACCESS_ADMIN
        for grant in self.site_access:
            if grant.site_id == site_id:
                return grant.access_level
        return None

    def can_view_site(self, site_id: int) -> bool:
        return self.access_for(site_id) is not None

    def can_edit_site(self, site_id: int) -> bool:
        return self.access_for(site_id) in (ACCESS_WRITE, ACCESS_ADMIN)

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------------------------------------------------------------
# Sites
# ---------------------------------------------------------------------
class Site(db.Model):
    """Construction site. Thresholds drive low-stock flags per material."""

    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)

    site_name = db.Column(db.String(200), nullable=False)
    site_code = db.Column(db.String(20), nullable=False, unique=True, index=True)
    location = db.Column(db.String(255), nullable=False)
    manager_name = db.Column(db.String(200), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="active", index=True)

    steel_low_stock_threshold = db.Column(db.Integer, nullable=False, default=50)
    cement_low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    sand_low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    stone_chips_low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)
    diesel_low_stock_threshold = db.Column(db.Integer, nullable=False, default=100)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    access_grants = db.relationship("SiteAccess", back_populates="site", cascade="all, delete-orphan")
    inventory_items = db.relationship("InventoryItem", back_populates="site", cascade="all, delete-orphan")
    transactions = db.relationship("MaterialTransaction", back_populates="site", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Site {self.site_code} - {self.site_name}>"


class SiteAccess(db.Model):
    """Per-site grant for a non-admin user."""

    __tablename__ = "site_access"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    site_id = db.Column(
        db.Integer,
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    access_level = db.Column(db.String(20), nullable=False, default=ACCESS_READ)

    granted_by_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship("User", back_populates="site_access", foreign_keys=[user_id])
    site = db.relationship("Site", back_populates="access_grants")
    granted_by = db.relationship("User", foreign_keys=[granted_by_id])

    __table_args__ = (db.UniqueConstraint("user_id", "site_id", name="uq_site_access_user_site"),)


# ---------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------
class CustomMaterial(db.Model):
    """
    Admin-defined material.

    Its stock lives in the shared inventory tables under material key "custom:<id>".
    conversion_factor is tonnes per unit (used to report weight).
    """

    __tablename__ = "custom_materials"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    unit_type = db.Column(db.String(20), nullable=False, default="weight")
    unit_label = db.Column(db.String(40), nullable=False, default="tonnes")
    conversion_factor = db.Column(db.Float, nullable=False, default=1.0)
    low_stock_threshold = db.Column(db.Float, nullable=False, default=10.0)

    material_types = db.Column(db.JSON, nullable=False, default=lambda: ["Standard"])

    status = db.Column(db.String(20), nullable=False, default="active")

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    created_by = db.relationship("User")

    @property
    def material_key(self) -> str:
        return f"custom:{self.id}"

    def __repr__(self):
        return f"<CustomMaterial {self.name}>"


class InventoryItem(db.Model):
    """Current stock of one subtype of one material at one site."""

    __tablename__ = "inventory_items"

    id = db.Column(db.Integer, primary_key=True)

    site_id = db.Column(
        db.Integer,
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    material = db.Column(db.String(40), nullable=False, index=True)
    subtype = db.Column(db.String(80), nullable=False)

    # Stock in the material's stock unit (tonnes, pieces, bags, litres, ...)
    quantity = db.Column(db.Float, nullable=False, default=0.0)
    # Weight in tonnes where meaningful (steel, cement, custom)
    weight = db.Column(db.Float, nullable=True)
    # Steel bar length in metres; 0 for materials not counted in bars.
    # Part of the row key: bars of one diameter but different lengths are separate stock.
    length = db.Column(db.Float, nullable=False, default=0.0)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    site = db.relationship("Site", back_populates="inventory_items")

    __table_args__ = (
        db.UniqueConstraint(
            "site_id", "material", "subtype", "length", name="uq_inventory_site_material_subtype_length"
        ),
    )


class MaterialTransaction(db.Model):
    """Append-only record of an incoming or outgoing shipment."""

    __tablename__ = "material_transactions"

    id = db.Column(db.Integer, primary_key=True)

    site_id = db.Column(
        db.Integer,
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    material = db.Column(db.String(40), nullable=False, index=True)
    subtype = db.Column(db.String(80), nullable=False)

    direction = db.Column(db.String(10), nullable=False, index=True)

    quantity = db.Column(db.Float, nullable=False)
    weight = db.Column(db.Float, nullable=True)
    unit = db.Column(db.String(40), nullable=True)

    imported_from = db.Column(db.String(255), nullable=True)
    recipient = db.Column(db.String(255), nullable=True)

    bill_file_name = db.Column(db.String(255), nullable=True)
    bill_file_original_name = db.Column(db.String(255), nullable=True)
    issue_slip_file_name = db.Column(db.String(255), nullable=True)
    issue_slip_file_original_name = db.Column(db.String(255), nullable=True)

    # Steel only
    length = db.Column(db.Float, nullable=True)
    input_weight = db.Column(db.Float, nullable=True)
    wastage = db.Column(db.Float, nullable=True)

    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    site = db.relationship("Site", back_populates="transactions")
    created_by = db.relationship("User")

    @property
    def counterparty(self) -> str | None:
        if self.direction == DIRECTION_INCOMING:
            return self.imported_from
        return self.recipient

    @property
    def file_name(self) -> str | None:
        return self.bill_file_name or self.issue_slip_file_name

    @property
    def file_original_name(self) -> str | None:
        return self.bill_file_original_name or self.issue_slip_file_original_name

    def __repr__(self):
        return f"<MaterialTransaction {self.direction} {self.material}/{self.subtype} {self.quantity}>"


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Audit trail of mutations (who, what, before/after)."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(255), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
