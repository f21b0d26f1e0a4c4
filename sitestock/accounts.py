"""
sitestock/accounts.py

Account lifecycle, site access grants and custom material definitions.

User status flow:
    pending -> approved | rejected
    approved <-> suspended

Only approved users can sign in; every other status has its own message.

IMPORTANT:
- Every mutation is audited in the same commit.
  Pattern: db.session.flush() -> log_action(...) -> db.session.commit()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from .audit import log_action, serialize_model
from .extensions import db
from .inventory import purge_material
from .models import (
    ACCESS_LEVELS,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_SUSPENDED,
    USER_ROLES,
    CustomMaterial,
    Site,
    SiteAccess,
    User,
)
from .storage import delete_file

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

UNIT_TYPES = ("weight", "pieces", "bags", "volume")

BLOCKED_STATUS_MESSAGES = {
    STATUS_PENDING: ("Your account is pending approval. Please wait for admin approval.", "warning"),
    STATUS_REJECTED: ("Your account has been rejected. Please contact administrator.", "danger"),
    STATUS_SUSPENDED: ("Your account has been suspended. Please contact administrator.", "danger"),
}


class AccountError(Exception):
    """Account or admin action refused. `category` is the flash category."""

    def __init__(self, message: str, category: str = "danger"):
        super().__init__(message)
        self.message = message
        self.category = category


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


# ---------------------------------------------------------------------
# Registration / sign-in
# ---------------------------------------------------------------------
def register_user(
    email: str | None,
    password: str | None,
    confirm_password: str | None,
    full_name: str | None,
    requested_access_reason: str | None,
    phone: str | None = None,
    company_name: str | None = None,
) -> User:
    """Create a pending account. Raises AccountError on invalid input."""
    email = normalize_email(email)
    password = password or ""
    full_name = (full_name or "").strip()
    reason = (requested_access_reason or "").strip()

    if password != (confirm_password or ""):
        raise AccountError("Passwords do not match")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AccountError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not email or not full_name or not reason:
        raise AccountError("Please fill all required fields")
    if "@" not in email:
        raise AccountError("Please enter a valid email address")
    if User.query.filter_by(email=email).first():
        raise AccountError("An account with this email already exists")

    user = User(
        email=email,
        full_name=full_name,
        phone=(phone or "").strip() or None,
        company_name=(company_name or "").strip() or None,
        requested_access_reason=reason,
        status=STATUS_PENDING,
        role=ROLE_USER,
    )
    user.set_password(password)

    db.session.add(user)
    db.session.flush()
    log_action(user, "CREATE", before=None, after=serialize_model(user))
    db.session.commit()

    logger.info("Registered pending account %s", email)
    return user


def authenticate(email: str | None, password: str | None) -> User:
    """
    Check credentials and approval status; records last_login on success.

    Raises AccountError (with the status specific message) when sign-in is refused.
    """
    email = normalize_email(email)
    user = User.query.filter_by(email=email).first()

    if not user or not user.check_password(password or ""):
        logger.info("Failed sign-in for %s", email or "<empty>")
        raise AccountError("Invalid email or password")

    if user.status != STATUS_APPROVED:
        message, category = BLOCKED_STATUS_MESSAGES.get(
            user.status, ("Your account is not active. Please contact administrator.", "danger")
        )
        logger.info("Refused sign-in for %s (status %s)", email, user.status)
        raise AccountError(message, category)

    user.last_login = datetime.utcnow()
    db.session.commit()
    logger.info("Signed in %s", email)
    return user


# ---------------------------------------------------------------------
# Admin: user status and role
# ---------------------------------------------------------------------
def _guard_target(user: User, actor: User) -> None:
    if user.id == actor.id:
        raise AccountError("You cannot change your own account status")
    if user.is_admin and not actor.is_super_admin:
        raise AccountError("Only a super admin can change another admin's account")


def _set_status(user: User, actor: User, status: str, action: str) -> User:
    _guard_target(user, actor)
    before = serialize_model(user)

    user.status = status
    if action in ("APPROVE", "REJECT"):
        user.approved_by_id = actor.id
        user.approved_at = datetime.utcnow()

    db.session.flush()
    log_action(user, action, before=before, after=serialize_model(user))
    db.session.commit()

    logger.info("%s %s by %s", action.title(), user.email, actor.email)
    return user


def approve_user(user: User, actor: User) -> User:
    return _set_status(user, actor, STATUS_APPROVED, "APPROVE")


def reject_user(user: User, actor: User) -> User:
    return _set_status(user, actor, STATUS_REJECTED, "REJECT")


def suspend_user(user: User, actor: User) -> User:
    if user.status != STATUS_APPROVED:
        raise AccountError("Only approved users can be suspended", "warning")
    return _set_status(user, actor, STATUS_SUSPENDED, "SUSPEND")


def unsuspend_user(user: User, actor: User) -> User:
    if user.status != STATUS_SUSPENDED:
        raise AccountError("User is not suspended", "warning")
    return _set_status(user, actor, STATUS_APPROVED, "UNSUSPEND")


def set_role(user: User, role: str, actor: User) -> User:
    """Super-admin only. A super admin cannot demote themselves."""
    if not actor.is_super_admin:
        raise AccountError("Only a super admin can change roles")
    if role not in USER_ROLES:
        raise AccountError("Invalid role")
    if user.id == actor.id and role != ROLE_SUPER_ADMIN:
        raise AccountError("You cannot remove your own super admin role")

    before = serialize_model(user)
    user.role = role
    db.session.flush()
    log_action(user, "UPDATE", before=before, after=serialize_model(user))
    db.session.commit()

    logger.info("Role of %s set to %s by %s", user.email, role, actor.email)
    return user


# ---------------------------------------------------------------------
# Admin: site access
# ---------------------------------------------------------------------
def grant_access(user: User, site_ids: Iterable[int], access_level: str, actor: User) -> List[SiteAccess]:
    """Upsert one grant per (user, site). Unknown site ids are refused."""
    if access_level not in ACCESS_LEVELS:
        raise AccountError("Invalid access level")

    site_ids = sorted({int(s) for s in site_ids})
    if not site_ids:
        raise AccountError("Select at least one site", "warning")

    sites = Site.query.filter(Site.id.in_(site_ids)).all()
    if len(sites) != len(site_ids):
        raise AccountError("Invalid site selection")

    grants = []
    for site in sites:
        grant = SiteAccess.query.filter_by(user_id=user.id, site_id=site.id).first()
        if grant is None:
            grant = SiteAccess(user_id=user.id, site_id=site.id)
            db.session.add(grant)
            before = None
            action = "CREATE"
        else:
            before = serialize_model(grant)
            action = "UPDATE"
        grant.access_level = access_level
        grant.granted_by_id = actor.id
        db.session.flush()
        log_action(grant, action, before=before, after=serialize_model(grant))
        grants.append(grant)

    db.session.commit()
    logger.info(
        "Granted %s access on %d site(s) to %s by %s", access_level, len(grants), user.email, actor.email
    )
    return grants


def revoke_access(grant: SiteAccess, actor: User) -> None:
    before = serialize_model(grant)
    log_action(grant, "DELETE", before=before, after=None)
    db.session.delete(grant)
    db.session.commit()
    logger.info("Revoked access grant %s by %s", before.get("id"), actor.email)


# ---------------------------------------------------------------------
# Admin: custom materials
# ---------------------------------------------------------------------
def parse_material_types(raw: str | Iterable[str] | None) -> List[str]:
    """Variant list from a comma/newline separated string. Blanks dropped, default ["Standard"]."""
    if raw is None:
        items: Iterable[str] = []
    elif isinstance(raw, str):
        items = raw.replace("\n", ",").split(",")
    else:
        items = raw

    cleaned: List[str] = []
    for item in items:
        value = (item or "").strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned or ["Standard"]


def _apply_material_fields(
    material: CustomMaterial,
    name: str | None,
    description: str | None,
    unit_type: str | None,
    unit_label: str | None,
    conversion_factor: Optional[float],
    low_stock_threshold: Optional[float],
    material_types,
) -> None:
    name = (name or "").strip()
    if not name:
        raise AccountError("Material name is required")

    existing = CustomMaterial.query.filter(CustomMaterial.name == name).first()
    if existing is not None and existing.id != material.id:
        raise AccountError(f'A material named "{name}" already exists')

    unit_type = unit_type if unit_type in UNIT_TYPES else "weight"
    if conversion_factor is not None and conversion_factor < 0:
        raise AccountError("Conversion factor cannot be negative")
    if low_stock_threshold is not None and low_stock_threshold < 0:
        raise AccountError("Low stock threshold cannot be negative")

    material.name = name
    material.description = (description or "").strip() or None
    material.unit_type = unit_type
    material.unit_label = (unit_label or "").strip() or "tonnes"
    material.conversion_factor = conversion_factor if conversion_factor is not None else 1.0
    material.low_stock_threshold = low_stock_threshold if low_stock_threshold is not None else 10.0
    material.material_types = parse_material_types(material_types)


def create_custom_material(actor: User, **fields) -> CustomMaterial:
    """
    Define a new material. Its stock lives in the shared inventory tables
    under "custom:<id>", so registering the row is all the provisioning needed.
    """
    material = CustomMaterial(status="active", created_by_id=actor.id)
    _apply_material_fields(material, **fields)

    db.session.add(material)
    db.session.flush()
    log_action(material, "CREATE", before=None, after=serialize_model(material))
    db.session.commit()

    logger.info("Custom material %s provisioned as %s", material.name, material.material_key)
    return material


def update_custom_material(material: CustomMaterial, actor: User, **fields) -> CustomMaterial:
    before = serialize_model(material)
    _apply_material_fields(material, **fields)

    db.session.flush()
    log_action(material, "UPDATE", before=before, after=serialize_model(material))
    db.session.commit()

    logger.info("Custom material %s updated by %s", material.name, actor.email)
    return material


def delete_custom_material(material: CustomMaterial, actor: User) -> int:
    """Remove the definition with its inventory rows and transactions."""
    before = serialize_model(material)
    removed, files = purge_material(material.material_key)

    log_action(material, "DELETE", before=before, after=None)
    db.session.delete(material)
    db.session.commit()

    for file_name in files:
        delete_file(file_name)

    logger.info(
        "Custom material %s deleted by %s (%d transactions removed)", before.get("name"), actor.email, removed
    )
    return removed
