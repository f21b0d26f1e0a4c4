"""
sitestock/seed.py

Bootstrap data for a fresh database.

Rules:
- Safe to run multiple times (idempotent).
- create_super_admin promotes an existing account instead of duplicating it.
- seed_demo adds one demo site with a little stock; it never touches existing sites.
"""

from __future__ import annotations

import logging
from datetime import datetime

from .audit import log_action, serialize_model
from .extensions import db
from .inventory import record_incoming, record_outgoing
from .materials import CEMENT, SAND, STEEL
from .models import ROLE_SUPER_ADMIN, STATUS_APPROVED, Site, User
from .utils import unique_site_code

logger = logging.getLogger(__name__)

DEMO_SITE_NAME = "Demo Riverside Tower"


def create_super_admin(email: str, password: str, full_name: str = "System Administrator") -> User:
    """Create (or promote) an approved super admin account."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValueError("Email and password are required.")

    user = User.query.filter_by(email=email).first()
    before = serialize_model(user) if user else None
    if user is None:
        user = User(email=email, full_name=full_name)
        db.session.add(user)

    user.set_password(password)
    user.role = ROLE_SUPER_ADMIN
    user.status = STATUS_APPROVED
    user.approved_at = user.approved_at or datetime.utcnow()

    db.session.flush()
    log_action(user, "UPDATE" if before else "CREATE", before=before, after=serialize_model(user))
    db.session.commit()

    logger.info("Super admin %s ready", email)
    return user


def seed_demo(actor: User | None = None) -> Site:
    """Create the demo site with opening stock and one issue (idempotent)."""
    site = Site.query.filter_by(site_name=DEMO_SITE_NAME).first()
    if site is not None:
        return site

    site = Site(
        site_name=DEMO_SITE_NAME,
        site_code=unique_site_code(DEMO_SITE_NAME),
        location="Riverside Road",
        manager_name="Site Manager",
        notes="Demo data",
        status="active",
    )
    db.session.add(site)
    db.session.flush()
    log_action(site, "CREATE", before=None, after=serialize_model(site))
    db.session.commit()

    record_incoming(site, SAND, "river_sand", 25, "tonnes", "Demo Quarry", user=actor)
    record_incoming(site, CEMENT, "OPC 53 Grade", 120, "bags", "Demo Cement Co", user=actor)
    record_incoming(site, STEEL, "12", 2.5, "tonnes", "Demo Steel Mills", user=actor)
    record_outgoing(site, SAND, "river_sand", 4, "tonnes", "Foundation Crew", user=actor)

    logger.info("Demo site %s seeded", site.site_code)
    return site
