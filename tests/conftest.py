"""
Shared fixtures.

Requests run without an outer app context so every request gets a fresh `g`
(and therefore a fresh current_user). Setup helpers open their own context and
return plain ids.
"""

from __future__ import annotations

import pytest

from config import TestingConfig
from sitestock import create_app
from sitestock.extensions import db
from sitestock.models import (
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    STATUS_APPROVED,
    Site,
    SiteAccess,
    User,
)

PASSWORD = "secret123"


@pytest.fixture
def app(tmp_path):
    app = create_app(TestingConfig)
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Active app context for service-level tests (no HTTP requests)."""
    with app.app_context():
        yield app


@pytest.fixture
def make_user(app):
    def _make(email, *, status=STATUS_APPROVED, role=ROLE_USER, password=PASSWORD, full_name="Test User"):
        with app.app_context():
            user = User(
                email=email,
                full_name=full_name,
                status=status,
                role=role,
                requested_access_reason="Site work",
            )
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


@pytest.fixture
def make_site(app):
    def _make(site_name="Riverside Tower", site_code="RT-001", **fields):
        with app.app_context():
            site = Site(
                site_name=site_name,
                site_code=site_code,
                location=fields.pop("location", "Riverside Road"),
                manager_name=fields.pop("manager_name", "Maria Lopez"),
                **fields,
            )
            db.session.add(site)
            db.session.commit()
            return site.id

    return _make


@pytest.fixture
def grant(app):
    def _grant(user_id, site_id, level="read"):
        with app.app_context():
            db.session.add(SiteAccess(user_id=user_id, site_id=site_id, access_level=level))
            db.session.commit()

    return _grant


@pytest.fixture
def admin_id(make_user):
    return make_user("admin@example.com", role=ROLE_ADMIN, full_name="Site Admin")


@pytest.fixture
def super_admin_id(make_user):
    return make_user("root@example.com", role=ROLE_SUPER_ADMIN, full_name="Super Admin")


def login(client, email, password=PASSWORD, follow_redirects=False):
    return client.post(
        "/auth/login",
        data={"email": email, "password": password},
        follow_redirects=follow_redirects,
    )
