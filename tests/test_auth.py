import pytest

from conftest import PASSWORD, login
from sitestock.accounts import AccountError, register_user
from sitestock.extensions import db
from sitestock.models import (
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_SUSPENDED,
    User,
)


def register_form(**overrides):
    data = {
        "full_name": "Priya Nair",
        "email": "Priya@Example.com",
        "phone": "555-0101",
        "company_name": "Nair Builders",
        "requested_access_reason": "I manage deliveries at the harbour site",
        "password": "hunter22",
        "confirm_password": "hunter22",
    }
    data.update(overrides)
    return data


def test_register_creates_pending_user(client, app):
    resp = client.post("/auth/register", data=register_form(), follow_redirects=True)

    assert resp.status_code == 200
    assert b"Registration successful" in resp.data

    with app.app_context():
        user = User.query.filter_by(email="priya@example.com").one()
        assert user.status == STATUS_PENDING
        assert user.role == ROLE_USER
        assert user.company_name == "Nair Builders"
        assert user.check_password("hunter22")


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"confirm_password": "different"}, b"Passwords do not match"),
        ({"password": "abc", "confirm_password": "abc"}, b"at least 6 characters"),
        ({"requested_access_reason": "  "}, b"Please fill all required fields"),
        ({"full_name": ""}, b"Please fill all required fields"),
    ],
)
def test_register_validation(client, app, overrides, message):
    resp = client.post("/auth/register", data=register_form(**overrides))

    assert message in resp.data
    with app.app_context():
        assert User.query.count() == 0


def test_register_duplicate_email(ctx):
    register_user("a@example.com", "secret1", "secret1", "A", "reason")
    with pytest.raises(AccountError):
        register_user("A@example.com ", "secret1", "secret1", "A again", "reason")


@pytest.mark.parametrize(
    "status, message",
    [
        (STATUS_PENDING, b"pending approval"),
        (STATUS_REJECTED, b"has been rejected"),
        (STATUS_SUSPENDED, b"has been suspended"),
    ],
)
def test_blocked_statuses_cannot_sign_in(client, make_user, status, message):
    make_user("blocked@example.com", status=status)

    resp = login(client, "blocked@example.com")

    assert resp.status_code == 200
    assert message in resp.data
    assert client.get("/sites/").status_code == 302


def test_wrong_password(client, make_user):
    make_user("worker@example.com")
    resp = login(client, "worker@example.com", password="nope-nope")
    assert b"Invalid email or password" in resp.data


def test_approved_user_signs_in_and_last_login_is_recorded(client, app, make_user):
    user_id = make_user("worker@example.com")

    resp = login(client, "WORKER@example.com")

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/sites/")
    with app.app_context():
        assert db.session.get(User, user_id).last_login is not None


def test_login_ignores_external_next(client, make_user):
    make_user("worker@example.com")
    resp = client.post(
        "/auth/login?next=https://evil.example.com/",
        data={"email": "worker@example.com", "password": PASSWORD},
    )
    assert resp.headers["Location"].endswith("/sites/")


def test_suspension_ends_an_active_session(client, app, make_user):
    user_id = make_user("worker@example.com")
    login(client, "worker@example.com")
    assert client.get("/sites/").status_code == 200

    with app.app_context():
        db.session.get(User, user_id).status = STATUS_SUSPENDED
        db.session.commit()

    resp = client.get("/sites/", follow_redirects=True)
    assert b"has been suspended" in resp.data
    assert client.get("/sites/").status_code == 302


def test_logout(client, make_user):
    make_user("worker@example.com")
    login(client, "worker@example.com")

    client.post("/auth/logout")

    assert client.get("/sites/").status_code == 302


def test_seed_admin_bootstraps_first_super_admin(client, app):
    resp = client.post(
        "/auth/seed-admin",
        data={"email": "boss@example.com", "password": "topsecret", "full_name": "The Boss"},
    )
    assert resp.status_code == 302

    with app.app_context():
        boss = User.query.filter_by(email="boss@example.com").one()
        assert boss.role == ROLE_SUPER_ADMIN
        assert boss.status == STATUS_APPROVED

    resp = client.get("/auth/seed-admin", follow_redirects=True)
    assert b"A user already exists" in resp.data


def test_create_super_admin_cli_promotes_existing_user(app, make_user):
    make_user("lead@example.com")

    result = app.test_cli_runner().invoke(
        args=["create-super-admin", "lead@example.com", "--password", "newpass1"]
    )

    assert "Super admin ready: lead@example.com" in result.output
    with app.app_context():
        lead = User.query.filter_by(email="lead@example.com").one()
        assert lead.role == ROLE_SUPER_ADMIN
        assert lead.check_password("newpass1")
        assert User.query.count() == 1
