import io
import os

import pytest
from werkzeug.datastructures import FileStorage

from conftest import login
from sitestock.accounts import AccountError, parse_material_types, set_role
from sitestock.extensions import db
from sitestock.inventory import record_incoming
from sitestock.materials import get_material
from sitestock.models import (
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_SUSPENDED,
    AuditLog,
    CustomMaterial,
    InventoryItem,
    MaterialTransaction,
    Site,
    SiteAccess,
    User,
)


def _user(app, user_id):
    with app.app_context():
        user = db.session.get(User, user_id)
        return {
            "status": user.status,
            "role": user.role,
            "approved_by_id": user.approved_by_id,
            "approved_at": user.approved_at,
        }


# ---------------------------------------------------------------------
# Approval lifecycle
# ---------------------------------------------------------------------
def test_admin_approves_pending_user(client, app, admin_id, make_user):
    user_id = make_user("new@example.com", status=STATUS_PENDING)
    login(client, "admin@example.com")

    page = client.get("/admin/pending")
    assert b"new@example.com" in page.data

    resp = client.post(f"/admin/users/{user_id}/approve", follow_redirects=True)
    assert b"User approved successfully!" in resp.data

    state = _user(app, user_id)
    assert state["status"] == STATUS_APPROVED
    assert state["approved_by_id"] == admin_id
    assert state["approved_at"] is not None

    with app.app_context():
        entry = AuditLog.query.filter_by(entity_type="User", entity_id=user_id, action="APPROVE").one()
        assert entry.username_snapshot == "admin@example.com"

    detail = client.get(f"/admin/users/{user_id}")
    assert b"APPROVE" in detail.data


def test_admin_rejects_pending_user(client, app, admin_id, make_user):
    user_id = make_user("new@example.com", status=STATUS_PENDING)
    login(client, "admin@example.com")

    client.post(f"/admin/users/{user_id}/reject")

    state = _user(app, user_id)
    assert state["status"] == STATUS_REJECTED
    assert state["approved_by_id"] == admin_id


def test_suspend_and_unsuspend(client, app, admin_id, make_user):
    user_id = make_user("crew@example.com")
    login(client, "admin@example.com")

    client.post(f"/admin/users/{user_id}/suspend")
    assert _user(app, user_id)["status"] == STATUS_SUSPENDED

    client.post(f"/admin/users/{user_id}/unsuspend")
    assert _user(app, user_id)["status"] == STATUS_APPROVED


def test_cannot_suspend_pending_user(client, app, admin_id, make_user):
    user_id = make_user("new@example.com", status=STATUS_PENDING)
    login(client, "admin@example.com")

    resp = client.post(f"/admin/users/{user_id}/suspend", follow_redirects=True)

    assert b"Only approved users can be suspended" in resp.data
    assert _user(app, user_id)["status"] == STATUS_PENDING


def test_plain_admin_cannot_suspend_another_admin(client, app, admin_id, make_user):
    other_id = make_user("admin2@example.com", role=ROLE_ADMIN)
    login(client, "admin@example.com")

    client.post(f"/admin/users/{other_id}/suspend")

    assert _user(app, other_id)["status"] == STATUS_APPROVED


def test_non_admin_gets_403(client, make_user):
    user_id = make_user("crew@example.com")
    pending_id = make_user("new@example.com", status=STATUS_PENDING)
    login(client, "crew@example.com")

    assert client.get("/admin/pending").status_code == 403
    assert client.post(f"/admin/users/{pending_id}/approve").status_code == 403
    assert client.get(f"/admin/users/{user_id}").status_code == 403


# ---------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------
def test_role_change_requires_super_admin(client, app, admin_id, super_admin_id, make_user):
    user_id = make_user("crew@example.com")

    login(client, "admin@example.com")
    assert client.post(f"/admin/users/{user_id}/role", data={"role": ROLE_ADMIN}).status_code == 403
    client.post("/auth/logout")

    login(client, "root@example.com")
    client.post(f"/admin/users/{user_id}/role", data={"role": ROLE_ADMIN})
    assert _user(app, user_id)["role"] == ROLE_ADMIN


def test_super_admin_cannot_demote_self(ctx):
    root = User(email="root@example.com", full_name="Root", role=ROLE_SUPER_ADMIN, status=STATUS_APPROVED)
    root.set_password("secret123")
    db.session.add(root)
    db.session.commit()

    with pytest.raises(AccountError):
        set_role(root, ROLE_ADMIN, root)
    assert root.role == ROLE_SUPER_ADMIN


# ---------------------------------------------------------------------
# Site access
# ---------------------------------------------------------------------
def test_grant_access_upserts_per_site(client, app, admin_id, make_user, make_site):
    user_id = make_user("crew@example.com")
    site_a = make_site("Alpha Yard", "AY-001")
    site_b = make_site("Beta Yard", "BY-002")
    login(client, "admin@example.com")

    client.post(
        f"/admin/users/{user_id}/access",
        data={"site_ids": [str(site_a), str(site_b)], "access_level": "read"},
    )
    client.post(
        f"/admin/users/{user_id}/access",
        data={"site_ids": [str(site_a)], "access_level": "write"},
    )

    with app.app_context():
        grants = {g.site_id: g.access_level for g in SiteAccess.query.filter_by(user_id=user_id)}
        assert grants == {site_a: "write", site_b: "read"}
        assert all(g.granted_by_id == admin_id for g in SiteAccess.query.all())


def test_grant_access_rejects_bad_level(client, app, admin_id, make_user, make_site):
    user_id = make_user("crew@example.com")
    site_id = make_site()
    login(client, "admin@example.com")

    resp = client.post(
        f"/admin/users/{user_id}/access",
        data={"site_ids": [str(site_id)], "access_level": "owner"},
        follow_redirects=True,
    )

    assert b"Invalid access level" in resp.data
    with app.app_context():
        assert SiteAccess.query.count() == 0


def test_revoke_access(client, app, admin_id, make_user, make_site, grant):
    user_id = make_user("crew@example.com")
    site_id = make_site()
    grant(user_id, site_id, "write")
    with app.app_context():
        grant_id = SiteAccess.query.one().id
    login(client, "admin@example.com")

    client.post(f"/admin/access/{grant_id}/revoke")

    with app.app_context():
        assert SiteAccess.query.count() == 0
        assert db.session.get(User, user_id) is not None


# ---------------------------------------------------------------------
# Custom materials
# ---------------------------------------------------------------------
def test_parse_material_types():
    assert parse_material_types("Red, ,Fly Ash\nRed") == ["Red", "Fly Ash"]
    assert parse_material_types("") == ["Standard"]
    assert parse_material_types(None) == ["Standard"]


def test_create_custom_material(client, app, admin_id):
    login(client, "admin@example.com")

    resp = client.post(
        "/admin/materials/new",
        data={
            "name": "Bricks",
            "unit_type": "pieces",
            "unit_label": "pieces",
            "conversion_factor": "0.003",
            "low_stock_threshold": "500",
            "material_types": "Red, Fly Ash, ",
        },
        follow_redirects=True,
    )

    assert b"created successfully" in resp.data
    with app.app_context():
        material = CustomMaterial.query.filter_by(name="Bricks").one()
        assert material.material_types == ["Red", "Fly Ash"]
        assert material.created_by_id == admin_id
        spec = get_material(material.material_key)
        assert spec is not None and spec.integral


def test_custom_material_name_required_and_unique(client, app, admin_id):
    login(client, "admin@example.com")

    resp = client.post("/admin/materials/new", data={"name": "  "})
    assert b"Material name is required" in resp.data

    client.post("/admin/materials/new", data={"name": "Gravel"})
    resp = client.post("/admin/materials/new", data={"name": "Gravel"})
    assert b"already exists" in resp.data

    with app.app_context():
        assert CustomMaterial.query.count() == 1


def test_custom_material_page_and_shipments(client, app, admin_id, make_site):
    site_id = make_site()
    login(client, "admin@example.com")
    client.post("/admin/materials/new", data={"name": "Gravel", "material_types": "Pea, Crushed"})
    with app.app_context():
        key = CustomMaterial.query.one().material_key

    assert client.get(f"/inventory/{site_id}/{key}").status_code == 200

    resp = client.post(
        f"/inventory/{site_id}/{key}/incoming",
        data={"subtype": "Pea", "amount": "7", "imported_from": "Pit Co"},
        follow_redirects=True,
    )
    assert b"Added 7.000 tonnes of Pea" in resp.data


def test_update_custom_material(client, app, admin_id):
    login(client, "admin@example.com")
    client.post("/admin/materials/new", data={"name": "Gravel"})
    with app.app_context():
        material_id = CustomMaterial.query.one().id

    client.post(
        f"/admin/materials/{material_id}/edit",
        data={"name": "River Gravel", "unit_type": "volume", "unit_label": "m3", "material_types": "Fine"},
    )

    with app.app_context():
        material = db.session.get(CustomMaterial, material_id)
        assert material.name == "River Gravel"
        assert material.unit_type == "volume"
        assert material.material_types == ["Fine"]


def test_delete_custom_material_removes_its_stock(client, app, admin_id, make_site):
    site_id = make_site()
    login(client, "admin@example.com")
    client.post("/admin/materials/new", data={"name": "Gravel"})
    with app.app_context():
        material = CustomMaterial.query.one()
        material_id, key = material.id, material.material_key
        spec = get_material(key)
        record_incoming(db.session.get(Site, site_id), spec, "Standard", 4, "tonnes", "Pit Co")

    resp = client.post(f"/admin/materials/{material_id}/delete", follow_redirects=True)
    assert b"deleted successfully" in resp.data

    with app.app_context():
        assert CustomMaterial.query.count() == 0
        assert InventoryItem.query.filter_by(material=key).count() == 0
        assert MaterialTransaction.query.filter_by(material=key).count() == 0

    assert client.get(f"/inventory/{site_id}/{key}").status_code == 404


def test_delete_custom_material_removes_bill_files(client, app, admin_id, make_site):
    site_id = make_site()
    login(client, "admin@example.com")
    client.post("/admin/materials/new", data={"name": "Gravel"})
    with app.app_context():
        material = CustomMaterial.query.one()
        material_id, spec = material.id, get_material(material.material_key)
        upload = FileStorage(stream=io.BytesIO(b"%PDF-1.4 bill"), filename="bill.pdf")
        t = record_incoming(db.session.get(Site, site_id), spec, "Standard", 4, "tonnes", "Pit Co", upload=upload)
        path = os.path.join(app.config["UPLOAD_FOLDER"], t.bill_file_name)
    assert os.path.exists(path)

    client.post(f"/admin/materials/{material_id}/delete")

    assert not os.path.exists(path)
    with app.app_context():
        assert CustomMaterial.query.count() == 0
