"""
sitestock/blueprints/admin/routes.py

Admin Routes – user approval, site access and custom materials

Includes:
- Pending approvals and the user directory
- approve / reject / suspend / unsuspend, role changes (super admin only)
- Site access grants (read / write / admin), revoke
- Custom material definitions (create / edit / delete)

NOTES:
- UI is never trusted. All validations happen server-side (sitestock/accounts.py).
- Audit is recorded in the same transaction as the data change.
"""

from __future__ import annotations

from flask import (
    Blueprint,
    render_template,
    request,
    redirect,
    url_for,
    flash,
)
from flask_login import login_required, current_user

from ... import accounts
from ...audit import history_for
from ...accounts import AccountError, UNIT_TYPES
from ...inventory import material_totals
from ...materials import spec_for_custom
from ...models import (
    ACCESS_LEVELS,
    STATUS_PENDING,
    USER_ROLES,
    USER_STATUSES,
    CustomMaterial,
    Site,
    SiteAccess,
    User,
)
from ...security import admin_required, super_admin_required
from ...utils import parse_amount, parse_optional_int, safe_next_url

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# -------------------------------------------------------
# HELPERS
# -------------------------------------------------------
def _back(fallback_endpoint: str = "admin.users_list", **values):
    raw = request.form.get("next") or request.args.get("next")
    return redirect(safe_next_url(raw, fallback_endpoint, **values))


def _run(action, success_message: str, *args, **kwargs):
    """Call an accounts action and flash its outcome."""
    try:
        action(*args, **kwargs)
    except AccountError as exc:
        flash(exc.message, exc.category)
        return False
    flash(success_message, "success")
    return True


def _material_fields() -> dict:
    form = request.form
    return {
        "name": form.get("name"),
        "description": form.get("description"),
        "unit_type": form.get("unit_type"),
        "unit_label": form.get("unit_label"),
        "conversion_factor": parse_amount(form.get("conversion_factor")),
        "low_stock_threshold": parse_amount(form.get("low_stock_threshold")),
        "material_types": form.get("material_types"),
    }


# -------------------------------------------------------
# USERS
# -------------------------------------------------------
@admin_bp.route("/pending")
@login_required
@admin_required
def pending_users():
    """Accounts waiting for approval, oldest first."""
    users = User.query.filter_by(status=STATUS_PENDING).order_by(User.created_at.asc()).all()
    return render_template("admin/pending.html", users=users)


@admin_bp.route("/users")
@login_required
@admin_required
def users_list():
    """All accounts, optionally filtered by status."""
    status = (request.args.get("status") or "").strip()
    q = User.query
    if status in USER_STATUSES:
        q = q.filter_by(status=status)
    users = q.order_by(User.created_at.desc()).all()
    return render_template(
        "admin/users.html",
        users=users,
        statuses=USER_STATUSES,
        status_filter=status,
    )


@admin_bp.route("/users/<int:user_id>")
@login_required
@admin_required
def user_detail(user_id: int):
    """Profile, status actions and site access grants of one user."""
    user = User.query.get_or_404(user_id)
    grants = (
        SiteAccess.query.filter_by(user_id=user.id)
        .join(Site, Site.id == SiteAccess.site_id)
        .order_by(Site.site_name.asc())
        .all()
    )
    sites = Site.query.order_by(Site.site_name.asc()).all()
    return render_template(
        "admin/user_detail.html",
        user=user,
        grants=grants,
        sites=sites,
        access_levels=ACCESS_LEVELS,
        roles=USER_ROLES,
        history=history_for("User", user.id),
    )


@admin_bp.route("/users/<int:user_id>/approve", methods=["POST"])
@login_required
@admin_required
def approve_user(user_id: int):
    user = User.query.get_or_404(user_id)
    _run(accounts.approve_user, "User approved successfully!", user, current_user)
    return _back("admin.pending_users")


@admin_bp.route("/users/<int:user_id>/reject", methods=["POST"])
@login_required
@admin_required
def reject_user(user_id: int):
    user = User.query.get_or_404(user_id)
    _run(accounts.reject_user, "User rejected", user, current_user)
    return _back("admin.pending_users")


@admin_bp.route("/users/<int:user_id>/suspend", methods=["POST"])
@login_required
@admin_required
def suspend_user(user_id: int):
    user = User.query.get_or_404(user_id)
    _run(accounts.suspend_user, "User suspended successfully", user, current_user)
    return _back()


@admin_bp.route("/users/<int:user_id>/unsuspend", methods=["POST"])
@login_required
@admin_required
def unsuspend_user(user_id: int):
    user = User.query.get_or_404(user_id)
    _run(accounts.unsuspend_user, "User unsuspended successfully", user, current_user)
    return _back()


@admin_bp.route("/users/<int:user_id>/role", methods=["POST"])
@login_required
@super_admin_required
def set_role(user_id: int):
    user = User.query.get_or_404(user_id)
    role = (request.form.get("role") or "").strip()
    _run(accounts.set_role, "Role updated", user, role, current_user)
    return _back("admin.user_detail", user_id=user.id)


# -------------------------------------------------------
# SITE ACCESS
# -------------------------------------------------------
@admin_bp.route("/users/<int:user_id>/access", methods=["POST"])
@login_required
@admin_required
def grant_access(user_id: int):
    """Grant (or change) access on one or more sites."""
    user = User.query.get_or_404(user_id)
    site_ids = [
        sid for sid in (parse_optional_int(v) for v in request.form.getlist("site_ids")) if sid is not None
    ]
    level = (request.form.get("access_level") or "").strip()
    _run(accounts.grant_access, "Site access granted!", user, site_ids, level, current_user)
    return _back("admin.user_detail", user_id=user.id)


@admin_bp.route("/access/<int:grant_id>/revoke", methods=["POST"])
@login_required
@admin_required
def revoke_access(grant_id: int):
    grant = SiteAccess.query.get_or_404(grant_id)
    user_id = grant.user_id
    _run(accounts.revoke_access, "Site access revoked", grant, current_user)
    return _back("admin.user_detail", user_id=user_id)


# -------------------------------------------------------
# CUSTOM MATERIALS
# -------------------------------------------------------
@admin_bp.route("/materials")
@login_required
@admin_required
def materials_list():
    materials = CustomMaterial.query.order_by(CustomMaterial.name.asc()).all()
    return render_template("admin/materials.html", materials=materials)


@admin_bp.route("/materials/new", methods=["GET", "POST"])
@login_required
@admin_required
def create_material():
    if request.method == "POST":
        fields = _material_fields()
        try:
            material = accounts.create_custom_material(current_user, **fields)
        except AccountError as exc:
            flash(exc.message, exc.category)
            return render_template(
                "admin/material_form.html", material=None, form=request.form,
                unit_types=UNIT_TYPES, form_title="New Material",
            )
        flash(f'Custom material "{material.name}" created successfully!', "success")
        return redirect(url_for("admin.materials_list"))

    return render_template(
        "admin/material_form.html", material=None, form={}, unit_types=UNIT_TYPES, form_title="New Material",
    )


@admin_bp.route("/materials/<int:material_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def edit_material(material_id: int):
    material = CustomMaterial.query.get_or_404(material_id)

    if request.method == "POST":
        try:
            accounts.update_custom_material(material, current_user, **_material_fields())
        except AccountError as exc:
            flash(exc.message, exc.category)
            return redirect(url_for("admin.edit_material", material_id=material.id))
        flash(f'Material "{material.name}" updated successfully!', "success")
        return redirect(url_for("admin.materials_list"))

    return render_template(
        "admin/material_form.html", material=material, form={}, unit_types=UNIT_TYPES, form_title="Edit Material",
    )


@admin_bp.route("/materials/<int:material_id>/delete", methods=["POST"])
@login_required
@admin_required
def delete_material(material_id: int):
    """Delete a definition together with its stock and transactions at every site."""
    material = CustomMaterial.query.get_or_404(material_id)
    name = material.name
    _run(accounts.delete_custom_material, f'Material "{name}" deleted successfully!', material, current_user)
    return redirect(url_for("admin.materials_list"))


@admin_bp.route("/materials/<int:material_id>/stock")
@login_required
@admin_required
def material_stock(material_id: int):
    """Totals of one custom material across all sites."""
    material = CustomMaterial.query.get_or_404(material_id)
    spec = spec_for_custom(material)
    rows = [
        {"site": site, **material_totals(site.id, spec)}
        for site in Site.query.order_by(Site.site_name.asc()).all()
    ]
    return render_template("admin/material_stock.html", material=material, spec=spec, rows=rows)
