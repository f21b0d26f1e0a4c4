"""
sitestock/blueprints/sites/routes.py

Site directory and site dashboard.

Includes:
- list (search by name / code / manager / location, filter by status)
- create / edit / delete (admin only)
- dashboard: totals per material, 10 most recent transactions, low-stock alerts
- CSV export of visible sites with per-material totals

NOTES:
- Admins see every site; other users only the sites they were granted.
- Audit must be recorded in the same transaction as the data change.
  Pattern: db.session.flush() -> log_action(...) -> db.session.commit()
"""

from __future__ import annotations

from datetime import datetime

from flask import (
    Blueprint,
    render_template,
    request,
    redirect,
    url_for,
    flash,
)
from flask_login import login_required, current_user
from sqlalchemy import or_

from ...audit import log_action, serialize_model
from ...extensions import db
from ...inventory import delete_site, inventory_items, low_stock_alerts, recent_transactions, site_overview
from ...materials import BUILTIN_MATERIALS, STEEL, STEEL_TALLY_TOLERANCE, get_material
from ...models import SITE_STATUSES, Site, SiteAccess
from ...security import admin_required, site_access_required
from ...stock import steel_tally_discrepancies
from ...utils import csv_response, parse_optional_int, unique_site_code

sites_bp = Blueprint("sites", __name__, url_prefix="/sites")

THRESHOLD_FIELDS = [
    (spec.threshold_attr, spec) for spec in BUILTIN_MATERIALS.values() if spec.threshold_attr
]


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _visible_sites_query():
    """Sites the current user may see."""
    q = Site.query
    if not current_user.is_admin:
        q = q.join(SiteAccess, SiteAccess.site_id == Site.id).filter(SiteAccess.user_id == current_user.id)
    return q


def _apply_list_filters(q):
    search = (request.args.get("q") or "").strip()
    status = (request.args.get("status") or "").strip()

    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Site.site_name.ilike(like),
                Site.site_code.ilike(like),
                Site.manager_name.ilike(like),
                Site.location.ilike(like),
            )
        )
    if status and status != "all":
        q = q.filter(Site.status == status)
    return q


def _read_site_form(site: Site) -> str | None:
    """Copy form values onto site. Returns an error message or None."""
    form = request.form
    site_name = (form.get("site_name") or "").strip()
    location = (form.get("location") or "").strip()
    manager_name = (form.get("manager_name") or "").strip()
    status = (form.get("status") or "active").strip()

    if not site_name or not location or not manager_name:
        return "Site name, location and manager are required."
    if status not in SITE_STATUSES:
        return "Invalid site status."

    thresholds = {}
    for attr, spec in THRESHOLD_FIELDS:
        raw = form.get(attr)
        value = parse_optional_int(raw)
        if raw not in (None, "") and (value is None or value < 0):
            return f"{spec.label} low stock threshold must be a whole number of at least 0."
        thresholds[attr] = value if value is not None else int(spec.default_threshold)

    site.site_name = site_name
    site.location = location
    site.manager_name = manager_name
    site.status = status
    site.notes = (form.get("notes") or "").strip() or None
    for attr, value in thresholds.items():
        setattr(site, attr, value)
    return None


def _form_context(site, form_title):
    return {
        "site": site,
        "form_title": form_title,
        "statuses": SITE_STATUSES,
        "threshold_fields": THRESHOLD_FIELDS,
    }


# ---------------------------------------------------------------------
# LIST
# ---------------------------------------------------------------------
@sites_bp.route("/")
@login_required
def list_sites():
    """Sites visible to the user, with search and status filter."""
    q = _apply_list_filters(_visible_sites_query())
    sites = q.order_by(Site.created_at.desc(), Site.id.desc()).all()

    return render_template(
        "sites/list.html",
        sites=sites,
        statuses=SITE_STATUSES,
        search=request.args.get("q", ""),
        status_filter=request.args.get("status", ""),
    )


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
@sites_bp.route("/new", methods=["GET", "POST"])
@login_required
@admin_required
def create_site():
    """Create a site (admin only). The site code is generated from the name."""
    if request.method == "POST":
        site = Site()
        error = _read_site_form(site)
        if error:
            flash(error, "danger")
            return render_template("sites/form.html", **_form_context(site, "New Site"))

        site.site_code = unique_site_code(site.site_name)

        db.session.add(site)
        db.session.flush()
        log_action(site, "CREATE", before=None, after=serialize_model(site))
        db.session.commit()

        flash(f"Site {site.site_name} ({site.site_code}) created.", "success")
        return redirect(url_for("sites.site_detail", site_id=site.id))

    return render_template("sites/form.html", **_form_context(None, "New Site"))


# ---------------------------------------------------------------------
# EDIT
# ---------------------------------------------------------------------
@sites_bp.route("/<int:site_id>/edit", methods=["GET", "POST"])
@login_required
@admin_required
def edit_site(site_id: int):
    """Edit site details and thresholds (admin only). The code never changes."""
    site = Site.query.get_or_404(site_id)

    if request.method == "POST":
        before_snapshot = serialize_model(site)
        error = _read_site_form(site)
        if error:
            db.session.rollback()
            flash(error, "danger")
            return redirect(url_for("sites.edit_site", site_id=site_id))

        site.updated_at = datetime.utcnow()
        db.session.flush()
        log_action(site, "UPDATE", before=before_snapshot, after=serialize_model(site))
        db.session.commit()

        flash("Site updated.", "success")
        return redirect(url_for("sites.site_detail", site_id=site.id))

    return render_template("sites/form.html", **_form_context(site, "Edit Site"))


# ---------------------------------------------------------------------
# DELETE
# ---------------------------------------------------------------------
@sites_bp.route("/<int:site_id>/delete", methods=["POST"])
@login_required
@admin_required
def delete_site_view(site_id: int):
    """Delete a site with all of its stock, transactions, grants and files (admin only)."""
    site = Site.query.get_or_404(site_id)
    name = site.site_name
    delete_site(site)

    flash(f"Site {name} and all of its records were deleted.", "success")
    return redirect(url_for("sites.list_sites"))


# ---------------------------------------------------------------------
# DASHBOARD
# ---------------------------------------------------------------------
@sites_bp.route("/<int:site_id>")
@login_required
@site_access_required()
def site_detail(site_id: int):
    """Per-site dashboard."""
    site = Site.query.get_or_404(site_id)
    overview = site_overview(site)
    specs = [row["material"] for row in overview]

    recent = []
    for t in recent_transactions(site.id, limit=10):
        spec = next((s for s in specs if s.key == t.material), None) or get_material(t.material)
        recent.append({"transaction": t, "material": spec})

    return render_template(
        "sites/detail.html",
        site=site,
        overview=overview,
        recent=recent,
        alerts=low_stock_alerts(site, specs),
        steel_discrepancies=steel_tally_discrepancies(
            inventory_items(site.id, STEEL.key), STEEL_TALLY_TOLERANCE
        ),
        can_edit=current_user.can_edit_site(site.id),
    )


# ---------------------------------------------------------------------
# EXPORT
# ---------------------------------------------------------------------
@sites_bp.route("/export.csv")
@login_required
def export_sites():
    """CSV of visible sites with current totals per material."""
    sites = _apply_list_filters(_visible_sites_query()).order_by(Site.site_name.asc()).all()

    rows = []
    header = ["Site Code", "Site Name", "Location", "Manager", "Status", "Created"]
    material_labels = None
    for site in sites:
        overview = site_overview(site)
        if material_labels is None:
            material_labels = [f"{row['material'].label} ({row['material'].stock_unit})" for row in overview]
            rows.append(header + material_labels)
        rows.append(
            [
                site.site_code,
                site.site_name,
                site.location,
                site.manager_name,
                site.status,
                site.created_at.date().isoformat() if site.created_at else "",
            ]
            + [f"{row['quantity']:.3f}".rstrip("0").rstrip(".") or "0" for row in overview]
        )
    if not rows:
        rows.append(header)

    return csv_response(f"sites_{datetime.utcnow():%Y-%m-%d}.csv", rows)
