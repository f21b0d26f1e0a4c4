"""
sitestock/blueprints/inventory/routes.py

Per-material inventory pages, one generic implementation for every material
(sand, stone chips, steel, cement, diesel and custom materials).

Routes:
- GET  /inventory/<site_id>/<material>                     stock, summary, breakdowns, log
- POST /inventory/<site_id>/<material>/incoming            record a delivery (write access)
- POST /inventory/<site_id>/<material>/outgoing            record an issue (write access)
- GET  /inventory/<site_id>/<material>/export.csv          filtered log as CSV
- POST /inventory/<site_id>/transactions/<id>/delete       reverse + delete (super admin)
- GET  /inventory/files/<token>                            signed, time-limited file link

Domain errors (InventoryError subclasses) become flashed messages + redirect.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

from flask import (
    Blueprint,
    abort,
    current_app,
    flash,
    redirect,
    render_template,
    request,
    send_from_directory,
    url_for,
)
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from ...inventory import (
    InventoryError,
    delete_transaction,
    export_rows,
    format_quantity,
    inventory_items,
    inventory_map,
    material_totals,
    record_incoming,
    record_outgoing,
    transactions_for,
)
from ...materials import STEEL, STEEL_STANDARD_LENGTH, STEEL_TALLY_TOLERANCE, get_material
from ...models import ACCESS_READ, ACCESS_WRITE, MaterialTransaction, Site
from ...security import has_site_access, site_access_required, super_admin_required
from ...stock import (
    PERIOD_CHOICES,
    PeriodFilter,
    contractor_summary,
    low_stock_items,
    period_totals,
    steel_tally_discrepancies,
    stock_summary,
    supplier_summary,
)
from ...storage import is_image, is_pdf, read_file_token, signed_url
from ...utils import csv_response, parse_amount

logger = logging.getLogger(__name__)

inventory_bp = Blueprint("inventory", __name__, url_prefix="/inventory")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _load_material(material: str):
    spec = get_material(material)
    if spec is None:
        abort(404)
    return spec


def _period_from_request() -> PeriodFilter:
    return PeriodFilter.from_args(request.args, current_app.config.get("DEFAULT_PERIOD", "last30days"))


def _material_url(site_id: int, material: str) -> str:
    """Back to the material page, keeping the period filter the form was posted from."""
    args = {k: v for k, v in request.args.items() if k in ("period", "start_date", "end_date")}
    return url_for("inventory.material_page", site_id=site_id, material=material, **args)


# ---------------------------------------------------------------------
# MATERIAL PAGE
# ---------------------------------------------------------------------
@inventory_bp.route("/<int:site_id>/<material>")
@login_required
@site_access_required(ACCESS_READ)
def material_page(site_id: int, material: str):
    """Current stock, period summary, supplier / contractor breakdowns and the log."""
    site = Site.query.get_or_404(site_id)
    spec = _load_material(material)

    period = _period_from_request()
    inventory = inventory_map(site.id, spec.key)
    transactions = transactions_for(site.id, spec.key)
    in_period = period.apply(transactions)

    threshold = spec.threshold_for(site)

    context = {
        "site": site,
        "spec": spec,
        "period": period,
        "period_choices": PERIOD_CHOICES,
        "inventory": inventory,
        "totals": material_totals(site.id, spec),
        "summary": stock_summary(spec.subtypes.keys(), inventory, in_period),
        "suppliers": supplier_summary(in_period),
        "contractors": contractor_summary(in_period),
        "period_totals": period_totals(in_period),
        "low_stock": low_stock_items(inventory, threshold),
        "threshold": threshold,
        "transactions": in_period,
        "can_edit": has_site_access(site.id, ACCESS_WRITE),
        "can_delete": current_user.is_super_admin,
        "fmt": lambda value: format_quantity(spec, value),
        "file_url": lambda name: signed_url(name, site.id),
        "steel_discrepancies": [],
        "steel_rows": [],
        "steel_standard_length": STEEL_STANDARD_LENGTH,
    }
    if spec.key == STEEL.key:
        context["steel_rows"] = inventory_items(site.id, spec.key)
        context["steel_discrepancies"] = steel_tally_discrepancies(context["steel_rows"], STEEL_TALLY_TOLERANCE)

    return render_template("inventory/material.html", **context)


# ---------------------------------------------------------------------
# SHIPMENTS
# ---------------------------------------------------------------------
@inventory_bp.route("/<int:site_id>/<material>/incoming", methods=["POST"])
@login_required
@site_access_required(ACCESS_WRITE)
def incoming(site_id: int, material: str):
    """Record a delivery from a supplier."""
    site = Site.query.get_or_404(site_id)
    spec = _load_material(material)

    try:
        result = record_incoming(
            site,
            spec,
            subtype=(request.form.get("subtype") or "").strip() or None,
            amount=parse_amount(request.form.get("amount")),
            unit=request.form.get("unit"),
            supplier=request.form.get("imported_from"),
            upload=request.files.get("bill_file"),
            length=parse_amount(request.form.get("length")),
            user=current_user,
        )
    except InventoryError as exc:
        flash(str(exc), "danger")
        return redirect(_material_url(site_id, material))
    except SQLAlchemyError:
        flash("The transaction could not be saved. Please try again.", "danger")
        return redirect(_material_url(site_id, material))

    for warning in result.warnings:
        flash(warning, "warning")

    t = result.transaction
    flash(
        f"Added {format_quantity(spec, t.quantity)} {spec.stock_unit} of {spec.subtype_label(t.subtype)} "
        f"to {site.site_name} from {t.imported_from}",
        "success",
    )
    return redirect(_material_url(site_id, material))


@inventory_bp.route("/<int:site_id>/<material>/outgoing", methods=["POST"])
@login_required
@site_access_required(ACCESS_WRITE)
def outgoing(site_id: int, material: str):
    """Record stock issued to a contractor."""
    site = Site.query.get_or_404(site_id)
    spec = _load_material(material)

    try:
        result = record_outgoing(
            site,
            spec,
            subtype=(request.form.get("subtype") or "").strip() or None,
            amount=parse_amount(request.form.get("amount")),
            unit=request.form.get("unit"),
            recipient=request.form.get("recipient"),
            upload=request.files.get("issue_slip_file"),
            length=parse_amount(request.form.get("length")),
            user=current_user,
        )
    except InventoryError as exc:
        flash(str(exc), "danger")
        return redirect(_material_url(site_id, material))
    except SQLAlchemyError:
        flash("The transaction could not be saved. Please try again.", "danger")
        return redirect(_material_url(site_id, material))

    for warning in result.warnings:
        flash(warning, "warning")

    t = result.transaction
    flash(
        f"Shipped {format_quantity(spec, t.quantity)} {spec.stock_unit} of {spec.subtype_label(t.subtype)} "
        f"from {site.site_name} to {t.recipient}",
        "success",
    )
    return redirect(_material_url(site_id, material))


@inventory_bp.route("/<int:site_id>/transactions/<int:transaction_id>/delete", methods=["POST"])
@login_required
@super_admin_required
def delete_transaction_view(site_id: int, transaction_id: int):
    """Delete a transaction and reverse its effect on stock (super admin only)."""
    transaction = MaterialTransaction.query.filter_by(id=transaction_id, site_id=site_id).first_or_404()
    material = transaction.material

    delete_transaction(transaction)

    flash("Transaction deleted and stock adjusted.", "success")
    return redirect(_material_url(site_id, material))


# ---------------------------------------------------------------------
# EXPORT
# ---------------------------------------------------------------------
@inventory_bp.route("/<int:site_id>/<material>/export.csv")
@login_required
@site_access_required(ACCESS_READ)
def export_transactions(site_id: int, material: str):
    """Transactions of the selected period as CSV."""
    site = Site.query.get_or_404(site_id)
    spec = _load_material(material)

    period = _period_from_request()
    rows = export_rows(site, spec, period.apply(transactions_for(site.id, spec.key)))

    slug = spec.key.replace(":", "-")
    filename = f"{site.site_code}_{slug}_transactions_{datetime.utcnow():%Y-%m-%d}.csv"
    return csv_response(filename, rows)


# ---------------------------------------------------------------------
# FILES
# ---------------------------------------------------------------------
@inventory_bp.route("/files/<token>")
@login_required
def view_file(token: str):
    """Serve a bill / issue slip behind a signed, expiring token."""
    payload = read_file_token(token)
    if payload is None:
        flash("This file link has expired. Open it again from the transaction list.", "warning")
        return redirect(url_for("sites.list_sites"))

    site_id = payload.get("s")
    if not has_site_access(site_id, ACCESS_READ):
        abort(403)

    file_name = payload.get("f") or ""
    folder, _, name = file_name.partition("/")
    directory = os.path.join(current_app.config["UPLOAD_FOLDER"], folder)

    # Images and PDFs open inline, anything else downloads
    return send_from_directory(
        directory,
        name,
        as_attachment=not (is_image(name) or is_pdf(name)),
    )
