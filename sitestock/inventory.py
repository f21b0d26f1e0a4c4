"""
sitestock/inventory.py

Stock writes and reads for every material.

Rules enforced here (never in templates):
- quantities are positive and counterparties are required
- outgoing shipments cannot exceed current stock
- stock never goes negative when a transaction is reversed

Audit follows the usual pattern: db.session.flush() -> log_action(...) -> db.session.commit()
A bill / issue slip that fails to store does not block the shipment; the caller
gets the failure back as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.datastructures import FileStorage

from .audit import log_action, serialize_model
from .extensions import db
from .materials import STEEL, MaterialSpec, all_materials
from .models import (
    DIRECTION_INCOMING,
    DIRECTION_OUTGOING,
    InventoryItem,
    MaterialTransaction,
    Site,
)
from .stock import alert_severity, low_stock_items
from .storage import StorageError, delete_file, has_upload, save_upload

logger = logging.getLogger(__name__)

# Float noise allowed when comparing an outgoing amount with stock
_EPSILON = 1e-9

# Steel wastage above this (tonnes) is reported back to the user
STEEL_WASTAGE_WARNING = 0.01


class InventoryError(Exception):
    """Base class for stock errors that routes turn into flashed messages."""


class ValidationError(InventoryError):
    """Missing or invalid shipment input."""


class InsufficientStock(InventoryError):
    def __init__(self, site: Site, spec: MaterialSpec, subtype: str, available: float, requested: float):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock at {site.site_name}! "
            f"Available: {format_quantity(spec, available)} {spec.stock_unit}, "
            f"Requested: {format_quantity(spec, requested)} {spec.stock_unit}"
        )


@dataclass
class ShipmentResult:
    transaction: MaterialTransaction
    warnings: List[str] = field(default_factory=list)


def format_quantity(spec: MaterialSpec, value: float | None) -> str:
    value = float(value or 0)
    if spec.integral:
        return str(int(round(value)))
    return f"{value:.3f}"


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def inventory_items(site_id: int, material_key: str) -> List[InventoryItem]:
    return (
        InventoryItem.query.filter_by(site_id=site_id, material=material_key)
        .order_by(InventoryItem.subtype.asc(), InventoryItem.length.asc())
        .all()
    )


def inventory_map(site_id: int, material_key: str) -> Dict[str, float]:
    """subtype -> current quantity (steel bars of every length added together)."""
    stock: Dict[str, float] = {}
    for item in inventory_items(site_id, material_key):
        stock[item.subtype] = stock.get(item.subtype, 0.0) + float(item.quantity or 0)
    return stock


def transactions_for(site_id: int, material_key: str) -> List[MaterialTransaction]:
    """Full log for a material at a site, newest first."""
    return (
        MaterialTransaction.query.filter_by(site_id=site_id, material=material_key)
        .order_by(MaterialTransaction.timestamp.desc(), MaterialTransaction.id.desc())
        .all()
    )


def recent_transactions(site_id: int, limit: int = 10) -> List[MaterialTransaction]:
    """Most recent transactions across all materials of a site."""
    return (
        MaterialTransaction.query.filter_by(site_id=site_id)
        .order_by(MaterialTransaction.timestamp.desc(), MaterialTransaction.id.desc())
        .limit(limit)
        .all()
    )


def material_totals(site_id: int, spec: MaterialSpec) -> Dict[str, float]:
    items = inventory_items(site_id, spec.key)
    return {
        "quantity": sum(float(i.quantity or 0) for i in items),
        "weight": sum(float(i.weight or 0) for i in items),
    }


def low_stock_alerts(site: Site, specs: Optional[Iterable[MaterialSpec]] = None) -> List[dict]:
    """Low-stock rows for every material of a site, most severe first."""
    alerts = []
    for spec in specs if specs is not None else all_materials():
        threshold = spec.threshold_for(site)
        inventory = inventory_map(site.id, spec.key)
        for subtype, quantity in low_stock_items(inventory, threshold).items():
            alerts.append(
                {
                    "material": spec,
                    "subtype": subtype,
                    "label": spec.subtype_label(subtype),
                    "quantity": quantity,
                    "threshold": threshold,
                    "severity": alert_severity(quantity, threshold, spec.high_alert_below),
                }
            )
    alerts.sort(key=lambda a: (a["severity"] != "high", a["material"].label, a["label"]))
    return alerts


def site_overview(site: Site) -> List[dict]:
    """Per-material totals for the site dashboard and the sites CSV export."""
    overview = []
    for spec in all_materials():
        totals = material_totals(site.id, spec)
        overview.append({"material": spec, **totals})
    return overview


# ---------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------
def _validate(spec: MaterialSpec, subtype: str | None, amount: float | None, counterparty: str | None,
              counterparty_label: str) -> str:
    if not subtype or amount is None or not (counterparty or "").strip():
        raise ValidationError(f"Please fill all required fields including {counterparty_label}")
    if subtype not in spec.subtypes:
        raise ValidationError(f"Unknown {spec.label} type: {subtype}")
    if amount <= 0:
        raise ValidationError("Quantity must be greater than zero")
    return counterparty.strip()


def _row_length(length: float | None) -> float:
    """Row key length: the bar length for steel, 0 for everything else."""
    return float(length) if length else 0.0


def _find_item(site_id: int, material_key: str, subtype: str, length: float | None) -> Optional[InventoryItem]:
    return InventoryItem.query.filter_by(
        site_id=site_id, material=material_key, subtype=subtype, length=_row_length(length)
    ).first()


def _get_or_create_item(site_id: int, material_key: str, subtype: str, length: float | None) -> InventoryItem:
    item = _find_item(site_id, material_key, subtype, length)
    if item is None:
        item = InventoryItem(
            site_id=site_id, material=material_key, subtype=subtype, length=_row_length(length), quantity=0.0
        )
        db.session.add(item)
    return item


def _save_shipment(transaction: MaterialTransaction, stored_file: str | None) -> None:
    """Flush, audit and commit a new transaction. A file saved for it is removed if the commit fails."""
    direction, material = transaction.direction, transaction.material
    try:
        db.session.add(transaction)
        db.session.flush()
        log_action(transaction, "CREATE", before=None, after=serialize_model(transaction))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        delete_file(stored_file)
        logger.exception("Could not save %s %s transaction", direction, material)
        raise


def _store_file(upload: FileStorage | None, folder: str, site: Site, warnings: List[str]):
    """(stored name, original name); failures become warnings."""
    if not has_upload(upload):
        return None, None
    try:
        stored = save_upload(upload, folder, site.site_code)
    except StorageError as exc:
        warnings.append(f"File upload failed, but transaction will be saved without file ({exc})")
        return None, upload.filename
    return stored.file_name, stored.original_name


def record_incoming(
    site: Site,
    spec: MaterialSpec,
    subtype: str | None,
    amount: float | None,
    unit: str | None,
    supplier: str | None,
    upload: FileStorage | None = None,
    length: float | None = None,
    user=None,
) -> ShipmentResult:
    """Add stock from a supplier delivery."""
    supplier = _validate(spec, subtype, amount, supplier, "supplier/vendor information")
    unit = unit if unit in spec.input_units else spec.input_units[0]

    conversion = spec.convert_incoming(subtype, amount, unit, length)
    if conversion.quantity <= 0:
        raise ValidationError(f"Amount is too small to add any {spec.stock_unit} of {spec.subtype_label(subtype)}")

    warnings: List[str] = []
    file_name, original_name = _store_file(upload, spec.bills_folder, site, warnings)

    item = _get_or_create_item(site.id, spec.key, subtype, conversion.length)
    item.quantity = float(item.quantity or 0) + conversion.quantity
    if conversion.weight is not None:
        item.weight = float(item.weight or 0) + conversion.weight

    transaction = MaterialTransaction(
        site_id=site.id,
        material=spec.key,
        subtype=subtype,
        direction=DIRECTION_INCOMING,
        quantity=conversion.quantity,
        weight=conversion.weight,
        unit=spec.stock_unit,
        imported_from=supplier,
        bill_file_name=file_name,
        bill_file_original_name=original_name,
        length=conversion.length,
        input_weight=conversion.input_weight,
        wastage=conversion.wastage,
        timestamp=datetime.utcnow(),
        created_by_id=getattr(user, "id", None),
    )
    _save_shipment(transaction, file_name)

    if spec.key == STEEL.key and (conversion.wastage or 0) > STEEL_WASTAGE_WARNING:
        warnings.append(
            f"Wastage of {conversion.wastage:.3f} tonnes: {conversion.input_weight:.3f} t delivered, "
            f"{conversion.weight:.3f} t counted as {int(conversion.quantity)} whole bars"
        )

    logger.info(
        "Incoming %s %s %s at site %s from %s",
        format_quantity(spec, conversion.quantity), spec.stock_unit, spec.key, site.site_code, supplier,
    )
    return ShipmentResult(transaction=transaction, warnings=warnings)


def record_outgoing(
    site: Site,
    spec: MaterialSpec,
    subtype: str | None,
    amount: float | None,
    unit: str | None,
    recipient: str | None,
    upload: FileStorage | None = None,
    length: float | None = None,
    user=None,
) -> ShipmentResult:
    """Ship stock to a contractor. Raises InsufficientStock above current stock."""
    recipient = _validate(spec, subtype, amount, recipient, "recipient")
    unit = unit if unit in spec.input_units else spec.input_units[0]

    conversion = spec.convert_outgoing(subtype, amount, unit, length)
    if conversion.quantity <= 0:
        raise ValidationError("Quantity must be greater than zero")

    item = _find_item(site.id, spec.key, subtype, conversion.length)
    available = float(item.quantity or 0) if item is not None else 0.0
    if item is None or conversion.quantity > available + _EPSILON:
        logger.info(
            "Rejected outgoing %s %s at site %s: requested %s, available %s",
            spec.key, subtype, site.site_code, conversion.quantity, available,
        )
        raise InsufficientStock(site, spec, subtype, available, conversion.quantity)

    warnings: List[str] = []
    file_name, original_name = _store_file(upload, spec.issue_slips_folder, site, warnings)

    item.quantity = max(0.0, available - conversion.quantity)
    if conversion.weight is not None:
        item.weight = max(0.0, float(item.weight or 0) - conversion.weight)

    transaction = MaterialTransaction(
        site_id=site.id,
        material=spec.key,
        subtype=subtype,
        direction=DIRECTION_OUTGOING,
        quantity=conversion.quantity,
        weight=conversion.weight,
        unit=spec.stock_unit,
        recipient=recipient,
        issue_slip_file_name=file_name,
        issue_slip_file_original_name=original_name,
        length=conversion.length,
        timestamp=datetime.utcnow(),
        created_by_id=getattr(user, "id", None),
    )
    _save_shipment(transaction, file_name)

    logger.info(
        "Outgoing %s %s %s at site %s to %s",
        format_quantity(spec, conversion.quantity), spec.stock_unit, spec.key, site.site_code, recipient,
    )
    return ShipmentResult(transaction=transaction, warnings=warnings)


def delete_transaction(transaction: MaterialTransaction) -> None:
    """
    Remove a transaction and reverse its effect on stock.

    incoming: quantity = max(0, quantity - t)
    outgoing: quantity = quantity + t
    """
    before = serialize_model(transaction)
    amount = float(transaction.quantity or 0)
    weight = float(transaction.weight or 0)

    item = _get_or_create_item(transaction.site_id, transaction.material, transaction.subtype, transaction.length)

    if transaction.direction == DIRECTION_INCOMING:
        item.quantity = max(0.0, float(item.quantity or 0) - amount)
        if item.weight is not None or transaction.weight is not None:
            item.weight = max(0.0, float(item.weight or 0) - weight)
    else:
        item.quantity = float(item.quantity or 0) + amount
        if item.weight is not None or transaction.weight is not None:
            item.weight = float(item.weight or 0) + weight

    log_action(transaction, "DELETE", before=before, after=None)
    files = (transaction.bill_file_name, transaction.issue_slip_file_name)
    direction, material, subtype = transaction.direction, transaction.material, transaction.subtype
    db.session.delete(transaction)
    db.session.commit()

    for file_name in files:
        delete_file(file_name)

    logger.info(
        "Deleted %s transaction %s (%s/%s, %s) and reversed stock",
        direction, before.get("id"), material, subtype, amount,
    )


def delete_site(site: Site) -> None:
    """Delete a site with its grants, inventory rows, transactions and stored files."""
    files = [
        name
        for t in site.transactions
        for name in (t.bill_file_name, t.issue_slip_file_name)
        if name
    ]
    before = serialize_model(site)
    log_action(site, "DELETE", before=before, after=None)
    db.session.delete(site)
    db.session.commit()

    for file_name in files:
        delete_file(file_name)
    logger.info("Deleted site %s with %d stored files", before.get("site_code"), len(files))


def purge_material(material_key: str) -> tuple[int, List[str]]:
    """
    Drop every inventory row and transaction of a material without committing.

    Returns (transactions removed, stored file names). The caller deletes the
    files once its commit succeeds.
    """
    transactions = MaterialTransaction.query.filter_by(material=material_key).all()
    files = [n for t in transactions for n in (t.bill_file_name, t.issue_slip_file_name) if n]
    for transaction in transactions:
        db.session.delete(transaction)
    InventoryItem.query.filter_by(material=material_key).delete(synchronize_session=False)
    return len(transactions), files


# ---------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------
EXPORT_HEADER = [
    "Date", "Type", "Subtype", "Quantity", "Unit",
    "Imported From", "Shipped To", "Bill File", "Issue Slip File",
]


def export_rows(site: Site, spec: MaterialSpec, transactions: Iterable[MaterialTransaction]) -> List[List[str]]:
    rows: List[List[str]] = [[f"Site: {site.site_name} ({site.site_code})"], EXPORT_HEADER]
    for t in transactions:
        rows.append(
            [
                t.timestamp.isoformat() if t.timestamp else "",
                t.direction,
                spec.subtype_label(t.subtype),
                format_quantity(spec, t.quantity),
                t.unit or spec.stock_unit,
                t.imported_from or "",
                t.recipient or "",
                t.bill_file_original_name or "",
                t.issue_slip_file_original_name or "",
            ]
        )
    return rows
