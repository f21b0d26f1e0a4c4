"""
Stock derivations over a transaction log.

Everything here is a stateless fold over already-loaded rows, so it is shared by
every material page, the site dashboard and the CSV exports. Transactions are
duck-typed: any object with subtype, direction, quantity, weight, timestamp,
imported_from and recipient attributes works (MaterialTransaction rows in the app).

Stock summary per subtype over a period:
    opening = closing - incoming(in period) + outgoing(in period), clamped to 0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .materials import STEEL_STANDARD_LENGTH, steel_weight_from_pieces
from .models import DIRECTION_INCOMING, DIRECTION_OUTGOING

logger = logging.getLogger(__name__)

PERIOD_CHOICES = (
    ("last7days", "Last 7 Days"),
    ("last30days", "Last 30 Days"),
    ("last90days", "Last 90 Days"),
    ("lastYear", "Last Year"),
    ("custom", "Custom"),
    ("all", "All Time"),
)

_ROLLING_DAYS = {"last7days": 7, "last30days": 30, "last90days": 90}


# ---------------------------------------------------------------------
# Period filter
# ---------------------------------------------------------------------
def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """datetime / ISO string -> naive UTC datetime. Returns None if unparsable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class PeriodFilter:
    """Which transactions a summary covers."""

    kind: str = "last30days"
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @classmethod
    def from_args(cls, args: Mapping[str, Any], default_kind: str = "last30days") -> "PeriodFilter":
        """Build from query-string style args (period, start_date, end_date)."""
        kind = (args.get("period") or default_kind).strip()
        return cls(
            kind=kind,
            start_date=_parse_date(args.get("start_date")),
            end_date=_parse_date(args.get("end_date")),
        )

    def query_args(self) -> Dict[str, str]:
        """Inverse of from_args, for links and form actions that must keep the period."""
        args = {"period": self.kind}
        if self.start_date:
            args["start_date"] = self.start_date.isoformat()
        if self.end_date:
            args["end_date"] = self.end_date.isoformat()
        return args

    def bounds(self, now: Optional[datetime] = None) -> tuple[Optional[datetime], Optional[datetime]]:
        """(start, end) datetimes; None means unbounded on that side."""
        now = now or datetime.utcnow()

        if self.kind == "all":
            return None, None

        if self.kind == "custom":
            if self.start_date and self.end_date:
                return (
                    datetime.combine(self.start_date, time.min),
                    datetime.combine(self.end_date, time.max),
                )
            return None, None

        if self.kind == "lastYear":
            try:
                start = now.replace(year=now.year - 1)
            except ValueError:
                # 29 February
                start = now.replace(year=now.year - 1, day=28)
            return start, None

        days = _ROLLING_DAYS.get(self.kind, 30)
        return now - timedelta(days=days), None

    def contains(self, timestamp: Any, now: Optional[datetime] = None) -> bool:
        start, end = self.bounds(now)
        if start is None and end is None:
            return True

        parsed = parse_timestamp(timestamp)
        if parsed is None:
            logger.warning("Failed to parse transaction timestamp %r; keeping it in range", timestamp)
            return True

        if start is not None and parsed < start:
            return False
        if end is not None and parsed > end:
            return False
        return True

    def apply(self, transactions: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
        now = now or datetime.utcnow()
        return [t for t in transactions if self.contains(t.timestamp, now)]


# ---------------------------------------------------------------------
# Stock summary
# ---------------------------------------------------------------------
@dataclass
class SummaryRow:
    opening: float = 0.0
    incoming: float = 0.0
    outgoing: float = 0.0
    closing: float = 0.0
    incoming_weight: float = 0.0
    outgoing_weight: float = 0.0
    transactions: List[Any] = field(default_factory=list)


def stock_summary(
    subtypes: Iterable[str],
    inventory: Mapping[str, float],
    transactions: Iterable[Any],
) -> Dict[str, SummaryRow]:
    """
    Reconstruct opening balances from current closing stock and the in-period log.

    `transactions` must already be filtered to the period. Transactions for
    subtypes outside `subtypes` are ignored.
    """
    summary: Dict[str, SummaryRow] = {
        subtype: SummaryRow(closing=float(inventory.get(subtype, 0) or 0)) for subtype in subtypes
    }

    for t in transactions:
        row = summary.get(t.subtype)
        if row is None:
            continue
        quantity = float(t.quantity or 0)
        weight = float(t.weight or 0)
        if t.direction == DIRECTION_INCOMING:
            row.incoming += quantity
            row.incoming_weight += weight
        else:
            row.outgoing += quantity
            row.outgoing_weight += weight
        row.transactions.append(t)

    for row in summary.values():
        row.opening = max(0.0, row.closing - row.incoming + row.outgoing)

    return summary


def supplier_summary(transactions: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    """
    supplier -> {"subtypes": {subtype: {quantity, weight, transactions}},
                 "total_quantity", "total_weight", "count"}
    Only incoming transactions with a supplier are counted.
    """
    summary: Dict[str, Dict[str, Any]] = {}
    for t in transactions:
        if t.direction != DIRECTION_INCOMING or not (t.imported_from or "").strip():
            continue
        entry = summary.setdefault(
            t.imported_from,
            {"subtypes": {}, "total_quantity": 0.0, "total_weight": 0.0, "count": 0},
        )
        sub = entry["subtypes"].setdefault(t.subtype, {"quantity": 0.0, "weight": 0.0, "transactions": []})
        sub["quantity"] += float(t.quantity or 0)
        sub["weight"] += float(t.weight or 0)
        sub["transactions"].append(t)
        entry["total_quantity"] += float(t.quantity or 0)
        entry["total_weight"] += float(t.weight or 0)
        entry["count"] += 1
    return summary


def contractor_summary(transactions: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    """
    contractor -> {"total_quantity", "total_weight",
                   "subtypes": {subtype: {quantity, weight}}, "transactions"}
    Only outgoing transactions with a recipient are counted.
    """
    summary: Dict[str, Dict[str, Any]] = {}
    for t in transactions:
        if t.direction != DIRECTION_OUTGOING or not (t.recipient or "").strip():
            continue
        entry = summary.setdefault(
            t.recipient,
            {"total_quantity": 0.0, "total_weight": 0.0, "subtypes": {}, "transactions": []},
        )
        entry["total_quantity"] += float(t.quantity or 0)
        entry["total_weight"] += float(t.weight or 0)
        entry["transactions"].append(t)
        sub = entry["subtypes"].setdefault(t.subtype, {"quantity": 0.0, "weight": 0.0})
        sub["quantity"] += float(t.quantity or 0)
        sub["weight"] += float(t.weight or 0)
    return summary


def period_totals(transactions: Iterable[Any]) -> Dict[str, float]:
    """Total incoming / outgoing quantity over already-filtered transactions."""
    incoming = 0.0
    outgoing = 0.0
    for t in transactions:
        if t.direction == DIRECTION_INCOMING:
            incoming += float(t.quantity or 0)
        else:
            outgoing += float(t.quantity or 0)
    return {"incoming": incoming, "outgoing": outgoing}


# ---------------------------------------------------------------------
# Stock levels
# ---------------------------------------------------------------------
def low_stock_items(inventory: Mapping[str, float], threshold: float) -> Dict[str, float]:
    """Subtypes whose current quantity is strictly below the threshold."""
    return {subtype: qty for subtype, qty in inventory.items() if float(qty or 0) < threshold}


def alert_severity(quantity: float, threshold: float, high_below: Optional[float] = None) -> str:
    """`high` under a fixed cut-off when the material has one, else under half the threshold."""
    limit = high_below if high_below is not None else threshold / 2
    return "high" if quantity < limit else "medium"


def steel_tally_discrepancies(items: Iterable[Any], tolerance: float = 0.001) -> List[Dict[str, Any]]:
    """
    Steel rows whose recorded weight disagrees with pieces x kg/m x length.

    `items` are InventoryItem-like rows (subtype = diameter, quantity = pieces),
    one per diameter and bar length.
    """
    discrepancies = []
    for item in items:
        pieces = float(item.quantity or 0)
        recorded = float(item.weight or 0)
        length = item.length or STEEL_STANDARD_LENGTH
        calculated = steel_weight_from_pieces(item.subtype, pieces, length)
        difference = abs(recorded - calculated)
        if difference > tolerance:
            discrepancies.append(
                {
                    "diameter": item.subtype,
                    "length": length,
                    "pieces": pieces,
                    "recorded_weight": recorded,
                    "calculated_weight": calculated,
                    "difference": difference,
                }
            )
    return discrepancies
