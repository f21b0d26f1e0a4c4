"""
Material catalog.

Every material the app tracks is described by a MaterialSpec: its subtypes, its
stock unit, how user input is converted into stock quantity and weight, and
where its low-stock threshold comes from. Built-in specs are module constants;
custom materials get a spec built from their CustomMaterial row.

All inventory rows and transactions are keyed by MaterialSpec.key.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .extensions import db
from .models import CustomMaterial

CUSTOM_PREFIX = "custom:"

# Standard TMT bar weights (diameter in mm : weight per metre in kg)
TMT_SPECS: Dict[int, float] = {
    6: 0.222,
    8: 0.395,
    10: 0.617,
    12: 0.888,
    14: 1.208,
    16: 1.578,
    18: 2.000,
    20: 2.469,
    22: 2.984,
    25: 3.853,
    28: 4.834,
    32: 6.313,
    36: 7.990,
    40: 9.864,
}
STEEL_STANDARD_LENGTH = 12.0

CEMENT_BAG_KG: Dict[str, float] = {
    "OPC 43 Grade": 50,
    "OPC 53 Grade": 50,
    "PPC": 50,
    "Slag Cement": 50,
    "White Cement": 50,
    "Other": 50,
}

# Tally tolerance for steel: 1 kg
STEEL_TALLY_TOLERANCE = 0.001


@dataclass(frozen=True)
class Conversion:
    """Result of converting a user-entered amount into stock terms."""

    quantity: float
    weight: Optional[float] = None
    input_weight: Optional[float] = None
    wastage: Optional[float] = None
    length: Optional[float] = None


@dataclass(frozen=True)
class MaterialSpec:
    key: str
    label: str
    subtypes: Dict[str, str]
    stock_unit: str
    input_units: Tuple[str, ...]
    default_threshold: float
    threshold_attr: Optional[str] = None
    # Dashboard alerts turn `high` below this quantity; None means half the threshold
    high_alert_below: Optional[float] = None
    integral: bool = False
    file_prefix: str = ""
    incoming_converter: Optional[Callable[..., Conversion]] = field(default=None, compare=False)
    outgoing_converter: Optional[Callable[..., Conversion]] = field(default=None, compare=False)

    @property
    def is_custom(self) -> bool:
        return self.key.startswith(CUSTOM_PREFIX)

    @property
    def bills_folder(self) -> str:
        return f"{self.file_prefix}-bills"

    @property
    def issue_slips_folder(self) -> str:
        return f"{self.file_prefix}-issue-slips"

    def subtype_label(self, subtype: str) -> str:
        return self.subtypes.get(subtype, subtype)

    def threshold_for(self, site) -> float:
        """Low-stock threshold for a site. Unset / zero falls back to the default."""
        if self.threshold_attr and site is not None:
            value = getattr(site, self.threshold_attr, None)
            if value:
                return float(value)
        return float(self.default_threshold)

    def convert_incoming(self, subtype: str, amount: float, unit: str, length: float | None = None) -> Conversion:
        if self.incoming_converter is None:
            return Conversion(quantity=amount)
        return self.incoming_converter(subtype, amount, unit, length)

    def convert_outgoing(self, subtype: str, amount: float, unit: str, length: float | None = None) -> Conversion:
        if self.outgoing_converter is None:
            return Conversion(quantity=amount)
        return self.outgoing_converter(subtype, amount, unit, length)


# ---------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------
def to_tonnes(amount: float, unit: str) -> float:
    """Weight input in tonnes or kg -> tonnes."""
    if unit == "kg":
        return amount / 1000
    return amount


def _bulk_weight(subtype: str, amount: float, unit: str, length: float | None) -> Conversion:
    tonnes = to_tonnes(amount, unit)
    return Conversion(quantity=tonnes, weight=tonnes)


def cement_weight(subtype: str, bags: float) -> float:
    """Weight in tonnes of a number of cement bags."""
    per_bag = CEMENT_BAG_KG.get(subtype, 50)
    return (bags * per_bag) / 1000


def _cement(subtype: str, amount: float, unit: str, length: float | None) -> Conversion:
    bags = int(amount)
    return Conversion(quantity=bags, weight=cement_weight(subtype, bags))


def steel_weight_from_pieces(diameter, pieces: float, length: float = STEEL_STANDARD_LENGTH) -> float:
    """Weight in tonnes of a number of bars."""
    per_metre = TMT_SPECS[int(diameter)]
    return (pieces * per_metre * length) / 1000


def steel_pieces_from_weight(diameter, total_weight: float, unit: str = "tonnes",
                             length: float = STEEL_STANDARD_LENGTH) -> int:
    """Whole bars contained in a delivered weight (remainder counts as wastage)."""
    per_bar = TMT_SPECS[int(diameter)] * length
    weight_kg = total_weight * 1000 if unit == "tonnes" else total_weight
    return math.floor(weight_kg / per_bar)


def _steel_incoming(subtype: str, amount: float, unit: str, length: float | None) -> Conversion:
    length = length or STEEL_STANDARD_LENGTH
    pieces = steel_pieces_from_weight(subtype, amount, unit, length)
    actual = steel_weight_from_pieces(subtype, pieces, length)
    input_tonnes = to_tonnes(amount, unit)
    return Conversion(
        quantity=pieces,
        weight=actual,
        input_weight=input_tonnes,
        wastage=input_tonnes - actual,
        length=length,
    )


def _steel_outgoing(subtype: str, amount: float, unit: str, length: float | None) -> Conversion:
    length = length or STEEL_STANDARD_LENGTH
    pieces = int(amount)
    return Conversion(quantity=pieces, weight=steel_weight_from_pieces(subtype, pieces, length), length=length)


def _custom_converter(conversion_factor: float) -> Callable[..., Conversion]:
    def convert(subtype: str, amount: float, unit: str, length: float | None) -> Conversion:
        return Conversion(quantity=amount, weight=amount * conversion_factor)

    return convert


# ---------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------
SAND = MaterialSpec(
    key="sand",
    label="Sand",
    subtypes={
        "river_sand": "River Sand",
        "sea_sand": "Sea Sand",
        "construction_sand": "Construction Sand",
        "fine_sand": "Fine Sand",
        "coarse_sand": "Coarse Sand",
    },
    stock_unit="tonnes",
    input_units=("tonnes", "kg"),
    default_threshold=10,
    threshold_attr="sand_low_stock_threshold",
    file_prefix="sand",
    incoming_converter=_bulk_weight,
    outgoing_converter=_bulk_weight,
)

STONE_CHIPS = MaterialSpec(
    key="stone_chips",
    label="Stone Chips",
    subtypes={"10mm": "10mm Stone Chips", "20mm": "20mm Stone Chips"},
    stock_unit="tonnes",
    input_units=("tonnes", "kg"),
    default_threshold=5,
    threshold_attr="stone_chips_low_stock_threshold",
    file_prefix="stone-chips",
    incoming_converter=_bulk_weight,
    outgoing_converter=_bulk_weight,
)

CEMENT = MaterialSpec(
    key="cement",
    label="Cement",
    subtypes={name: name for name in CEMENT_BAG_KG},
    stock_unit="bags",
    input_units=("bags",),
    default_threshold=10,
    threshold_attr="cement_low_stock_threshold",
    high_alert_below=5,
    integral=True,
    file_prefix="cement",
    incoming_converter=_cement,
    outgoing_converter=_cement,
)

STEEL = MaterialSpec(
    key="steel",
    label="Steel",
    subtypes={str(d): f"{d}mm TMT" for d in TMT_SPECS},
    stock_unit="pieces",
    input_units=("tonnes", "kg"),
    default_threshold=50,
    threshold_attr="steel_low_stock_threshold",
    high_alert_below=20,
    integral=True,
    file_prefix="steel",
    incoming_converter=_steel_incoming,
    outgoing_converter=_steel_outgoing,
)

DIESEL = MaterialSpec(
    key="diesel",
    label="Diesel",
    subtypes={"diesel": "Diesel Fuel"},
    stock_unit="litres",
    input_units=("litres",),
    default_threshold=100,
    threshold_attr="diesel_low_stock_threshold",
    file_prefix="diesel",
)

BUILTIN_MATERIALS: Dict[str, MaterialSpec] = {
    spec.key: spec for spec in (STEEL, CEMENT, STONE_CHIPS, SAND, DIESEL)
}


# ---------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------
def spec_for_custom(material: CustomMaterial) -> MaterialSpec:
    variants = [v for v in (material.material_types or []) if v and v.strip()] or ["Standard"]
    return MaterialSpec(
        key=material.material_key,
        label=material.name,
        subtypes={v: v for v in variants},
        stock_unit=material.unit_label or "units",
        input_units=(material.unit_label or "units",),
        default_threshold=float(material.low_stock_threshold or 0),
        integral=material.unit_type in ("pieces", "bags"),
        file_prefix=f"material-{material.id}",
        incoming_converter=_custom_converter(float(material.conversion_factor or 0)),
        outgoing_converter=_custom_converter(float(material.conversion_factor or 0)),
    )


def get_material(key: str) -> Optional[MaterialSpec]:
    """Resolve a material key (built-in or "custom:<id>") to its spec."""
    if key in BUILTIN_MATERIALS:
        return BUILTIN_MATERIALS[key]
    if not key.startswith(CUSTOM_PREFIX):
        return None
    try:
        material_id = int(key[len(CUSTOM_PREFIX):])
    except ValueError:
        return None
    material = db.session.get(CustomMaterial, material_id)
    if material is None or material.status != "active":
        return None
    return spec_for_custom(material)


def all_materials() -> List[MaterialSpec]:
    """Built-ins first, then active custom materials by name."""
    specs = list(BUILTIN_MATERIALS.values())
    customs = (
        CustomMaterial.query.filter_by(status="active")
        .order_by(CustomMaterial.name.asc())
        .all()
    )
    specs.extend(spec_for_custom(m) for m in customs)
    return specs
