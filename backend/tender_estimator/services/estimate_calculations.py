"""
Tender estimate pricing engine.

Turns one estimate row (labor / material / subcontract line with a volume
and a unit price) into the client-facing commercial proposal (KP) price,
split into a materials component and a works component, by running the
row through a fixed chain of markups driven by EstimateCoefficients.

Covers:
  - Row model (row kind, material kind, lenient numeric parsing)
  - Per-row markup pipeline (calculate_row)
  - Whole-estimate totals (calculate_totals)
  - Group totals under a "Заказчик" header row (calculate_group_totals)
  - ru-RU currency formatting

All functions are pure. calculate_row performs no logging and allocates
nothing beyond its result; group and total helpers accept an optional
logger that only sees group-boundary events.
"""

import logging
import math
import os
import re
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tender_estimator.services.estimate_coefficients import EstimateCoefficients


class RowType(str, Enum):
    HEADER = "Заказчик"
    LABOR = "раб"
    MATERIAL = "мат"
    SUBCONTRACT_LABOR = "суб-раб"
    SUBCONTRACT_MATERIAL = "суб-мат"
    SEPARATOR = "Разделитель"

    @classmethod
    def parse(cls, value: Any) -> "RowType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            return cls.SEPARATOR


class MaterialType(str, Enum):
    NONE = ""
    PRIMARY = "основ"
    AUXILIARY = "вспом"

    @classmethod
    def parse(cls, value: Any) -> "MaterialType":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        try:
            return cls(str(value).strip())
        except ValueError:
            return cls.NONE


LABOR_ROW_TYPES = frozenset({RowType.LABOR, RowType.SUBCONTRACT_LABOR})
MATERIAL_ROW_TYPES = frozenset({RowType.MATERIAL, RowType.SUBCONTRACT_MATERIAL})


_NUMBER_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def to_number(value: Any) -> float:
    """
    Lenient numeric coercion: numbers pass through, strings are read up to
    the first non-numeric character, anything else (or NaN/inf) is 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _NUMBER_PREFIX.match(str(value).strip())
        if not match:
            return 0.0
        number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})


def to_flag(value: Any) -> bool:
    """Boolean coercion for the collapse flag; "false", "0" and "" are False."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_WORDS
    if isinstance(value, (bool, int, float)):
        return bool(value) and not (isinstance(value, float) and math.isnan(value))
    return False


# ---------------------------------------------------------------------------
# Row model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EstimateRow:
    row_type: RowType = RowType.LABOR
    material_type: MaterialType = MaterialType.NONE
    name: str = ""
    unit: str = ""
    volume: float = 0.0
    work_volume: float = 0.0
    unit_labor_price: float = 0.0
    unit_material_price_with_delivery: float = 0.0
    material_consumption_factor: float = 0.0
    mat_price_no_delivery: float = 0.0
    delivery: float = 0.0
    id: str = ""
    is_collapsed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "row_type", RowType.parse(self.row_type))
        object.__setattr__(self, "material_type", MaterialType.parse(self.material_type))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EstimateRow":
        """
        Build a row from an editor/API record. Accepts snake_case names or
        the camelCase names used by the estimate screen; numeric fields that
        are missing or unparsable become 0.
        """
        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data:
                    return data[key]
            return None

        return cls(
            row_type=RowType.parse(pick("row_type", "rowType")),
            material_type=MaterialType.parse(pick("material_type", "materialType")),
            name=str(pick("name", "workName") or ""),
            unit=str(pick("unit") or ""),
            volume=to_number(pick("volume")),
            work_volume=to_number(pick("work_volume", "workVolume")),
            unit_labor_price=to_number(pick("unit_labor_price", "workPrice")),
            unit_material_price_with_delivery=to_number(
                pick("unit_material_price_with_delivery", "matPriceWithDelivery")
            ),
            material_consumption_factor=to_number(
                pick("material_consumption_factor", "materialCoef")
            ),
            mat_price_no_delivery=to_number(pick("mat_price_no_delivery", "matPriceNoDelivery")),
            delivery=to_number(pick("delivery")),
            id=str(pick("id") or ""),
            is_collapsed=to_flag(pick("is_collapsed", "isCollapsed")),
        )

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["row_type"] = self.row_type.value
        out["material_type"] = self.material_type.value
        return out


@dataclass(frozen=True)
class RowCalculationResult:
    total: float = 0.0
    work_pz: float = 0.0
    work_sm: float = 0.0
    mat_mbp: float = 0.0
    mat_pz: float = 0.0
    sub_pz: float = 0.0
    warranty: float = 0.0
    work_16: float = 0.0
    work_growth: float = 0.0
    mat_growth: float = 0.0
    unforeseen: float = 0.0
    sub_ooz: float = 0.0
    work_mat_ooz: float = 0.0
    work_mat_ofz: float = 0.0
    work_mat_profit: float = 0.0
    sub_profit: float = 0.0
    materials_in_kp: float = 0.0
    works_in_kp: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_ZERO_RESULT = RowCalculationResult()


# ---------------------------------------------------------------------------
# Per-row pipeline
# ---------------------------------------------------------------------------

def calculate_row(row: EstimateRow, coefficients: EstimateCoefficients) -> RowCalculationResult:
    """
    Run one row through the markup chain.

    Each step reads only earlier steps. ``x * (1 + c)`` is an uplift,
    ``x * c`` a share. Every uplift is skipped (left at 0) when its base is
    zero, so a row never produces a value in a cost category it does not
    belong to.
    """
    kind = row.row_type
    if kind is RowType.HEADER or kind is RowType.SEPARATOR:
        return _ZERO_RESULT

    c = coefficients
    work_volume = to_number(row.work_volume)

    if kind in LABOR_ROW_TYPES:
        total = work_volume * to_number(row.unit_labor_price)
    else:
        total = work_volume * to_number(row.unit_material_price_with_delivery)

    work_pz = total if kind is RowType.LABOR else 0.0
    work_sm = work_pz * c.site_overhead if work_pz else 0.0
    mat_mbp = work_pz * c.consumables if work_pz else 0.0
    mat_pz = total if kind is RowType.MATERIAL else 0.0
    sub_pz = total if kind in (RowType.SUBCONTRACT_LABOR, RowType.SUBCONTRACT_MATERIAL) else 0.0

    warranty = work_pz * c.warranty_reserve

    work_16 = (work_pz + work_sm) * (1 + c.labor_uplift_1) if work_pz else 0.0
    work_growth = (work_16 + mat_mbp) * (1 + c.labor_growth) if work_16 else 0.0
    mat_growth = mat_pz * (1 + c.material_growth) if mat_pz else 0.0

    direct = work_16 + mat_mbp + mat_pz
    unforeseen = direct * (1 + c.contingency) if direct else 0.0

    sub_ooz = sub_pz * (1 + c.subcontract_overhead) if sub_pz else 0.0

    # Z = V + W + X - U - R - Q
    ooz_base = work_growth + mat_growth + unforeseen - work_16 - mat_pz - mat_mbp
    work_mat_ooz = ooz_base * (1 + c.combined_overhead) if ooz_base else 0.0
    work_mat_ofz = work_mat_ooz * (1 + c.combined_business_expense) if work_mat_ooz else 0.0
    work_mat_profit = work_mat_ofz * (1 + c.combined_profit) if work_mat_ofz else 0.0
    sub_profit = sub_ooz * (1 + c.subcontract_profit) if sub_ooz else 0.0

    primary = row.material_type is MaterialType.PRIMARY
    if kind is RowType.MATERIAL and primary:
        materials_in_kp = mat_pz
    elif kind is RowType.SUBCONTRACT_MATERIAL and primary:
        materials_in_kp = sub_pz
    else:
        materials_in_kp = 0.0

    if kind is RowType.SUBCONTRACT_LABOR:
        works_in_kp = sub_profit
    elif kind is RowType.LABOR:
        works_in_kp = work_mat_profit + warranty
    elif kind is RowType.MATERIAL:
        # auxiliary or unspecified material is folded entirely into works
        works_in_kp = work_mat_profit - materials_in_kp if primary else work_mat_profit
    else:
        works_in_kp = sub_profit - materials_in_kp if primary else sub_profit

    return RowCalculationResult(
        total=total,
        work_pz=work_pz,
        work_sm=work_sm,
        mat_mbp=mat_mbp,
        mat_pz=mat_pz,
        sub_pz=sub_pz,
        warranty=warranty,
        work_16=work_16,
        work_growth=work_growth,
        mat_growth=mat_growth,
        unforeseen=unforeseen,
        sub_ooz=sub_ooz,
        work_mat_ooz=work_mat_ooz,
        work_mat_ofz=work_mat_ofz,
        work_mat_profit=work_mat_profit,
        sub_profit=sub_profit,
        materials_in_kp=materials_in_kp,
        works_in_kp=works_in_kp,
    )


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def calculate_totals(
    rows: Sequence[EstimateRow],
    coefficients: EstimateCoefficients,
) -> Dict[str, float]:
    """KP totals over every row, ignoring group boundaries."""
    total_materials = 0.0
    total_works = 0.0
    for row in rows:
        calc = calculate_row(row, coefficients)
        total_materials += calc.materials_in_kp
        total_works += calc.works_in_kp

    return {
        "total_materials": total_materials,
        "total_works": total_works,
        "grand_total": total_materials + total_works,
    }


def calculate_group_totals(
    rows: Sequence[EstimateRow],
    header_index: int,
    coefficients: EstimateCoefficients,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, float]:
    """
    Sum the KP figures of the rows belonging to the header at
    ``header_index``: every row after it up to (not including) the next
    header or the end of the list.

    Materials come only from material / subcontract-material rows; works
    are summed over every row since each row's works_in_kp already carries
    all of its markups.

    Never raises: an index past the end yields zero totals, and a negative
    index is read as "before the first row", so the scan starts at row 0.
    """
    start = max(header_index + 1, 0)

    if logger:
        header_name = rows[header_index].name if 0 <= header_index < len(rows) else None
        logger.debug(
            "Group totals requested",
            extra={"header_index": header_index, "header_name": header_name},
        )

    materials_in_kp = 0.0
    works_in_kp = 0.0
    for i in range(start, len(rows)):
        row = rows[i]
        if row.row_type is RowType.HEADER:
            if logger:
                logger.debug(
                    "Group ends at next header",
                    extra={"next_header_index": i, "next_header_name": row.name},
                )
            break

        calc = calculate_row(row, coefficients)
        if row.row_type in MATERIAL_ROW_TYPES:
            materials_in_kp += calc.materials_in_kp
        works_in_kp += calc.works_in_kp

    if logger:
        logger.debug(
            "Group totals computed",
            extra={
                "header_index": header_index,
                "materials_in_kp": materials_in_kp,
                "works_in_kp": works_in_kp,
                "grand_total": materials_in_kp + works_in_kp,
            },
        )

    return {"materials_in_kp": materials_in_kp, "works_in_kp": works_in_kp}


def calculate_all_group_totals(
    rows: Sequence[EstimateRow],
    coefficients: EstimateCoefficients,
    logger: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """Group totals for every header row, in list order."""
    groups: List[Dict[str, Any]] = []
    for index, row in enumerate(rows):
        if row.row_type is not RowType.HEADER:
            continue
        totals = calculate_group_totals(rows, index, coefficients, logger=logger)
        groups.append({"index": index, "name": row.name, **totals})
    return groups


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# locale -> (group separator, decimal separator)
_LOCALE_SEPARATORS: Dict[str, tuple] = {
    "ru-RU": ("\u00a0", ","),
    "en-US": (",", "."),
    "de-DE": (".", ","),
    "fr-FR": ("\u202f", ","),
}

DEFAULT_LOCALE = os.getenv("CURRENCY_LOCALE", "ru-RU")
CURRENCY_SYMBOL = "₽"


def format_currency(value: Any, locale: Optional[str] = None) -> str:
    """Two fixed decimals with the locale's grouping, no currency symbol."""
    group_sep, decimal_sep = _LOCALE_SEPARATORS.get(
        locale or DEFAULT_LOCALE, _LOCALE_SEPARATORS["ru-RU"]
    )
    number = to_number(value)
    text = f"{number:,.2f}"
    return text.replace(",", "\x00").replace(".", decimal_sep).replace("\x00", group_sep)


def format_currency_with_symbol(
    value: Any,
    locale: Optional[str] = None,
    symbol: str = CURRENCY_SYMBOL,
) -> str:
    return f"{format_currency(value, locale)} {symbol}"
