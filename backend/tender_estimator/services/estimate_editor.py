"""
Estimate row editing — pure list-in / list-out operations.

Mirrors what the estimate screen does when a cell is edited: volumes
cascade from a "Заказчик" header to its group, material volumes follow the
nearest labor row through the consumption factor, and the material price
with delivery is kept equal to price + delivery. Input lists and rows are
never mutated; every operation returns a new list.
"""

import logging
import uuid
from dataclasses import fields, replace
from typing import Any, List, Optional, Sequence

from tender_estimator.services.estimate_calculations import (
    LABOR_ROW_TYPES,
    MATERIAL_ROW_TYPES,
    EstimateRow,
    MaterialType,
    RowType,
    to_flag,
    to_number,
)

logger = logging.getLogger("tender-api")

DEFAULT_NEW_ROW_UNIT = "м3"

EDITABLE_FIELDS = frozenset(f.name for f in fields(EstimateRow)) - {"id"}
_NUMERIC_FIELDS = frozenset({
    "volume",
    "work_volume",
    "unit_labor_price",
    "unit_material_price_with_delivery",
    "material_consumption_factor",
    "mat_price_no_delivery",
    "delivery",
})


def _find_index(rows: Sequence[EstimateRow], row_id: str) -> int:
    for i, row in enumerate(rows):
        if row.id == row_id:
            return i
    return -1


def _factor(row: EstimateRow) -> float:
    # an unset consumption factor counts as 1
    return row.material_consumption_factor or 1.0


def _header_volume_above(rows: Sequence[EstimateRow], start: int) -> float:
    for i in range(start, -1, -1):
        if rows[i].row_type is RowType.HEADER:
            return rows[i].volume or 0.0
    return 0.0


# ---------------------------------------------------------------------------
# Structural operations
# ---------------------------------------------------------------------------

def new_row(
    rows: Sequence[EstimateRow],
    position: Optional[int] = None,
    row_id: Optional[str] = None,
) -> EstimateRow:
    """
    Blank labor row whose volume is inherited from the nearest header at or
    above ``position`` (the end of the list when omitted).
    """
    start = len(rows) - 1 if position is None else min(position, len(rows) - 1)
    volume = _header_volume_above(rows, start) if rows else 0.0
    return EstimateRow(
        row_type=RowType.LABOR,
        material_type=MaterialType.NONE,
        unit=DEFAULT_NEW_ROW_UNIT,
        volume=volume,
        work_volume=volume,
        material_consumption_factor=1.0,
        id=row_id or uuid.uuid4().hex,
    )


def append_row(rows: Sequence[EstimateRow], row_id: Optional[str] = None) -> List[EstimateRow]:
    return [*rows, new_row(rows, row_id=row_id)]


def insert_row_after(
    rows: Sequence[EstimateRow],
    after_id: str,
    row_id: Optional[str] = None,
) -> List[EstimateRow]:
    """Insert a blank row right after ``after_id``; unknown ids change nothing."""
    index = _find_index(rows, after_id)
    if index == -1:
        return list(rows)
    inserted = new_row(rows, position=index, row_id=row_id)
    return [*rows[:index + 1], inserted, *rows[index + 1:]]


def delete_row(rows: Sequence[EstimateRow], row_id: str) -> List[EstimateRow]:
    return [row for row in rows if row.id != row_id]


def toggle_collapse(rows: Sequence[EstimateRow], row_id: str) -> List[EstimateRow]:
    return [
        replace(row, is_collapsed=not row.is_collapsed) if row.id == row_id else row
        for row in rows
    ]


def visible_rows(rows: Sequence[EstimateRow]) -> List[EstimateRow]:
    """Headers are always shown; the rows of a collapsed group are hidden."""
    visible: List[EstimateRow] = []
    skipping = False
    for row in rows:
        if row.row_type is RowType.HEADER:
            visible.append(row)
            skipping = row.is_collapsed
        elif not skipping:
            visible.append(row)
    return visible


# ---------------------------------------------------------------------------
# Cell edits
# ---------------------------------------------------------------------------

def update_row(
    rows: Sequence[EstimateRow],
    row_id: str,
    field: str,
    value: Any,
) -> List[EstimateRow]:
    """
    Set ``field`` on the row ``row_id`` and apply the dependent updates.

    Raises ValueError for a field that is not an editable row attribute.
    Unknown ids return the rows unchanged.
    """
    if field not in EDITABLE_FIELDS:
        raise ValueError(f"Unknown row field '{field}'")

    index = _find_index(rows, row_id)
    if index == -1:
        return list(rows)

    if field in _NUMERIC_FIELDS:
        value = to_number(value)
    elif field == "is_collapsed":
        value = to_flag(value)
    elif field not in ("row_type", "material_type"):
        value = "" if value is None else str(value)

    updated: List[EstimateRow] = list(rows)
    original = updated[index]
    row = replace(original, **{field: value})

    if field == "volume" and original.row_type is not RowType.HEADER:
        row = replace(row, work_volume=row.volume)

    if field in ("mat_price_no_delivery", "delivery"):
        row = replace(
            row,
            unit_material_price_with_delivery=row.mat_price_no_delivery + row.delivery,
        )

    updated[index] = row

    if field == "row_type" and row.row_type is RowType.HEADER:
        _collapse_previous_header(updated, index)

    if field == "material_consumption_factor" and row.row_type in MATERIAL_ROW_TYPES:
        _rescale_material_from_labor(updated, index)

    if field == "volume":
        if row.row_type is RowType.HEADER:
            _cascade_header_volume(updated, index)
        elif row.row_type in LABOR_ROW_TYPES:
            _cascade_labor_volume(updated, index)

    return updated


def _collapse_previous_header(rows: List[EstimateRow], index: int) -> None:
    for i in range(index - 1, -1, -1):
        if rows[i].row_type is RowType.HEADER:
            rows[i] = replace(rows[i], is_collapsed=True)
            logger.debug("Previous group collapsed", extra={"header_index": i})
            return


def _rescale_material_from_labor(rows: List[EstimateRow], index: int) -> None:
    material = rows[index]
    for i in range(index - 1, -1, -1):
        above = rows[i]
        if above.row_type in LABOR_ROW_TYPES:
            volume = (above.volume or 0.0) * _factor(material)
            rows[index] = replace(material, volume=volume, work_volume=volume)
            return
        if above.row_type is RowType.HEADER:
            return


def _cascade_header_volume(rows: List[EstimateRow], header_index: int) -> None:
    header_volume = rows[header_index].volume
    logger.debug(
        "Header volume cascades to group",
        extra={"header_index": header_index, "volume": header_volume},
    )
    for i in range(header_index + 1, len(rows)):
        row = rows[i]
        if row.row_type is RowType.HEADER:
            break
        if row.row_type in LABOR_ROW_TYPES:
            rows[i] = replace(row, volume=header_volume, work_volume=header_volume)
        elif row.row_type in MATERIAL_ROW_TYPES:
            base = header_volume
            for j in range(i - 1, header_index, -1):
                if rows[j].row_type in LABOR_ROW_TYPES:
                    base = rows[j].volume or header_volume
                    break
            volume = (base or 0.0) * _factor(row)
            rows[i] = replace(row, volume=volume, work_volume=volume)


def _cascade_labor_volume(rows: List[EstimateRow], labor_index: int) -> None:
    labor_volume = rows[labor_index].volume or 0.0
    for i in range(labor_index + 1, len(rows)):
        row = rows[i]
        if row.row_type is RowType.HEADER or row.row_type in LABOR_ROW_TYPES:
            break
        if row.row_type in MATERIAL_ROW_TYPES:
            volume = labor_volume * _factor(row)
            rows[i] = replace(row, volume=volume, work_volume=volume)
