"""
Estimate calculation API routes

POST /api/estimate/calculate-row        — full markup breakdown for one row
POST /api/estimate/calculate-totals     — KP totals over all rows
POST /api/estimate/group-totals         — KP totals of one "Заказчик" group
POST /api/estimate/group-totals/all     — KP totals of every group
POST /api/estimate/format               — ru-RU currency string
POST /api/estimate/rows/new             — blank row inheriting the group volume
POST /api/estimate/rows/insert          — insert a blank row after a row id
POST /api/estimate/rows/update          — edit one cell and apply volume/price cascades
POST /api/estimate/rows/delete          — remove a row
POST /api/estimate/rows/toggle-collapse — collapse / expand a group
POST /api/estimate/rows/visible         — rows shown with collapsed groups hidden
POST /api/estimate/summary              — flat item summary + analytics
POST /api/estimate/summary/adjust-volume
POST /api/estimate/summary/adjust-price

Calculation endpoints take the coefficient profile in the body and fall
back to the default profile when it is omitted.
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from tender_estimator.models.estimate_schemas import (
    CalculateRowRequest,
    FormatRequest,
    GroupTotalsRequest,
    InsertRowRequest,
    ItemsRequest,
    NewRowRequest,
    PriceChangeRequest,
    RowIdRequest,
    RowsRequest,
    UpdateRowRequest,
    VolumeChangeRequest,
    coefficients_or_default,
)
from tender_estimator.services import estimate_editor, estimate_summary
from tender_estimator.services.estimate_calculations import (
    EstimateRow,
    calculate_all_group_totals,
    calculate_group_totals,
    calculate_row,
    calculate_totals,
    format_currency,
    format_currency_with_symbol,
)
from tender_estimator.services.perf_monitor import timed, tracker

router = APIRouter(prefix="/api/estimate", tags=["Estimate Calculation"])
logger = logging.getLogger("tender-api")


def _rows_out(rows: List[EstimateRow]) -> List[dict]:
    return [row.as_dict() for row in rows]


# ── Calculation ─────────────────────────────────────────────────────────────

@router.post("/calculate-row")
async def calculate_row_endpoint(req: CalculateRowRequest):
    coefficients = coefficients_or_default(req.coefficients)
    result = timed("calculate_row")(calculate_row)(req.row.to_row(), coefficients)
    tracker.record_rows(1)
    return result.as_dict()


@router.post("/calculate-totals")
async def calculate_totals_endpoint(req: RowsRequest):
    rows = req.to_rows()
    totals = timed("calculate_totals")(calculate_totals)(rows, coefficients_or_default(req.coefficients))
    tracker.record_rows(len(rows))
    return totals


@router.post("/group-totals")
async def group_totals_endpoint(req: GroupTotalsRequest):
    rows = req.to_rows()
    totals = timed("calculate_group_totals")(calculate_group_totals)(
        rows, req.header_index, coefficients_or_default(req.coefficients), logger=logger
    )
    tracker.record_rows(len(rows))
    return totals


@router.post("/group-totals/all")
async def all_group_totals_endpoint(req: RowsRequest):
    rows = req.to_rows()
    groups = timed("calculate_all_group_totals")(calculate_all_group_totals)(
        rows, coefficients_or_default(req.coefficients), logger=logger
    )
    tracker.record_rows(len(rows))
    return {"groups": groups, "totals": calculate_totals(rows, coefficients_or_default(req.coefficients))}


@router.post("/format")
async def format_endpoint(req: FormatRequest):
    if req.with_symbol:
        return {"formatted": format_currency_with_symbol(req.value, req.locale)}
    return {"formatted": format_currency(req.value, req.locale)}


# ── Row editor ──────────────────────────────────────────────────────────────

@router.post("/rows/new")
async def new_row_endpoint(req: NewRowRequest):
    rows = req.to_rows()
    return estimate_editor.new_row(rows, position=req.position).as_dict()


@router.post("/rows/insert")
async def insert_row_endpoint(req: InsertRowRequest):
    return {"rows": _rows_out(estimate_editor.insert_row_after(req.to_rows(), req.after_id))}


@router.post("/rows/update")
async def update_row_endpoint(req: UpdateRowRequest):
    try:
        rows = estimate_editor.update_row(req.to_rows(), req.row_id, req.field, req.value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"rows": _rows_out(rows)}


@router.post("/rows/delete")
async def delete_row_endpoint(req: RowIdRequest):
    return {"rows": _rows_out(estimate_editor.delete_row(req.to_rows(), req.row_id))}


@router.post("/rows/toggle-collapse")
async def toggle_collapse_endpoint(req: RowIdRequest):
    return {"rows": _rows_out(estimate_editor.toggle_collapse(req.to_rows(), req.row_id))}


@router.post("/rows/visible")
async def visible_rows_endpoint(req: RowsRequest):
    return {"rows": _rows_out(estimate_editor.visible_rows(req.to_rows()))}


# ── Item summary ────────────────────────────────────────────────────────────

@router.post("/summary")
async def summary_endpoint(req: ItemsRequest):
    items = req.to_items()
    analytics = estimate_summary.generate_analytics(items)
    analytics["top_expensive_items"] = [i.as_dict() for i in analytics["top_expensive_items"]]
    analytics["top_volume_items"] = [i.as_dict() for i in analytics["top_volume_items"]]
    return {"summary": estimate_summary.calculate_summary(items), "analytics": analytics}


@router.post("/summary/adjust-volume")
async def adjust_volume_endpoint(req: VolumeChangeRequest):
    items = estimate_summary.apply_volume_change(req.to_items(), req.percentage)
    return {"items": [i.as_dict() for i in items], "summary": estimate_summary.calculate_summary(items)}


@router.post("/summary/adjust-price")
async def adjust_price_endpoint(req: PriceChangeRequest):
    try:
        items = estimate_summary.apply_price_change(req.to_items(), req.field, req.percentage)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"items": [i.as_dict() for i in items], "summary": estimate_summary.calculate_summary(items)}
