"""Request / response schemas for the estimate and coefficient endpoints."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, FiniteFloat

from tender_estimator.services.estimate_calculations import EstimateRow
from tender_estimator.services.estimate_coefficients import (
    DEFAULT_COEFFICIENTS,
    EstimateCoefficients,
)
from tender_estimator.services.estimate_summary import EstimateItem


# ─── Rows ───────────────────────────────────────────────────────────────────

class EstimateRowPayload(BaseModel):
    """
    One estimate row. Numeric and flag fields accept any JSON value and are
    coerced by the row model (strings are parsed; booleans, lists, objects
    and garbage become 0); the camelCase names of the estimate screen
    (rowType, workVolume, workPrice, matPriceWithDelivery, ...) are accepted
    as extra keys.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    row_type: Optional[str] = None
    material_type: Optional[str] = None
    name: Optional[str] = None
    unit: Optional[str] = None
    volume: Any = None
    work_volume: Any = None
    unit_labor_price: Any = None
    unit_material_price_with_delivery: Any = None
    material_consumption_factor: Any = None
    mat_price_no_delivery: Any = None
    delivery: Any = None
    is_collapsed: Any = None

    def to_row(self) -> EstimateRow:
        return EstimateRow.from_dict(self.model_dump(exclude_unset=True))


class CoefficientsPayload(BaseModel):
    site_overhead: FiniteFloat = DEFAULT_COEFFICIENTS.site_overhead
    consumables: FiniteFloat = DEFAULT_COEFFICIENTS.consumables
    warranty_reserve: FiniteFloat = DEFAULT_COEFFICIENTS.warranty_reserve
    labor_uplift_1: FiniteFloat = DEFAULT_COEFFICIENTS.labor_uplift_1
    labor_growth: FiniteFloat = DEFAULT_COEFFICIENTS.labor_growth
    material_growth: FiniteFloat = DEFAULT_COEFFICIENTS.material_growth
    contingency: FiniteFloat = DEFAULT_COEFFICIENTS.contingency
    subcontract_overhead: FiniteFloat = DEFAULT_COEFFICIENTS.subcontract_overhead
    combined_overhead: FiniteFloat = DEFAULT_COEFFICIENTS.combined_overhead
    combined_business_expense: FiniteFloat = DEFAULT_COEFFICIENTS.combined_business_expense
    combined_profit: FiniteFloat = DEFAULT_COEFFICIENTS.combined_profit
    subcontract_profit: FiniteFloat = DEFAULT_COEFFICIENTS.subcontract_profit

    def to_coefficients(self) -> EstimateCoefficients:
        return EstimateCoefficients(**self.model_dump())


class CoefficientsUpdate(BaseModel):
    """Partial update — omitted fields keep the saved value."""
    site_overhead: Optional[FiniteFloat] = None
    consumables: Optional[FiniteFloat] = None
    warranty_reserve: Optional[FiniteFloat] = None
    labor_uplift_1: Optional[FiniteFloat] = None
    labor_growth: Optional[FiniteFloat] = None
    material_growth: Optional[FiniteFloat] = None
    contingency: Optional[FiniteFloat] = None
    subcontract_overhead: Optional[FiniteFloat] = None
    combined_overhead: Optional[FiniteFloat] = None
    combined_business_expense: Optional[FiniteFloat] = None
    combined_profit: Optional[FiniteFloat] = None
    subcontract_profit: Optional[FiniteFloat] = None


def coefficients_or_default(payload: Optional[CoefficientsPayload]) -> EstimateCoefficients:
    return payload.to_coefficients() if payload else DEFAULT_COEFFICIENTS


# ─── Calculation requests ───────────────────────────────────────────────────

class CalculateRowRequest(BaseModel):
    row: EstimateRowPayload
    coefficients: Optional[CoefficientsPayload] = None


class RowsRequest(BaseModel):
    rows: List[EstimateRowPayload] = Field(default_factory=list)
    coefficients: Optional[CoefficientsPayload] = None

    def to_rows(self) -> List[EstimateRow]:
        return [r.to_row() for r in self.rows]


class GroupTotalsRequest(RowsRequest):
    header_index: int


class FormatRequest(BaseModel):
    value: Any = 0
    with_symbol: bool = False
    locale: Optional[str] = None


# ─── Editor requests ────────────────────────────────────────────────────────

class NewRowRequest(RowsRequest):
    position: Optional[int] = None


class InsertRowRequest(RowsRequest):
    after_id: str


class UpdateRowRequest(RowsRequest):
    row_id: str
    field: str
    value: Any = None


class RowIdRequest(RowsRequest):
    row_id: str


# ─── Summary requests ───────────────────────────────────────────────────────

class ItemsRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)

    def to_items(self) -> List[EstimateItem]:
        return [EstimateItem.from_dict(i) for i in self.items]


class VolumeChangeRequest(ItemsRequest):
    percentage: FiniteFloat


class PriceChangeRequest(ItemsRequest):
    field: str
    percentage: FiniteFloat
