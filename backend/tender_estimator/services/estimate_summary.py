"""
EstimateSummary — flat cost summary and analytics for hierarchical estimate items.

This is the simple sibling of the markup engine: no coefficients, just
volume × price per item, rolled up over a tree of items.

Covers:
  - Totals over the flattened tree (sum, volume, material / work / delivery cost)
  - Item recalculation (work + material × consumption coeff + delivery, per volume)
  - Analytics: by contractor, by material type, by unit, top-10 lists
  - Bulk volume / price adjustments by percentage
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tender_estimator.services.estimate_calculations import to_number

logger = logging.getLogger("tender-api")

_TOP_N = 10
PRICE_FIELDS = ("work_price", "material_price_with_vat", "delivery_price")


@dataclass(frozen=True)
class EstimateItem:
    id: str = ""
    contractor: str = ""
    material_type: str = ""
    unit: str = ""
    volume: float = 0.0
    work_price: float = 0.0
    material_price_with_vat: float = 0.0
    material_coeff: float = 0.0
    delivery_price: float = 0.0
    total: float = 0.0
    is_modified: bool = False
    children: List["EstimateItem"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EstimateItem":
        return cls(
            id=str(data.get("id") or ""),
            contractor=str(data.get("contractor") or ""),
            material_type=str(data.get("material_type") or ""),
            unit=str(data.get("unit") or ""),
            volume=to_number(data.get("volume")),
            work_price=to_number(data.get("work_price")),
            material_price_with_vat=to_number(data.get("material_price_with_vat")),
            material_coeff=to_number(data.get("material_coeff")),
            delivery_price=to_number(data.get("delivery_price")),
            total=to_number(data.get("total")),
            is_modified=bool(data.get("is_modified", False)),
            children=[cls.from_dict(child) for child in data.get("children") or []],
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "contractor": self.contractor,
            "material_type": self.material_type,
            "unit": self.unit,
            "volume": self.volume,
            "work_price": self.work_price,
            "material_price_with_vat": self.material_price_with_vat,
            "material_coeff": self.material_coeff,
            "delivery_price": self.delivery_price,
            "total": self.total,
            "is_modified": self.is_modified,
            "children": [child.as_dict() for child in self.children],
        }


def flatten_items(items: Sequence[EstimateItem]) -> List[EstimateItem]:
    """Depth-first, parent before children."""
    result: List[EstimateItem] = []
    for item in items:
        result.append(item)
        if item.children:
            result.extend(flatten_items(item.children))
    return result


def calculate_summary(items: Sequence[EstimateItem]) -> Dict[str, Any]:
    flat = flatten_items(items)
    summary = {
        "total_sum": 0.0,
        "total_volume": 0.0,
        "total_material_cost": 0.0,
        "total_work_cost": 0.0,
        "total_delivery_cost": 0.0,
        "items_count": len(flat),
    }

    for item in flat:
        summary["total_sum"] += item.total
        summary["total_volume"] += item.volume
        if item.material_price_with_vat and item.volume:
            summary["total_material_cost"] += item.material_price_with_vat * item.volume
        if item.work_price and item.volume:
            summary["total_work_cost"] += item.work_price * item.volume
        if item.delivery_price and item.volume:
            summary["total_delivery_cost"] += item.delivery_price * item.volume

    logger.info(
        "Estimate summary updated",
        extra={"total_sum": summary["total_sum"], "items_count": summary["items_count"]},
    )
    return summary


def recalculate_item(item: EstimateItem) -> EstimateItem:
    """
    total = volume × (work_price + material_price × coeff + delivery_price).
    A zero/unset coeff leaves the material price unscaled.
    """
    total = 0.0
    if item.volume:
        if item.work_price:
            total += item.work_price * item.volume
        if item.material_price_with_vat:
            material_cost = item.material_price_with_vat * item.volume
            total += material_cost * item.material_coeff if item.material_coeff else material_cost
        if item.delivery_price:
            total += item.delivery_price * item.volume

    logger.debug(
        "Item recalculated",
        extra={"item_id": item.id, "old_total": item.total, "new_total": total},
    )
    return replace(item, total=total, is_modified=True)


def _share(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def generate_analytics(items: Sequence[EstimateItem]) -> Dict[str, Any]:
    flat = flatten_items(items)
    total_sum = sum(item.total for item in flat)

    by_contractor: Dict[str, Dict[str, float]] = {}
    by_material_type: Dict[str, Dict[str, float]] = {}
    by_unit: Dict[str, Dict[str, float]] = {}

    for item in flat:
        bucket = by_contractor.setdefault(item.contractor or "Не указан", {"total": 0.0, "count": 0})
        bucket["total"] += item.total
        bucket["count"] += 1

        bucket = by_material_type.setdefault(item.material_type or "Не указан", {"total": 0.0, "count": 0})
        bucket["total"] += item.total
        bucket["count"] += 1

        bucket = by_unit.setdefault(
            item.unit or "Не указана", {"total_volume": 0.0, "total_cost": 0.0, "count": 0}
        )
        bucket["total_volume"] += item.volume
        bucket["total_cost"] += item.total
        bucket["count"] += 1

    contractors = sorted(
        (
            {
                "contractor": name,
                "total": data["total"],
                "count": data["count"],
                "percentage": _share(data["total"], total_sum),
            }
            for name, data in by_contractor.items()
        ),
        key=lambda x: x["total"],
        reverse=True,
    )
    material_types = sorted(
        (
            {
                "material_type": name,
                "total": data["total"],
                "count": data["count"],
                "percentage": _share(data["total"], total_sum),
            }
            for name, data in by_material_type.items()
        ),
        key=lambda x: x["total"],
        reverse=True,
    )
    units = sorted(
        (
            {
                "unit": name,
                "total_volume": data["total_volume"],
                "avg_price": data["total_cost"] / data["total_volume"] if data["total_volume"] > 0 else 0.0,
                "count": data["count"],
            }
            for name, data in by_unit.items()
        ),
        key=lambda x: x["total_volume"],
        reverse=True,
    )

    analytics = {
        "by_contractor": contractors,
        "by_material_type": material_types,
        "by_unit": units,
        "top_expensive_items": sorted(flat, key=lambda i: i.total, reverse=True)[:_TOP_N],
        "top_volume_items": sorted(flat, key=lambda i: i.volume, reverse=True)[:_TOP_N],
    }

    logger.info(
        "Estimate analytics generated",
        extra={
            "contractors_count": len(contractors),
            "material_types_count": len(material_types),
            "units_count": len(units),
        },
    )
    return analytics


def apply_volume_change(items: Sequence[EstimateItem], percentage: float) -> List[EstimateItem]:
    """Scale every volume in the tree by ``percentage`` % and recalculate totals."""
    multiplier = 1 + percentage / 100

    def _update(item: EstimateItem) -> EstimateItem:
        scaled = replace(
            item,
            volume=item.volume * multiplier,
            children=[_update(child) for child in item.children],
        )
        return recalculate_item(scaled)

    logger.info(
        "Volume change applied",
        extra={"percentage": percentage, "multiplier": multiplier, "items_count": len(items)},
    )
    return [_update(item) for item in items]


def apply_price_change(
    items: Sequence[EstimateItem],
    price_field: str,
    percentage: float,
) -> List[EstimateItem]:
    """Scale one price column in the tree by ``percentage`` % and recalculate totals."""
    if price_field not in PRICE_FIELDS:
        raise ValueError(f"price_field must be one of {PRICE_FIELDS}, got '{price_field}'")
    multiplier = 1 + percentage / 100

    def _update(item: EstimateItem) -> EstimateItem:
        scaled = replace(
            item,
            children=[_update(child) for child in item.children],
            **{price_field: getattr(item, price_field) * multiplier},
        )
        return recalculate_item(scaled)

    logger.info(
        "Price change applied",
        extra={"field": price_field, "percentage": percentage, "items_count": len(items)},
    )
    return [_update(item) for item in items]
