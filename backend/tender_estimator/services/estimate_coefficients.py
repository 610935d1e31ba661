"""
Markup coefficient profile for tender estimates.

Twelve dimensionless ratios applied by the row pricing pipeline
(see estimate_calculations.calculate_row). A profile is immutable; edits
produce a new instance via ``with_updates``.

Persistence goes through a SettingsStore (get/set of text values) supplied
by the caller. The profile is stored as a flat JSON record under
``COEFFICIENTS_STORAGE_KEY`` using the short keys below:

    sm, mbp, warranty, work16, workGrowth, matGrowth, unforeseen,
    subOOZ, workMatOOZ, workMatOFZ, workMatProfit, subProfit

Load never raises: a missing or unreadable record yields DEFAULT_COEFFICIENTS.
Save never raises: failures are logged and the call becomes a no-op.
"""

import json
import logging
import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from tender_estimator.services.settings_store import SettingsStore

logger = logging.getLogger("tender-api")

COEFFICIENTS_STORAGE_KEY = "estimateCoefficients"


@dataclass(frozen=True)
class EstimateCoefficients:
    site_overhead: float = 0.06               # СМ
    consumables: float = 0.08                 # МБП
    warranty_reserve: float = 0.05            # гарантийный период
    labor_uplift_1: float = 0.6               # работы 1,6
    labor_growth: float = 0.1                 # работы рост
    material_growth: float = 0.1              # материалы рост
    contingency: float = 0.03                 # непредвиденные
    subcontract_overhead: float = 0.1         # субподряд ООЗ
    combined_overhead: float = 0.1            # раб+мат ООЗ
    combined_business_expense: float = 0.2    # раб+мат ОФЗ
    combined_profit: float = 0.1              # раб+мат прибыль
    subcontract_profit: float = 0.16          # субподряд прибыль

    def with_updates(self, **changes: float) -> "EstimateCoefficients":
        return replace(self, **{k: _finite(k, v) for k, v in changes.items()})

    def to_record(self) -> Dict[str, float]:
        """Flat record keyed by the persisted short names."""
        return {short: float(getattr(self, attr)) for attr, short in _STORAGE_NAMES.items()}

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EstimateCoefficients":
        """
        Build a profile from a persisted record.

        Keys may be the short persisted names or the attribute names. Keys
        absent from the record keep their default value. Raises ValueError
        when a present value is not a finite number.
        """
        values: Dict[str, float] = {}
        for attr, short in _STORAGE_NAMES.items():
            if short in record:
                values[attr] = _finite(short, record[short])
            elif attr in record:
                values[attr] = _finite(attr, record[attr])
        return cls(**values)

    def as_dict(self) -> Dict[str, float]:
        return {f.name: float(getattr(self, f.name)) for f in fields(self)}


_STORAGE_NAMES: Dict[str, str] = {
    "site_overhead": "sm",
    "consumables": "mbp",
    "warranty_reserve": "warranty",
    "labor_uplift_1": "work16",
    "labor_growth": "workGrowth",
    "material_growth": "matGrowth",
    "contingency": "unforeseen",
    "subcontract_overhead": "subOOZ",
    "combined_overhead": "workMatOOZ",
    "combined_business_expense": "workMatOFZ",
    "combined_profit": "workMatProfit",
    "subcontract_profit": "subProfit",
}

# Reference profile for the "masonry / curtain wall" system.
DEFAULT_COEFFICIENTS = EstimateCoefficients()

COEFFICIENT_LABELS: Dict[str, str] = {
    "site_overhead": "СМ (0.06)",
    "consumables": "МБП (0.08)",
    "warranty_reserve": "Гарантия (0.05)",
    "labor_uplift_1": "Работы 1.6 (0.6)",
    "labor_growth": "Работы рост (0.1)",
    "material_growth": "Мат рост (0.1)",
    "contingency": "Непредв. (0.03)",
    "subcontract_overhead": "Суб ООЗ (0.1)",
    "combined_overhead": "Р+М ООЗ (0.1)",
    "combined_business_expense": "Р+М ОФЗ (0.2)",
    "combined_profit": "Р+М приб (0.1)",
    "subcontract_profit": "Суб приб (0.16)",
}


def _finite(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Coefficient '{name}' must be a number, got bool")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Coefficient '{name}' must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValueError(f"Coefficient '{name}' must be finite, got {value!r}")
    return number


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def load_coefficients(
    store: SettingsStore,
    log: Optional[logging.Logger] = None,
) -> EstimateCoefficients:
    """Read the saved profile; any failure returns DEFAULT_COEFFICIENTS."""
    log = log or logger
    try:
        stored = store.get(COEFFICIENTS_STORAGE_KEY)
        if stored:
            record = json.loads(stored)
            if not isinstance(record, dict):
                raise ValueError(f"expected a JSON object, got {type(record).__name__}")
            coefficients = EstimateCoefficients.from_record(record)
            log.info("Coefficients loaded", extra={"coefficients": coefficients.to_record()})
            return coefficients
    except Exception as e:
        log.error(f"Failed to load coefficients: {e}")
    return DEFAULT_COEFFICIENTS


def save_coefficients(
    store: SettingsStore,
    coefficients: EstimateCoefficients,
    log: Optional[logging.Logger] = None,
) -> None:
    """Write the profile through to the store. Best-effort."""
    log = log or logger
    try:
        store.set(COEFFICIENTS_STORAGE_KEY, json.dumps(coefficients.to_record()))
        log.info("Coefficients saved", extra={"coefficients": coefficients.to_record()})
    except Exception as e:
        log.error(f"Failed to save coefficients: {e}")


def reset_coefficients(
    store: SettingsStore,
    log: Optional[logging.Logger] = None,
) -> EstimateCoefficients:
    """Persist and return the default profile."""
    save_coefficients(store, DEFAULT_COEFFICIENTS, log=log)
    return DEFAULT_COEFFICIENTS
