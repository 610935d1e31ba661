"""
test_estimate_coefficients.py — Unit tests for the coefficient profile and its persistence.

Tests cover:
  - The 12-value default profile
  - Record round trip through the short persisted keys
  - load_coefficients fallbacks (absent, unreadable, partial, failing store)
  - save / reset through a SettingsStore
"""

import json
import math
import pytest

from tender_estimator.services.estimate_coefficients import (
    COEFFICIENT_LABELS,
    COEFFICIENTS_STORAGE_KEY,
    DEFAULT_COEFFICIENTS,
    EstimateCoefficients,
    load_coefficients,
    reset_coefficients,
    save_coefficients,
)
from tender_estimator.services.settings_store import InMemorySettingsStore


class _FailingStore:
    """Store whose reads and writes both blow up."""

    def get(self, key):
        raise RuntimeError("storage unavailable")

    def set(self, key, value):
        raise RuntimeError("storage unavailable")


# ===========================================================================
# Class 1: Profile values
# ===========================================================================

class TestProfile:

    def test_default_values(self):
        assert DEFAULT_COEFFICIENTS.as_dict() == {
            "site_overhead": 0.06,
            "consumables": 0.08,
            "warranty_reserve": 0.05,
            "labor_uplift_1": 0.6,
            "labor_growth": 0.1,
            "material_growth": 0.1,
            "contingency": 0.03,
            "subcontract_overhead": 0.1,
            "combined_overhead": 0.1,
            "combined_business_expense": 0.2,
            "combined_profit": 0.1,
            "subcontract_profit": 0.16,
        }

    def test_record_uses_short_keys(self):
        record = DEFAULT_COEFFICIENTS.to_record()
        assert record["sm"] == 0.06
        assert record["work16"] == 0.6
        assert record["subProfit"] == 0.16
        assert len(record) == 12

    def test_from_record_restores_profile(self):
        custom = DEFAULT_COEFFICIENTS.with_updates(site_overhead=0.07, subcontract_profit=0.2)
        assert EstimateCoefficients.from_record(custom.to_record()) == custom

    def test_from_record_accepts_attribute_names(self):
        assert EstimateCoefficients.from_record({"contingency": 0.05}).contingency == 0.05

    def test_from_record_rejects_non_numbers(self):
        with pytest.raises(ValueError):
            EstimateCoefficients.from_record({"sm": "много"})
        with pytest.raises(ValueError):
            EstimateCoefficients.from_record({"sm": True})

    def test_with_updates_rejects_non_finite(self):
        with pytest.raises(ValueError):
            DEFAULT_COEFFICIENTS.with_updates(combined_profit=math.inf)

    def test_with_updates_keeps_original(self):
        updated = DEFAULT_COEFFICIENTS.with_updates(combined_profit=-0.5)
        assert updated.combined_profit == -0.5
        assert DEFAULT_COEFFICIENTS.combined_profit == 0.1

    def test_every_coefficient_has_a_label(self):
        assert set(COEFFICIENT_LABELS) == set(DEFAULT_COEFFICIENTS.as_dict())
        assert COEFFICIENT_LABELS["site_overhead"] == "СМ (0.06)"


# ===========================================================================
# Class 2: Persistence
# ===========================================================================

class TestPersistence:

    def test_absent_value_loads_defaults(self):
        assert load_coefficients(InMemorySettingsStore()) == DEFAULT_COEFFICIENTS

    def test_unreadable_value_loads_defaults(self):
        store = InMemorySettingsStore({COEFFICIENTS_STORAGE_KEY: "{not json"})
        assert load_coefficients(store) == DEFAULT_COEFFICIENTS

    def test_non_object_value_loads_defaults(self):
        store = InMemorySettingsStore({COEFFICIENTS_STORAGE_KEY: "[1, 2, 3]"})
        assert load_coefficients(store) == DEFAULT_COEFFICIENTS

    def test_bad_field_loads_defaults(self):
        store = InMemorySettingsStore({COEFFICIENTS_STORAGE_KEY: json.dumps({"sm": "x", "mbp": 0.5})})
        assert load_coefficients(store) == DEFAULT_COEFFICIENTS

    def test_partial_record_merges_over_defaults(self):
        store = InMemorySettingsStore({COEFFICIENTS_STORAGE_KEY: json.dumps({"sm": 0.09})})
        loaded = load_coefficients(store)
        assert loaded.site_overhead == 0.09
        assert loaded.consumables == DEFAULT_COEFFICIENTS.consumables

    def test_failing_store_loads_defaults(self, caplog):
        assert load_coefficients(_FailingStore()) == DEFAULT_COEFFICIENTS
        assert any("Failed to load coefficients" in r.getMessage() for r in caplog.records)

    def test_save_then_load(self):
        store = InMemorySettingsStore()
        custom = DEFAULT_COEFFICIENTS.with_updates(labor_uplift_1=0.7)
        save_coefficients(store, custom)
        assert json.loads(store.get(COEFFICIENTS_STORAGE_KEY))["work16"] == 0.7
        assert load_coefficients(store) == custom

    def test_save_to_failing_store_does_not_raise(self, caplog):
        save_coefficients(_FailingStore(), DEFAULT_COEFFICIENTS)
        assert any("Failed to save coefficients" in r.getMessage() for r in caplog.records)

    def test_reset_persists_defaults(self):
        store = InMemorySettingsStore()
        save_coefficients(store, DEFAULT_COEFFICIENTS.with_updates(site_overhead=0.5))
        assert reset_coefficients(store) == DEFAULT_COEFFICIENTS
        assert json.loads(store.get(COEFFICIENTS_STORAGE_KEY)) == DEFAULT_COEFFICIENTS.to_record()
