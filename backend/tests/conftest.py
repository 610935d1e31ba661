"""
conftest.py — Shared pytest fixtures for the Tender Estimator backend test suite.

No database or external service fixtures are defined here. Calculation tests
are pure unit tests; API tests run the FastAPI app through TestClient with the
settings store dependency replaced by an in-memory store.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``tender_estimator.*`` imports resolve correctly regardless of where pytest
    is invoked.
"""

import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any package imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)


# ---------------------------------------------------------------------------
# Coefficient fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def default_coefficients():
    """
    Default markup profile:
      СМ 0.06, МБП 0.08, warranty 0.05, work 1.6 uplift 0.6, work growth 0.1,
      material growth 0.1, unforeseen 0.03, sub ООЗ 0.1, Р+М ООЗ 0.1,
      Р+М ОФЗ 0.2, Р+М profit 0.1, sub profit 0.16.
    """
    from tender_estimator.services.estimate_coefficients import DEFAULT_COEFFICIENTS
    return DEFAULT_COEFFICIENTS


# ---------------------------------------------------------------------------
# Row fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def labor_row():
    """Labor row: 1 unit at 1000 per unit of work."""
    from tender_estimator.services.estimate_calculations import EstimateRow, RowType
    return EstimateRow(row_type=RowType.LABOR, work_volume=1.0, unit_labor_price=1000.0, id="l1")


@pytest.fixture
def primary_material_row():
    """Primary material row: 10 units at 100 with delivery."""
    from tender_estimator.services.estimate_calculations import (
        EstimateRow, MaterialType, RowType,
    )
    return EstimateRow(
        row_type=RowType.MATERIAL,
        material_type=MaterialType.PRIMARY,
        work_volume=10.0,
        unit_material_price_with_delivery=100.0,
        id="m1",
    )


@pytest.fixture
def sample_rows(labor_row, primary_material_row):
    """
    Two groups:
      0  Заказчик "Фасад"
      1    раб        1 × 1000
      2    мат основ 10 × 100
      3  Заказчик "Кровля"
      4    суб-раб   10 × 100
    """
    from tender_estimator.services.estimate_calculations import EstimateRow, RowType
    return [
        EstimateRow(row_type=RowType.HEADER, name="Фасад", id="h1"),
        labor_row,
        primary_material_row,
        EstimateRow(row_type=RowType.HEADER, name="Кровля", id="h2"),
        EstimateRow(
            row_type=RowType.SUBCONTRACT_LABOR, work_volume=10.0, unit_labor_price=100.0, id="s1",
        ),
    ]


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings_store():
    from tender_estimator.services.settings_store import InMemorySettingsStore
    return InMemorySettingsStore()


@pytest.fixture
def client(settings_store):
    """TestClient whose coefficient endpoints read/write ``settings_store``."""
    from fastapi.testclient import TestClient
    from tender_estimator.main import app
    from tender_estimator.api.deps import get_settings_store

    app.dependency_overrides[get_settings_store] = lambda: settings_store
    yield TestClient(app)
    app.dependency_overrides.clear()
