"""
test_api_routes.py — HTTP-level tests through FastAPI's TestClient.

Coefficient endpoints normally resolve a per-user store from the bearer token;
``client`` (conftest) swaps that dependency for an in-memory store. The auth
tests below use the real dependency chain with the database dependency stubbed.
"""

import json
import pytest
from jose import jwt

from tender_estimator.services.estimate_coefficients import (
    COEFFICIENTS_STORAGE_KEY,
    DEFAULT_COEFFICIENTS,
)


LABOR_ROW = {"row_type": "раб", "work_volume": 1, "unit_labor_price": 1000}


# ===========================================================================
# Class 1: Calculation endpoints
# ===========================================================================

class TestCalculationEndpoints:

    def test_calculate_row(self, client):
        resp = client.post("/api/estimate/calculate-row", json={"row": LABOR_ROW})
        assert resp.status_code == 200
        body = resp.json()
        assert body["work_16"] == pytest.approx(1696.0)
        assert body["works_in_kp"] == pytest.approx(2963.98976)

    def test_calculate_row_camel_case_and_strings(self, client):
        row = {"rowType": "раб", "workVolume": "10", "workPrice": 250}
        resp = client.post("/api/estimate/calculate-row", json={"row": row})
        assert resp.json()["total"] == 2500.0

    def test_calculate_row_bool_volume_is_zero(self, client):
        """JSON true is not a number: 0 × 1000 = 0."""
        row = {"row_type": "раб", "work_volume": True, "unit_labor_price": 1000}
        resp = client.post("/api/estimate/calculate-row", json={"row": row})
        assert resp.status_code == 200
        assert resp.json()["total"] == 0.0
        assert resp.json()["works_in_kp"] == 0.0

    @pytest.mark.parametrize("bad", [[1], {"value": 1}, []])
    def test_calculate_row_container_values_are_zero(self, client, bad):
        row = {"row_type": "раб", "work_volume": bad, "unit_labor_price": 1000}
        resp = client.post("/api/estimate/calculate-row", json={"row": row})
        assert resp.status_code == 200
        assert resp.json()["total"] == 0.0

    def test_calculate_row_snake_and_camel_treated_alike(self, client):
        snake = {"row_type": "раб", "work_volume": [1], "unit_labor_price": 1000}
        camel = {"rowType": "раб", "workVolume": [1], "workPrice": 1000}
        a = client.post("/api/estimate/calculate-row", json={"row": snake})
        b = client.post("/api/estimate/calculate-row", json={"row": camel})
        assert a.status_code == b.status_code == 200
        assert a.json() == b.json()

    def test_calculate_row_custom_coefficients(self, client):
        coefficients = DEFAULT_COEFFICIENTS.as_dict()
        coefficients["site_overhead"] = 0.0
        resp = client.post(
            "/api/estimate/calculate-row",
            json={"row": LABOR_ROW, "coefficients": coefficients},
        )
        assert resp.json()["work_sm"] == 0.0
        assert resp.json()["work_16"] == pytest.approx(1600.0)

    def test_calculate_totals(self, client):
        rows = [{"row_type": "Заказчик"}, LABOR_ROW, LABOR_ROW]
        resp = client.post("/api/estimate/calculate-totals", json={"rows": rows})
        assert resp.status_code == 200
        assert resp.json()["total_works"] == pytest.approx(2 * 2963.98976)
        assert resp.json()["total_materials"] == 0.0

    def test_group_totals(self, client):
        rows = [{"row_type": "Заказчик"}, LABOR_ROW, {"row_type": "Заказчик"}, LABOR_ROW]
        resp = client.post("/api/estimate/group-totals", json={"rows": rows, "header_index": 2})
        assert resp.json()["works_in_kp"] == pytest.approx(2963.98976)

    def test_group_totals_index_past_end_is_zero(self, client):
        resp = client.post("/api/estimate/group-totals", json={"rows": [], "header_index": 0})
        assert resp.status_code == 200
        assert resp.json() == {"materials_in_kp": 0.0, "works_in_kp": 0.0}

    def test_all_group_totals(self, client):
        rows = [{"row_type": "Заказчик", "name": "Фасад"}, LABOR_ROW]
        body = client.post("/api/estimate/group-totals/all", json={"rows": rows}).json()
        assert body["groups"][0]["name"] == "Фасад"
        assert body["groups"][0]["works_in_kp"] == pytest.approx(body["totals"]["total_works"])

    def test_format(self, client):
        resp = client.post("/api/estimate/format",
                           json={"value": 1234.5, "with_symbol": True, "locale": "ru-RU"})
        assert resp.json() == {"formatted": "1\u00a0234,50 ₽"}

    def test_bad_coefficient_type_is_422(self, client):
        resp = client.post(
            "/api/estimate/calculate-row",
            json={"row": LABOR_ROW, "coefficients": {"site_overhead": "много"}},
        )
        assert resp.status_code == 422


# ===========================================================================
# Class 2: Row editor endpoints
# ===========================================================================

class TestRowEndpoints:

    ROWS = [
        {"id": "h1", "row_type": "Заказчик", "volume": 10},
        {"id": "l1", "row_type": "раб", "volume": 10, "work_volume": 10},
        {"id": "m1", "row_type": "мат", "material_consumption_factor": 2, "volume": 20},
    ]

    def test_new_row(self, client):
        body = client.post("/api/estimate/rows/new", json={"rows": self.ROWS}).json()
        assert body["row_type"] == "раб"
        assert body["volume"] == 10

    def test_insert(self, client):
        body = client.post("/api/estimate/rows/insert",
                           json={"rows": self.ROWS, "after_id": "h1"}).json()
        assert len(body["rows"]) == 4
        assert body["rows"][0]["id"] == "h1"
        assert body["rows"][2]["id"] == "l1"

    def test_update_cascades(self, client):
        body = client.post(
            "/api/estimate/rows/update",
            json={"rows": self.ROWS, "row_id": "h1", "field": "volume", "value": 3},
        ).json()
        volumes = {r["id"]: r["volume"] for r in body["rows"]}
        assert volumes == {"h1": 3, "l1": 3, "m1": 6}

    def test_update_unknown_field(self, client):
        resp = client.post(
            "/api/estimate/rows/update",
            json={"rows": self.ROWS, "row_id": "h1", "field": "colour", "value": 3},
        )
        assert resp.status_code == 400

    def test_delete(self, client):
        body = client.post("/api/estimate/rows/delete",
                           json={"rows": self.ROWS, "row_id": "m1"}).json()
        assert [r["id"] for r in body["rows"]] == ["h1", "l1"]

    def test_collapse_and_visible(self, client):
        rows = client.post("/api/estimate/rows/toggle-collapse",
                           json={"rows": self.ROWS, "row_id": "h1"}).json()["rows"]
        assert rows[0]["is_collapsed"] is True
        visible = client.post("/api/estimate/rows/visible", json={"rows": rows}).json()["rows"]
        assert [r["id"] for r in visible] == ["h1"]

    def test_string_false_collapse_flag_keeps_group_visible(self, client):
        rows = [dict(self.ROWS[0], is_collapsed="false"), *self.ROWS[1:]]
        visible = client.post("/api/estimate/rows/visible", json={"rows": rows}).json()["rows"]
        assert [r["id"] for r in visible] == ["h1", "l1", "m1"]
        assert visible[0]["is_collapsed"] is False


# ===========================================================================
# Class 3: Summary endpoints
# ===========================================================================

class TestSummaryEndpoints:

    ITEMS = [
        {"id": "a", "contractor": "A", "volume": 2, "work_price": 10, "total": 20},
        {"id": "b", "contractor": "B", "volume": 1, "work_price": 5, "total": 5},
    ]

    def test_summary(self, client):
        body = client.post("/api/estimate/summary", json={"items": self.ITEMS}).json()
        assert body["summary"]["total_sum"] == 25
        assert body["analytics"]["top_expensive_items"][0]["id"] == "a"

    def test_adjust_volume(self, client):
        body = client.post("/api/estimate/summary/adjust-volume",
                           json={"items": self.ITEMS, "percentage": 100}).json()
        assert body["items"][0]["volume"] == 4
        assert body["summary"]["total_sum"] == 50

    def test_adjust_price_bad_field(self, client):
        resp = client.post("/api/estimate/summary/adjust-price",
                           json={"items": self.ITEMS, "field": "total", "percentage": 10})
        assert resp.status_code == 400


# ===========================================================================
# Class 4: Coefficient endpoints
# ===========================================================================

class TestCoefficientEndpoints:

    def test_get_defaults_when_nothing_saved(self, client):
        body = client.get("/api/coefficients").json()
        assert body["coefficients"] == DEFAULT_COEFFICIENTS.as_dict()
        assert body["labels"]["consumables"] == "МБП (0.08)"

    def test_partial_update_persists(self, client, settings_store):
        resp = client.put("/api/coefficients", json={"site_overhead": 0.07})
        assert resp.status_code == 200
        assert resp.json()["coefficients"]["site_overhead"] == 0.07
        assert resp.json()["coefficients"]["consumables"] == 0.08
        saved = json.loads(settings_store.get(COEFFICIENTS_STORAGE_KEY))
        assert saved["sm"] == 0.07
        assert client.get("/api/coefficients").json()["coefficients"]["site_overhead"] == 0.07

    def test_reset(self, client, settings_store):
        client.put("/api/coefficients", json={"combined_profit": -0.5})
        body = client.post("/api/coefficients/reset").json()
        assert body["coefficients"] == DEFAULT_COEFFICIENTS.as_dict()
        assert json.loads(settings_store.get(COEFFICIENTS_STORAGE_KEY))["workMatProfit"] == 0.1

    def test_update_rejects_non_numbers(self, client):
        assert client.put("/api/coefficients", json={"site_overhead": "x"}).status_code == 422

    def test_defaults_need_no_auth(self):
        from fastapi.testclient import TestClient
        from tender_estimator.main import app
        resp = TestClient(app).get("/api/coefficients/defaults")
        assert resp.status_code == 200
        assert resp.json()["coefficients"]["subcontract_profit"] == 0.16


# ===========================================================================
# Class 5: Auth scoping
# ===========================================================================

class TestCoefficientAuth:

    @pytest.fixture
    def auth_client(self, monkeypatch):
        from fastapi.testclient import TestClient
        from tender_estimator.main import app
        from tender_estimator.api import deps
        from tender_estimator.db import get_db

        async def _no_db():
            yield None

        monkeypatch.delenv("DATABASE_URL", raising=False)
        deps._dev_stores.clear()
        app.dependency_overrides[get_db] = _no_db
        yield TestClient(app)
        app.dependency_overrides.clear()
        deps._dev_stores.clear()

    @staticmethod
    def _token(sub):
        from tender_estimator.api.deps import ALGORITHM, SECRET_KEY
        return jwt.encode({"sub": sub}, SECRET_KEY, algorithm=ALGORITHM)

    def test_missing_token_is_401(self, auth_client):
        assert auth_client.get("/api/coefficients").status_code == 401

    def test_garbage_token_is_401(self, auth_client):
        resp = auth_client.get("/api/coefficients", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_token_without_sub_is_401(self, auth_client):
        from tender_estimator.api.deps import ALGORITHM, SECRET_KEY
        token = jwt.encode({"role": "estimator"}, SECRET_KEY, algorithm=ALGORITHM)
        resp = auth_client.get("/api/coefficients", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_profiles_are_scoped_per_user(self, auth_client):
        alice = {"Authorization": f"Bearer {self._token('alice')}"}
        bob = {"Authorization": f"Bearer {self._token('bob')}"}
        auth_client.put("/api/coefficients", json={"contingency": 0.05}, headers=alice)
        assert auth_client.get("/api/coefficients", headers=alice).json()["coefficients"]["contingency"] == 0.05
        assert auth_client.get("/api/coefficients", headers=bob).json()["coefficients"]["contingency"] == 0.03

    def test_dev_stores_are_capped(self, auth_client, monkeypatch):
        """Limit 2, subjects u0..u9 → only the two most recent stay in memory."""
        from tender_estimator.api import deps
        monkeypatch.setattr(deps, "DEV_SETTINGS_MAX_USERS", 2)
        for i in range(10):
            headers = {"Authorization": f"Bearer {self._token(f'u{i}')}"}
            assert auth_client.get("/api/coefficients", headers=headers).status_code == 200
        assert list(deps._dev_stores) == ["u8", "u9"]

    def test_dev_store_eviction_is_least_recently_used(self, auth_client, monkeypatch):
        from tender_estimator.api import deps
        monkeypatch.setattr(deps, "DEV_SETTINGS_MAX_USERS", 2)
        first = deps.get_dev_store("a")
        deps.get_dev_store("b")
        assert deps.get_dev_store("a") is first
        deps.get_dev_store("c")
        assert list(deps._dev_stores) == ["a", "c"]


# ===========================================================================
# Class 6: Service endpoints and middleware
# ===========================================================================

class TestServiceEndpoints:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "active"
        assert "db_configured" in body

    def test_metrics_counts_calculations(self, client):
        from tender_estimator.services.perf_monitor import tracker
        tracker.reset()
        client.post("/api/estimate/calculate-row", json={"row": LABOR_ROW})
        body = client.get("/metrics").json()
        assert body["calculations_processed"] == 1
        assert body["rows_priced"] == 1
        assert "calculate_row" in body["operation_avg_ms"]

    def test_request_id_is_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert resp.headers["X-Request-ID"] == "req-42"
        assert "X-Process-Time" in resp.headers

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
