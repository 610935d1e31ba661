"""Coefficient profile routes — per-user load / save / reset of markup ratios."""
import logging
from typing import Union

from fastapi import APIRouter, Depends

from tender_estimator.api.deps import get_settings_store
from tender_estimator.db.settings_store import ScopedSettingsStore
from tender_estimator.models.estimate_schemas import CoefficientsUpdate
from tender_estimator.services.estimate_coefficients import (
    COEFFICIENT_LABELS,
    DEFAULT_COEFFICIENTS,
    load_coefficients,
    reset_coefficients,
    save_coefficients,
)
from tender_estimator.services.settings_store import InMemorySettingsStore

router = APIRouter(prefix="/api/coefficients", tags=["Estimate Coefficients"])
logger = logging.getLogger("tender-api")

Store = Union[ScopedSettingsStore, InMemorySettingsStore]


def _profile(coefficients) -> dict:
    return {"coefficients": coefficients.as_dict(), "labels": COEFFICIENT_LABELS}


@router.get("")
async def get_coefficients(store: Store = Depends(get_settings_store)):
    """Saved profile for the caller, or the default profile."""
    return _profile(load_coefficients(store, log=logger))


@router.put("")
async def update_coefficients(
    payload: CoefficientsUpdate,
    store: Store = Depends(get_settings_store),
):
    """Merge the given ratios into the saved profile and persist it."""
    current = load_coefficients(store, log=logger)
    updated = current.with_updates(**payload.model_dump(exclude_none=True))
    save_coefficients(store, updated, log=logger)
    return _profile(updated)


@router.post("/reset")
async def reset_coefficients_endpoint(store: Store = Depends(get_settings_store)):
    return _profile(reset_coefficients(store, log=logger))


@router.get("/defaults")
async def get_default_coefficients():
    return _profile(DEFAULT_COEFFICIENTS)
