"""FastAPI dependency injection — user scope and settings store."""
import os
import logging
from collections import OrderedDict
from typing import AsyncGenerator, Union
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from tender_estimator.db import get_db, database_configured
from tender_estimator.db.settings_store import ScopedSettingsStore
from tender_estimator.services.settings_store import InMemorySettingsStore

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "changethis_use_a_real_secret_in_production_64chars")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

logger = logging.getLogger("tender-api")

security = HTTPBearer(auto_error=False)

# Dev mode (no DATABASE_URL): settings live in process memory per user,
# lost on restart. At most DEV_SETTINGS_MAX_USERS subjects are kept; the
# least recently used one is dropped first.
DEV_SETTINGS_MAX_USERS = int(os.getenv("DEV_SETTINGS_MAX_USERS", "1000"))
_dev_stores: "OrderedDict[str, InMemorySettingsStore]" = OrderedDict()


def get_dev_store(user_id: str) -> InMemorySettingsStore:
    store = _dev_stores.pop(user_id, None)
    if store is None:
        store = InMemorySettingsStore()
    _dev_stores[user_id] = store
    while len(_dev_stores) > DEV_SETTINGS_MAX_USERS:
        evicted, _ = _dev_stores.popitem(last=False)
        logger.debug("Dev settings store evicted", extra={"user_id": evicted})
    return store


def get_user_scope(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Resolve the settings scope from the bearer token's ``sub`` claim."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return str(user_id)


async def get_settings_store(
    user_id: str = Depends(get_user_scope),
    db: AsyncSession = Depends(get_db),
) -> AsyncGenerator[Union[ScopedSettingsStore, InMemorySettingsStore], None]:
    """Yield the user's settings store; writes are flushed after the handler returns."""
    if not database_configured():
        yield get_dev_store(user_id)
        return

    store = await ScopedSettingsStore.fetch(db, user_id)
    yield store
    await store.flush(db)
