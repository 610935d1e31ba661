"""
User-scoped settings store backed by the ``user_settings`` table.

The coefficient functions use a synchronous get/set port, so a request
works on a snapshot: ``fetch`` reads all of one user's settings, ``get``/
``set`` operate on the snapshot, and ``flush`` upserts the keys that were
set. Both database steps are best-effort — failures are logged and the
store degrades to an empty / unsaved snapshot.
"""
import logging
from typing import Dict, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tender_estimator.models.orm_models import UserSetting

logger = logging.getLogger("tender-db")


class ScopedSettingsStore:
    def __init__(self, user_id: str, values: Optional[Dict[str, str]] = None) -> None:
        self.user_id = user_id
        self._values: Dict[str, str] = dict(values or {})
        self._dirty: Set[str] = set()

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._dirty.add(key)

    @property
    def dirty_keys(self) -> Set[str]:
        return set(self._dirty)

    @classmethod
    async def fetch(cls, db: AsyncSession, user_id: str) -> "ScopedSettingsStore":
        try:
            result = await db.execute(select(UserSetting).where(UserSetting.user_id == user_id))
            values = {row.key: row.value for row in result.scalars().all()}
        except Exception as e:
            logger.warning(f"Settings fetch failed for user {user_id}: {e}")
            values = {}
        return cls(user_id, values)

    async def flush(self, db: AsyncSession) -> bool:
        """Upsert every key set since fetch. Returns False if the write failed."""
        if not self._dirty:
            return True
        try:
            result = await db.execute(
                select(UserSetting).where(
                    UserSetting.user_id == self.user_id,
                    UserSetting.key.in_(self._dirty),
                )
            )
            existing = {row.key: row for row in result.scalars().all()}
            for key in self._dirty:
                row = existing.get(key)
                if row is None:
                    db.add(UserSetting(user_id=self.user_id, key=key, value=self._values[key]))
                else:
                    row.value = self._values[key]
            await db.commit()
        except Exception as e:
            logger.error(f"Settings flush failed for user {self.user_id}: {e}")
            try:
                await db.rollback()
            except Exception as rollback_err:
                logger.debug("Rollback after failed flush also failed: %s", rollback_err)
            return False
        self._dirty.clear()
        return True
