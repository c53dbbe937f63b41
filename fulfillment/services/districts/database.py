"""
Database District Index

Reads restaurant districts from the ``restaurants`` registry table. Each
lookup runs in its own short-lived session so that a slow or failed read
never affects the caller's transaction.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fulfillment.models import Restaurant
from fulfillment.services.districts.base import (
    BaseDistrictIndex,
    DistrictIndexUnavailable,
)

logger = logging.getLogger(__name__)


class DatabaseDistrictIndex(BaseDistrictIndex):
    """District index backed by the restaurant registry table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def provider_name(self) -> str:
        return "database"

    async def lookup_districts(
        self,
        restaurant_ids: Iterable[str],
    ) -> dict[str, Optional[str]]:
        ids = list(restaurant_ids)
        if not ids:
            return {}

        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(Restaurant.id, Restaurant.district).where(Restaurant.id.in_(ids))
                )
                found = {row.id: (row.district or None) for row in result}
        except SQLAlchemyError as e:
            raise DistrictIndexUnavailable(str(e)) from e

        missing = [rid for rid in ids if rid not in found]
        if missing:
            logger.debug(f"Restaurants not in registry: {missing}")

        return {rid: found.get(rid) for rid in ids}

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(Restaurant.id).limit(1))
            return True
        except SQLAlchemyError as e:
            logger.error(f"District index health check failed: {e}")
            return False
