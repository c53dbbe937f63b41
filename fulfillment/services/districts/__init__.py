"""
District Index Factory

Provides a single entry point for obtaining the restaurant district index.
Selects the registry-backed or the in-memory implementation based on
DISTRICT_INDEX_PROVIDER.

Usage:
    from fulfillment.services.districts import get_district_index

    index = get_district_index()
    districts = await index.lookup_districts(["rest1", "rest2"])
"""

import logging
from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.districts.base import (
    BaseDistrictIndex,
    DistrictIndexUnavailable,
)
from fulfillment.services.districts.database import DatabaseDistrictIndex
from fulfillment.services.districts.mock import MockDistrictIndex

logger = logging.getLogger(__name__)


@lru_cache()
def get_district_index() -> BaseDistrictIndex:
    """
    Get the configured district index instance.

    Returns:
        BaseDistrictIndex: MockDistrictIndex or DatabaseDistrictIndex
    """
    settings = get_settings()

    if settings.district_index_provider == "mock":
        logger.info("District Index: Using MockDistrictIndex")
        return MockDistrictIndex()

    from fulfillment.database import async_session_maker

    logger.info("District Index: Using DatabaseDistrictIndex")
    return DatabaseDistrictIndex(async_session_maker)


__all__ = [
    "get_district_index",
    "BaseDistrictIndex",
    "DistrictIndexUnavailable",
    "DatabaseDistrictIndex",
    "MockDistrictIndex",
]
