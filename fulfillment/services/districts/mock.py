"""
Mock District Index

Resolves districts from an in-memory mapping without touching a registry.
Used for local simulation (DISTRICT_INDEX_PROVIDER=mock) and in tests.

Behavior:
    - Static restaurant id -> district mapping
    - Optional simulated latency
    - Optional random failure rate for exercising degraded placement
"""

import asyncio
import logging
import random
from typing import Iterable, Mapping, Optional

from fulfillment.services.districts.base import (
    BaseDistrictIndex,
    DistrictIndexUnavailable,
)

logger = logging.getLogger(__name__)

# Sample districts in Ho Chi Minh City
DEFAULT_DISTRICTS = {
    "rest1_district1": "District 1",
    "rest2_district1": "District 1",
    "rest2_district3": "District 3",
    "rest3_district7": "District 7",
}


class MockDistrictIndex(BaseDistrictIndex):
    """
    In-memory district index.

    Attributes:
        districts: restaurant id -> district
        failure_rate: Probability of a simulated registry outage (0.0-1.0)
        latency: Seconds to sleep per lookup
    """

    def __init__(
        self,
        districts: Optional[Mapping[str, Optional[str]]] = None,
        failure_rate: float = 0.0,
        latency: float = 0.0,
    ):
        self.districts = dict(DEFAULT_DISTRICTS if districts is None else districts)
        self.failure_rate = failure_rate
        self.latency = latency
        self.calls = 0

        logger.info(
            f"MockDistrictIndex initialized "
            f"({len(self.districts)} restaurants, failure_rate={failure_rate:.0%})"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def lookup_districts(
        self,
        restaurant_ids: Iterable[str],
    ) -> dict[str, Optional[str]]:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        if self.failure_rate and random.random() < self.failure_rate:
            logger.debug("Mock: Simulated registry outage")
            raise DistrictIndexUnavailable("Restaurant registry temporarily unavailable")

        return {rid: self.districts.get(rid) for rid in restaurant_ids}

    async def health_check(self) -> bool:
        return True
