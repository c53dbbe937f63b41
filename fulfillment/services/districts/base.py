"""
District Index Abstract Base Class

Defines the interface for resolving restaurant ids to the district they
operate in. Both MockDistrictIndex and DatabaseDistrictIndex implement it.

Use Cases:
    - Grouping a multi-restaurant order into delivery zones
    - Picking the district hub that will dispatch a zone
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from fulfillment.core.exceptions import DependencyUnavailable


class DistrictIndexUnavailable(DependencyUnavailable):
    """The restaurant registry could not be reached."""


class BaseDistrictIndex(ABC):
    """
    Abstract base class for district lookups.

    Example:
        >>> index = get_district_index()
        >>> await index.lookup_districts(["rest1", "rest2"])
        {'rest1': 'District 1', 'rest2': None}
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the lookup backend.

        Returns:
            str: Provider name (e.g., "mock", "database")
        """
        pass

    @abstractmethod
    async def lookup_districts(
        self,
        restaurant_ids: Iterable[str],
    ) -> dict[str, Optional[str]]:
        """
        Resolve each restaurant id to its district.

        Unknown restaurants, and restaurants with no district on record,
        map to None.

        Args:
            restaurant_ids: Restaurant identifiers to resolve

        Returns:
            dict: restaurant id -> district name or None

        Raises:
            DistrictIndexUnavailable: If the registry cannot be queried
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the registry.

        Returns:
            bool: True if lookups can be served
        """
        pass
