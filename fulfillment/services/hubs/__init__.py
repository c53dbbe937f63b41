"""
Hub registry and zone-to-hub resolution.
"""

from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.hubs.resolver import (
    HubResolution,
    HubResolver,
    UNRESOLVED_LOOKUP_FAILED,
    UNRESOLVED_LOOKUP_TIMEOUT,
    UNRESOLVED_NO_ACTIVE_HUB,
)
from fulfillment.services.hubs.service import HubService


@lru_cache()
def get_hub_service() -> HubService:
    return HubService(get_settings())


@lru_cache()
def get_hub_resolver() -> HubResolver:
    from fulfillment.database import async_session_maker

    return HubResolver(async_session_maker, timeout=get_settings().registry_timeout_seconds)


__all__ = [
    "get_hub_service",
    "get_hub_resolver",
    "HubService",
    "HubResolver",
    "HubResolution",
    "UNRESOLVED_NO_ACTIVE_HUB",
    "UNRESOLVED_LOOKUP_FAILED",
    "UNRESOLVED_LOOKUP_TIMEOUT",
]
