from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import fulfillment.models  # noqa: F401
from fulfillment import tasks
from fulfillment.core.config import Settings
from fulfillment.database import Base
from fulfillment.models import Restaurant
from fulfillment.services.districts import MockDistrictIndex
from fulfillment.services.hubs import HubResolver, HubService
from fulfillment.services.drones import DroneService
from fulfillment.services.orders import OrderService

DISTRICTS = {
    "rest_a": "District 1",
    "rest_b": "District 3",
    "rest_c": "District 7",
}


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, env_mode="development", registry_timeout_seconds=1.0)


@pytest.fixture
async def engine(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def dispatched(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict[str, Any]]]:
    """Capture queued notification tasks instead of talking to the broker."""
    calls: list[tuple[str, dict[str, Any]]] = []

    def fake_dispatch(task, payload):
        calls.append((task.name, payload))
        return True

    monkeypatch.setattr(tasks, "dispatch", fake_dispatch)
    return calls


@pytest.fixture
def hub_service(settings: Settings) -> HubService:
    return HubService(settings)


@pytest.fixture
def drone_service(settings: Settings) -> DroneService:
    return DroneService(settings)


@pytest.fixture
def district_index() -> MockDistrictIndex:
    return MockDistrictIndex(DISTRICTS)


@pytest.fixture
def order_service(session_maker, district_index, settings: Settings) -> OrderService:
    resolver = HubResolver(session_maker, timeout=settings.registry_timeout_seconds)
    return OrderService(district_index, resolver, settings=settings)


@pytest.fixture
async def restaurants(session):
    for rid, district in DISTRICTS.items():
        session.add(Restaurant(id=rid, name=f"Kitchen {rid}", district=district, is_active=True))
    await session.commit()
    return list(DISTRICTS)


def hub_payload(code: str, district: str, **extra) -> dict[str, Any]:
    data = {
        "hub_code": code,
        "name": f"{district} Hub",
        "address": f"1 Main Street, {district}",
        "district": district,
    }
    data.update(extra)
    return data


def cart_item(food_id: str, price: float, quantity: int, restaurant_id=None) -> dict[str, Any]:
    return {
        "food_id": food_id,
        "name": food_id.title(),
        "price": price,
        "quantity": quantity,
        "restaurant_id": restaurant_id,
    }


ADDRESS = {
    "name": "Linh",
    "email": "linh@example.com",
    "phone": "0901234567",
    "street": "12 Nguyen Hue",
    "city": "Ho Chi Minh City",
}
