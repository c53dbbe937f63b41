"""
SQLAlchemy Database Models

Fulfillment domain:
- Orders with per-restaurant sub-orders and embedded delivery zones
- District hubs and their pending order queue
- Drones with battery / charging sub-state
- Restaurant registry records (district lookup)

Hub membership is derived from ``Drone.assigned_hub_id`` alone; there is
no second copy of the association on the hub row.
"""

import enum
from types import MappingProxyType
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Enum,
    Boolean,
    JSON,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from fulfillment.database import Base


class FulfillmentStatus(str, enum.Enum):
    """Preparation status of one restaurant, and of the order as a whole."""
    FOOD_PROCESSING = "Food Processing"
    PREPARING = "Preparing"
    READY_FOR_PICKUP = "Ready for Pickup"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"


class HubStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class PendingOrderStatus(str, enum.Enum):
    WAITING = "waiting"
    READY_FOR_DISPATCH = "ready_for_dispatch"
    DISPATCHED = "dispatched"


class DroneStatus(str, enum.Enum):
    """Drone availability. ``busy`` is accepted as an alias of ``delivering``."""
    AVAILABLE = "available"
    DELIVERING = "delivering"
    CHARGING = "charging"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            if value == "busy":
                return cls.DELIVERING
            for member in cls:
                if member.value == value:
                    return member
        return None


# =============================================================================
# RESTAURANT REGISTRY
# =============================================================================

class Restaurant(Base):
    """
    Restaurant registry record.

    Owned by the restaurant management side of the platform; this service
    only reads it to place restaurants in districts.
    """
    __tablename__ = "restaurants"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    district = Column(String(100), nullable=True, index=True)
    city = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Restaurant {self.id} - {self.name} - {self.district}>"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    Customer order spanning one or more restaurants.

    Per-restaurant status, amount and items live in ``OrderRestaurant`` rows,
    created once at placement. Delivery zones are an embedded JSON list.
    """
    __tablename__ = "orders"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    customer_id = Column(String(64), nullable=False, index=True)

    # =========================================================================
    # CART & DELIVERY
    # =========================================================================
    items = Column(JSON, nullable=False)
    amount = Column(Float, nullable=False)
    address = Column(JSON, nullable=False)

    # =========================================================================
    # STATUS & PAYMENT
    # =========================================================================
    status = Column(
        Enum(FulfillmentStatus),
        default=FulfillmentStatus.FOOD_PROCESSING,
        nullable=False,
        index=True
    )
    payment = Column(Boolean, default=False, nullable=False)
    cod = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # ZONING
    # =========================================================================
    delivery_zones = Column(JSON, nullable=False, default=list)
    zones_degraded_reason = Column(String(100), nullable=True)

    # Set once, when the customer is first told the order was delivered
    delivered_notified_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    restaurants = relationship(
        "OrderRestaurant",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderRestaurant.id",
    )

    @property
    def restaurant_ids(self) -> list[str]:
        return [entry.restaurant_id for entry in self.restaurants]

    @property
    def restaurant_status(self) -> MappingProxyType:
        """Read-only view: restaurant id -> FulfillmentStatus."""
        return MappingProxyType({e.restaurant_id: e.status for e in self.restaurants})

    @property
    def restaurant_amounts(self) -> MappingProxyType:
        return MappingProxyType({e.restaurant_id: e.amount for e in self.restaurants})

    @property
    def restaurant_items(self) -> MappingProxyType:
        return MappingProxyType({e.restaurant_id: e.items for e in self.restaurants})

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "items": self.items,
            "amount": self.amount,
            "address": self.address,
            "status": self.status.value,
            "payment": self.payment,
            "cod": self.cod,
            "restaurant_ids": self.restaurant_ids,
            "restaurant_status": {k: v.value for k, v in self.restaurant_status.items()},
            "restaurant_amounts": dict(self.restaurant_amounts),
            "restaurant_items": dict(self.restaurant_items),
            "delivery_zones": self.delivery_zones,
            "zones_degraded_reason": self.zones_degraded_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order #{self.id} - {self.customer_id} - {self.status.value}>"


class OrderRestaurant(Base):
    """One participating restaurant of an order: its status, subtotal and items."""
    __tablename__ = "order_restaurants"
    __table_args__ = (
        UniqueConstraint("order_id", "restaurant_id", name="uq_order_restaurant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    restaurant_id = Column(String(64), nullable=False, index=True)
    status = Column(
        Enum(FulfillmentStatus),
        default=FulfillmentStatus.FOOD_PROCESSING,
        nullable=False
    )
    amount = Column(Float, nullable=False)
    items = Column(JSON, nullable=False)

    order = relationship("Order", back_populates="restaurants")


# =============================================================================
# HUBS
# =============================================================================

class Hub(Base):
    """District dispatch point with finite drone and order capacity."""
    __tablename__ = "hubs"
    __table_args__ = (
        Index("ix_hubs_district_status", "district", "status"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    hub_code = Column(String(32), nullable=False, unique=True)
    name = Column(String(100), nullable=False)

    # Location
    address = Column(String(255), nullable=False)
    district = Column(String(100), nullable=False)
    city = Column(String(100), default="Ho Chi Minh City")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    status = Column(Enum(HubStatus), default=HubStatus.ACTIVE, nullable=False)

    # Capacity
    max_drones = Column(Integer, nullable=False, default=20)
    max_orders = Column(Integer, nullable=False, default=100)

    # Operating hours ("HH:MM")
    open_time = Column(String(5), default="06:00")
    close_time = Column(String(5), default="23:00")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    pending_orders = relationship(
        "HubPendingOrder",
        back_populates="hub",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="HubPendingOrder.id",
    )

    @property
    def open_pending_orders(self) -> list:
        return [p for p in self.pending_orders if p.status != PendingOrderStatus.DISPATCHED]

    def to_dict(self, assigned_drones: Optional[list[int]] = None) -> dict:
        data = {
            "id": self.id,
            "hub_code": self.hub_code,
            "name": self.name,
            "location": {
                "address": self.address,
                "district": self.district,
                "city": self.city,
                "latitude": self.latitude,
                "longitude": self.longitude,
            },
            "status": self.status.value,
            "capacity": {
                "max_drones": self.max_drones,
                "max_orders": self.max_orders,
            },
            "operating_hours": {
                "open": self.open_time,
                "close": self.close_time,
            },
            "pending_orders": [p.to_dict() for p in self.pending_orders],
        }
        if assigned_drones is not None:
            data["assigned_drones"] = assigned_drones
        return data

    def __repr__(self):
        return f"<Hub {self.hub_code} - {self.district} - {self.status.value}>"


class HubPendingOrder(Base):
    """An order zone routed through a hub, waiting to be dispatched."""
    __tablename__ = "hub_pending_orders"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    hub_id = Column(
        Integer,
        ForeignKey("hubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    restaurant_ids = Column(JSON, nullable=False, default=list)
    status = Column(
        Enum(PendingOrderStatus),
        default=PendingOrderStatus.WAITING,
        nullable=False
    )
    arrived_at = Column(DateTime(timezone=True), server_default=func.now())
    dispatched_at = Column(DateTime(timezone=True), nullable=True)

    hub = relationship("Hub", back_populates="pending_orders")

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "restaurant_ids": self.restaurant_ids,
            "status": self.status.value,
            "arrived_at": self.arrived_at.isoformat() if self.arrived_at else None,
            "dispatched_at": self.dispatched_at.isoformat() if self.dispatched_at else None,
        }


# =============================================================================
# DRONES
# =============================================================================

class Drone(Base):
    """
    One delivery drone.

    Invariants kept by the lifecycle rules:
        - current_order_id is set only while status is DELIVERING
        - is_charging is True only while status is CHARGING
    """
    __tablename__ = "drones"
    __table_args__ = (
        Index("ix_drones_status_restaurant", "status", "assigned_restaurant_id"),
        Index("ix_drones_hub_status", "assigned_hub_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    drone_code = Column(String(32), nullable=False, unique=True)
    status = Column(Enum(DroneStatus), default=DroneStatus.AVAILABLE, nullable=False)

    # Current location
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_address = Column(String(255), nullable=True)
    location_district = Column(String(100), nullable=True)

    # Capacity
    max_weight = Column(Float, nullable=False, default=5.0)  # kg
    max_items = Column(Integer, nullable=False, default=10)

    # Assignments
    assigned_restaurant_id = Column(String(64), nullable=True)
    assigned_hub_id = Column(
        Integer,
        ForeignKey("hubs.id"),
        nullable=True
    )
    current_order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True
    )

    # Battery
    battery_level = Column(Float, nullable=False, default=100.0)
    is_charging = Column(Boolean, nullable=False, default=False)
    charging_started_at = Column(DateTime(timezone=True), nullable=True)
    estimated_full_charge_at = Column(DateTime(timezone=True), nullable=True)
    charging_rate = Column(Float, nullable=False, default=2.0)  # percent per minute

    # Specifications
    model = Column(String(50), default="DroneX-1000")
    speed_kmh = Column(Float, default=60.0)
    range_km = Column(Float, default=20.0)

    total_deliveries = Column(Integer, nullable=False, default=0)
    last_maintenance_date = Column(DateTime(timezone=True), server_default=func.now())
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "drone_code": self.drone_code,
            "status": self.status.value,
            "current_location": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "address": self.location_address,
                "district": self.location_district,
            },
            "capacity": {
                "max_weight": self.max_weight,
                "max_items": self.max_items,
            },
            "assigned_restaurant_id": self.assigned_restaurant_id,
            "assigned_hub_id": self.assigned_hub_id,
            "current_order_id": self.current_order_id,
            "battery": {
                "level": self.battery_level,
                "is_charging": self.is_charging,
                "charging_started_at": _iso(self.charging_started_at),
                "estimated_full_charge_at": _iso(self.estimated_full_charge_at),
                "charging_rate": self.charging_rate,
            },
            "specifications": {
                "model": self.model,
                "speed": self.speed_kmh,
                "range": self.range_km,
            },
            "total_deliveries": self.total_deliveries,
        }

    def __repr__(self):
        return f"<Drone {self.drone_code} - {self.status.value} - {self.battery_level:.0f}%>"
