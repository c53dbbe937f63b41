"""
Pydantic Schemas for Request/Response Validation

Request bodies for checkout, restaurant status updates, and the hub and
drone registries, plus the common response envelope.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Any
from datetime import datetime
import re

HH_MM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class CartItem(BaseModel):
    """Single cart line. ``restaurant_id`` is absent on legacy carts."""
    food_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("food_id", "id"),
        examples=["food_42"],
    )
    name: Optional[str] = Field(None, max_length=100, examples=["Pho Bo"])
    price: float = Field(..., ge=0, examples=[55000])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    restaurant_id: Optional[str] = Field(None, examples=["rest1"])


class DeliveryAddress(BaseModel):
    """Delivery address and contact. Extra fields are kept as given."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = None
    phone: Optional[str] = Field(None, max_length=20)
    street: str = Field(..., min_length=1, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    district: Optional[str] = Field(None, max_length=100)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not re.match(r'^[\w\.+-]+@[\w\.-]+\.\w+$', v):
            raise ValueError('Invalid email format')
        return v


class OrderCreate(BaseModel):
    """Checkout request. The total is computed server-side."""
    customer_id: str = Field(..., min_length=1)
    items: List[CartItem] = Field(..., min_length=1)
    address: DeliveryAddress
    cod: bool = False


class OrderCreateResponse(BaseModel):
    success: bool = True
    order_id: int
    amount: float
    checkout_url: str
    zones: List[dict[str, Any]]
    degraded_reason: Optional[str] = None


class PaymentVerify(BaseModel):
    """Checkout outcome: "true" (paid), "ok" (cash on delivery), anything else fails."""
    order_id: int
    success: str


class RestaurantStatusUpdate(BaseModel):
    order_id: int
    status: str = Field(..., examples=["Out for Delivery"])


class OrderStatusOverride(BaseModel):
    status: str = Field(..., examples=["Delivered"])


# =============================================================================
# HUB SCHEMAS
# =============================================================================

class _OperatingHours(BaseModel):
    @field_validator('open_time', 'close_time', check_fields=False)
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not HH_MM.match(v):
            raise ValueError('Time must be HH:MM')
        return v


class HubCreate(_OperatingHours):
    hub_code: str = Field(..., min_length=1, max_length=32, examples=["HUB-D1"])
    name: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1, max_length=255)
    district: str = Field(..., min_length=1, max_length=100, examples=["District 1"])
    city: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    status: Optional[str] = Field(None, examples=["active"])
    max_drones: Optional[int] = Field(None, ge=1)
    max_orders: Optional[int] = Field(None, ge=1)
    open_time: Optional[str] = Field(None, examples=["06:00"])
    close_time: Optional[str] = Field(None, examples=["23:00"])


class HubUpdate(_OperatingHours):
    hub_code: Optional[str] = Field(None, min_length=1, max_length=32)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[str] = Field(None, min_length=1, max_length=255)
    district: Optional[str] = Field(None, min_length=1, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    status: Optional[str] = None
    max_drones: Optional[int] = Field(None, ge=1)
    max_orders: Optional[int] = Field(None, ge=1)
    open_time: Optional[str] = None
    close_time: Optional[str] = None


class HubDroneAssign(BaseModel):
    drone_id: int


# =============================================================================
# DRONE SCHEMAS
# =============================================================================

class DroneLocation(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = Field(None, max_length=255)
    district: Optional[str] = Field(None, max_length=100)


class DroneCreate(BaseModel):
    drone_code: str = Field(..., min_length=1, max_length=32, examples=["DRONE-001"])
    assigned_restaurant_id: Optional[str] = None
    max_weight: Optional[float] = Field(None, gt=0)
    max_items: Optional[int] = Field(None, ge=1)
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    charging_rate: Optional[float] = Field(None, gt=0)
    model: Optional[str] = Field(None, max_length=50)
    speed_kmh: Optional[float] = Field(None, gt=0)
    range_km: Optional[float] = Field(None, gt=0)
    location: Optional[DroneLocation] = None


class DroneUpdate(BaseModel):
    drone_code: Optional[str] = Field(None, min_length=1, max_length=32)
    max_weight: Optional[float] = Field(None, gt=0)
    max_items: Optional[int] = Field(None, ge=1)
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    charging_rate: Optional[float] = Field(None, gt=0)
    model: Optional[str] = Field(None, max_length=50)
    speed_kmh: Optional[float] = Field(None, gt=0)
    range_km: Optional[float] = Field(None, gt=0)


class DroneStatusUpdate(BaseModel):
    status: str = Field(..., examples=["charging"])
    battery_level: Optional[float] = Field(None, ge=0, le=100)
    current_location: Optional[DroneLocation] = None


class DroneRestaurantAssign(BaseModel):
    restaurant_id: str = Field(..., min_length=1)


class DroneDispatch(BaseModel):
    order_id: int


# =============================================================================
# COMMON RESPONSES
# =============================================================================

class ApiResponse(BaseModel):
    """Standard success envelope."""
    success: bool = True
    message: Optional[str] = None
    data: Any = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    district_index: str
    notification_service: str
    timestamp: datetime
