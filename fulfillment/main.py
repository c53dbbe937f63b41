"""
FastAPI Application Entry Point

Multi-Restaurant Drone Fulfillment Service
Supports both Mock collaborators (development) and Real providers (production).

Endpoints:
    - /api/orders: checkout, payment verification, order queries, admin override
    - /api/restaurant: restaurant-scoped orders, status updates and drones
    - /api/hubs: hub registry, drone membership and statistics
    - /api/drones: drone registry, status, dispatch and delivery
    - GET /health: System health check
    - GET /metrics: Prometheus request metrics
"""

import asyncio
import sys
import logging
from datetime import datetime
from typing import Any, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Query, Request, Header
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import redis

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from fulfillment.core.config import get_settings, setup_logging
from fulfillment.core.metrics import metrics_middleware, metrics_response
from fulfillment.core.exceptions import FulfillmentError, NotFound
from fulfillment.database import get_db, init_db, engine
from fulfillment.schemas import (
    ApiResponse,
    DroneCreate,
    DroneDispatch,
    DroneRestaurantAssign,
    DroneStatusUpdate,
    DroneUpdate,
    ErrorResponse,
    HealthResponse,
    HubCreate,
    HubDroneAssign,
    HubUpdate,
    OrderCreate,
    OrderCreateResponse,
    OrderStatusOverride,
    PaymentVerify,
    RestaurantStatusUpdate,
)
from fulfillment.services.districts import get_district_index
from fulfillment.services.drones import DroneService, get_drone_service
from fulfillment.services.hubs import HubService, get_hub_service
from fulfillment.services.notifications import get_notification_service
from fulfillment.services.orders import OrderService, get_order_service

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Initialize database
    await init_db()
    logger.info("✅ Database initialized")

    # Log collaborator configuration
    logger.info(f"✅ District Index: {get_district_index().provider_name}")
    logger.info(f"✅ Notification Service: {get_notification_service().provider_name}")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Splits multi-restaurant checkouts into district delivery zones, routes "
        "them through drone hubs and tracks per-restaurant fulfillment."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_domain] if settings.is_production else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.metrics_enabled:
    app.middleware("http")(metrics_middleware)


def ok(data: Any = None, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(success=True, message=message, data=data)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    if not settings.metrics_enabled:
        raise NotFound("Metrics are disabled")
    return metrics_response()


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify all system components are operational."""

    # Check database
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    # Check Redis
    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    index_status = "healthy" if await get_district_index().health_check() else "unhealthy"
    notify_status = "healthy" if await get_notification_service().health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, index_status, notify_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        district_index=index_status,
        notification_service=notify_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Place Order",
)
async def place_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> OrderCreateResponse:
    """
    Place a checkout spanning one or more restaurants.

    The cart is split per restaurant and grouped into district delivery
    zones, each routed to a hub with a recommended drone count. Returns the
    checkout URL the client should redirect to.
    """
    placed = await orders.place_order(
        db,
        customer_id=order_data.customer_id,
        items=[item.model_dump() for item in order_data.items],
        address=order_data.address.model_dump(),
        cod=order_data.cod,
    )
    return OrderCreateResponse(
        order_id=placed.order.id,
        amount=placed.order.amount,
        checkout_url=placed.checkout_url,
        zones=[zone.to_dict() for zone in placed.zones],
        degraded_reason=placed.degraded_reason,
    )


@app.post("/api/orders/verify", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Orders"])
async def verify_payment(
    body: PaymentVerify,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Confirm or discard an order after checkout."""
    result = await orders.verify_payment(db, body.order_id, body.success)
    return ApiResponse(success=result.success, message=result.message, data={"order_id": result.order_id})


@app.get("/api/orders", response_model=ApiResponse, tags=["Orders"])
async def list_orders(
    include_unpaid: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Admin order list, paid orders only unless ``include_unpaid``."""
    result = await orders.list_orders(db, paid_only=not include_unpaid)
    return ok([o.to_dict() for o in result])


@app.get("/api/orders/customer/{customer_id}", response_model=ApiResponse, tags=["Orders"])
async def customer_orders(
    customer_id: str,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    result = await orders.customer_orders(db, customer_id)
    return ok([o.to_dict() for o in result])


@app.get("/api/orders/{order_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Orders"])
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    order = await orders.get_order(db, order_id)
    return ok(order.to_dict())


@app.get(
    "/api/orders/{order_id}/delivery-zones",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def delivery_zones(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Delivery zones of an order with district, hub and drone totals."""
    return ok(await orders.get_delivery_zones(db, order_id))


@app.post(
    "/api/orders/{order_id}/status",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def override_order_status(
    order_id: int,
    body: OrderStatusOverride,
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Admin override: apply a status to every restaurant of the order."""
    order = await orders.override_status(db, order_id, body.status)
    return ok(order.to_dict(), "Status Updated")


# =============================================================================
# RESTAURANT API ENDPOINTS
# =============================================================================

@app.get("/api/restaurant/orders", response_model=ApiResponse, tags=["Restaurant"])
async def restaurant_orders(
    restaurant_id: str = Header(..., alias="X-Restaurant-Id"),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Orders that include the calling restaurant."""
    result = await orders.restaurant_orders(db, restaurant_id)
    return ok([o.to_dict() for o in result])


@app.post(
    "/api/restaurant/orders/status",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Restaurant"],
)
async def update_restaurant_status(
    body: RestaurantStatusUpdate,
    restaurant_id: str = Header(..., alias="X-Restaurant-Id"),
    db: AsyncSession = Depends(get_db),
    orders: OrderService = Depends(get_order_service),
) -> ApiResponse:
    """Set the calling restaurant's status on an order."""
    order = await orders.update_restaurant_status(db, body.order_id, restaurant_id, body.status)
    return ok(order.to_dict(), "Status Updated")


@app.get("/api/restaurant/drones", response_model=ApiResponse, tags=["Restaurant"])
async def restaurant_drones(
    restaurant_id: str = Header(..., alias="X-Restaurant-Id"),
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    result = await drones.restaurant_drones(db, restaurant_id)
    return ok([d.to_dict() for d in result])


# =============================================================================
# HUB API ENDPOINTS
# =============================================================================

@app.get("/api/hubs", response_model=ApiResponse, tags=["Hubs"])
async def list_hubs(
    district: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.list_hubs(db, district=district, status=status))


@app.post("/api/hubs", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Hubs"])
async def create_hub(
    body: HubCreate,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.create_hub(db, body.model_dump()), "Hub created successfully.")


@app.get("/api/hubs/stats", response_model=ApiResponse, tags=["Hubs"])
async def hub_stats(
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.stats(db))


@app.get("/api/hubs/{hub_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Hubs"])
async def get_hub(
    hub_id: int,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.get_hub(db, hub_id))


@app.put("/api/hubs/{hub_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Hubs"])
async def update_hub(
    hub_id: int,
    body: HubUpdate,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    changes = body.model_dump(exclude_unset=True)
    return ok(await hubs.update_hub(db, hub_id, changes), "Hub updated successfully.")


@app.delete("/api/hubs/{hub_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Hubs"])
async def delete_hub(
    hub_id: int,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    await hubs.delete_hub(db, hub_id)
    return ok(message="Hub deleted successfully.")


@app.post("/api/hubs/{hub_id}/drones", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Hubs"])
async def assign_drone_to_hub(
    hub_id: int,
    body: HubDroneAssign,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.assign_drone(db, hub_id, body.drone_id), "Drone assigned to hub successfully.")


@app.delete(
    "/api/hubs/{hub_id}/drones/{drone_id}",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Hubs"],
)
async def unassign_drone_from_hub(
    hub_id: int,
    drone_id: int,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    return ok(await hubs.unassign_drone(db, hub_id, drone_id), "Drone unassigned from hub successfully.")


@app.get(
    "/api/hubs/{hub_id}/available-drones",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Hubs"],
)
async def drones_for_hub(
    hub_id: int,
    db: AsyncSession = Depends(get_db),
    hubs: HubService = Depends(get_hub_service),
) -> ApiResponse:
    """Drones that may join the hub: unassigned or already members, available or charging."""
    result = await hubs.available_drones_for_hub(db, hub_id)
    return ok([d.to_dict() for d in result])


# =============================================================================
# DRONE API ENDPOINTS
# =============================================================================

@app.get("/api/drones", response_model=ApiResponse, tags=["Drones"])
async def list_drones(
    status: Optional[str] = Query(None),
    hub_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    result = await drones.list_drones(db, status=status, hub_id=hub_id)
    return ok([d.to_dict() for d in result])


@app.post("/api/drones", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Drones"])
async def create_drone(
    body: DroneCreate,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.create_drone(db, body.model_dump())
    return ok(drone.to_dict(), "Drone added successfully.")


@app.get("/api/drones/available", response_model=ApiResponse, tags=["Drones"])
async def available_drones(
    restaurant_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    """Available drones with enough battery to dispatch."""
    result = await drones.available_drones(db, restaurant_id=restaurant_id)
    return ok([d.to_dict() for d in result])


@app.get("/api/drones/{drone_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Drones"])
async def get_drone(
    drone_id: int,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    return ok((await drones.get_drone(db, drone_id)).to_dict())


@app.put("/api/drones/{drone_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Drones"])
async def update_drone(
    drone_id: int,
    body: DroneUpdate,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.update_drone(db, drone_id, body.model_dump(exclude_unset=True))
    return ok(drone.to_dict(), "Drone updated successfully.")


@app.delete("/api/drones/{drone_id}", response_model=ApiResponse, responses=ERROR_RESPONSES, tags=["Drones"])
async def delete_drone(
    drone_id: int,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    await drones.delete_drone(db, drone_id)
    return ok(message="Drone removed successfully.")


@app.put(
    "/api/drones/{drone_id}/status",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Drones"],
)
async def update_drone_status(
    drone_id: int,
    body: DroneStatusUpdate,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    """Change drone status. Moving to charging returns the charge estimate."""
    location = body.current_location.model_dump(exclude_none=True) if body.current_location else None
    drone, estimate = await drones.update_status(
        db,
        drone_id,
        body.status,
        battery_level=body.battery_level,
        location=location,
    )
    data = drone.to_dict()
    if estimate:
        data["charging_estimate"] = estimate.to_dict()
    return ok(data, "Drone status updated.")


@app.post(
    "/api/drones/{drone_id}/restaurant",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Drones"],
)
async def assign_drone_to_restaurant(
    drone_id: int,
    body: DroneRestaurantAssign,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.assign_restaurant(db, drone_id, body.restaurant_id)
    return ok(drone.to_dict(), "Drone assigned to restaurant.")


@app.delete(
    "/api/drones/{drone_id}/restaurant",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Drones"],
)
async def unassign_drone_from_restaurant(
    drone_id: int,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.unassign_restaurant(db, drone_id)
    return ok(drone.to_dict(), "Drone released from restaurant.")


@app.post(
    "/api/drones/{drone_id}/dispatch",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Drones"],
)
async def dispatch_drone(
    drone_id: int,
    body: DroneDispatch,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.dispatch(db, drone_id, body.order_id)
    return ok(drone.to_dict(), "Drone dispatched.")


@app.post(
    "/api/drones/{drone_id}/complete",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
    tags=["Drones"],
)
async def complete_delivery(
    drone_id: int,
    db: AsyncSession = Depends(get_db),
    drones: DroneService = Depends(get_drone_service),
) -> ApiResponse:
    drone = await drones.complete_delivery(db, drone_id)
    return ok(drone.to_dict(), "Delivery completed.")


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    """Render domain errors with their own status code."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "message": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("fulfillment.main:app", host=settings.api_host, port=settings.api_port, reload=settings.debug)
