"""
Benefit Microservice API

Benefit eligibility and redemption engine for members of associations
and their affiliated businesses.
"""

import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.config import get_settings
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .benefit_repository import BenefitRepository
from .benefit_service import BenefitService
from .factory import create_benefit_service
from .models import (
    AccessMode,
    AvailableAssociation,
    Benefit,
    BenefitFilter,
    BenefitListResponse,
    BenefitUpdate,
    CatalogResponse,
    CounterResyncResponse,
    CreateBenefitRequest,
    ExpirySweepResponse,
    HealthResponse,
    MemberIdentity,
    RedeemBenefitRequest,
    RedemptionHistoryResponse,
    RedemptionResponse,
    ServiceInfo,
    SetBenefitStateRequest,
    StatsScope,
    StatsSummary,
)
from .protocols import (
    BenefitAccessDeniedError,
    BenefitCapReachedError,
    BenefitExpiredError,
    BenefitNotStartedError,
    BenefitServiceError,
    BenefitStorageError,
    BenefitUnavailableError,
    BenefitValidationError,
    BusinessMismatchError,
    ResourceNotFoundError,
)
from .routes_registry import BASE_PATH, SERVICE_METADATA, get_route_summary

settings = get_settings()

# Configure logger
logger = setup_service_logger("benefit_service", config=settings.logging)

# Global variables
benefit_service: Optional[BenefitService] = None
repository: Optional[BenefitRepository] = None
event_bus = None
SERVICE_PORT = settings.benefit.service_port or 8260

# Most specific classes first
ERROR_STATUS_CODES = [
    (ResourceNotFoundError, 404),
    (BenefitExpiredError, 410),
    (BenefitNotStartedError, 409),
    (BenefitCapReachedError, 409),
    (BenefitUnavailableError, 409),
    (BusinessMismatchError, 403),
    (BenefitAccessDeniedError, 403),
    (BenefitValidationError, 422),
    (BenefitStorageError, 503),
]


def to_http_exception(error: BenefitServiceError) -> HTTPException:
    """Map a service error to the matching HTTP status"""
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global benefit_service, repository, event_bus

    try:
        # Initialize NATS JetStream event bus
        if settings.infrastructure.nats_enabled:
            try:
                event_bus = await get_event_bus("benefit_service", config=settings.infrastructure)
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(
                    f"Failed to initialize event bus: {e}. Continuing without event subscriptions."
                )
                event_bus = None

        # Create benefit service using factory
        benefit_service = create_benefit_service(config=settings, event_bus=event_bus)

        # Initialize repository connection
        repository = benefit_service.repository
        await repository.initialize()

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events import subscribe_event_handlers

                subscribed = await subscribe_event_handlers(event_bus, benefit_service)
                logger.info(f"Benefit event subscriber started ({subscribed} event patterns)")
            except Exception as e:
                logger.warning(f"Failed to subscribe to events: {e}")

        logger.info(f"Benefit service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize benefit service: {e}")
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Benefit event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if benefit_service:
            await benefit_service.close()
            logger.info("Benefit service database connections closed")


# Create FastAPI app
app = FastAPI(
    title="Benefit Service",
    description="Benefit eligibility and redemption engine for associations and affiliated businesses",
    version=SERVICE_METADATA["version"],
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_benefit_service() -> BenefitService:
    """Get benefit service instance"""
    if not benefit_service:
        raise HTTPException(status_code=503, detail="Benefit service not initialized")
    return benefit_service


def get_benefit_filter(
    category: Optional[str] = Query(default=None),
    business_id: Optional[str] = Query(default=None),
    access_mode: Optional[AccessMode] = Query(default=None),
    featured_only: bool = Query(default=False),
    search: Optional[str] = Query(default=None),
    new_only: bool = Query(default=False),
    expiring_soon: bool = Query(default=False),
) -> BenefitFilter:
    """Build a BenefitFilter from query parameters"""
    return BenefitFilter(
        category=category,
        business_id=business_id,
        access_mode=access_mode,
        featured_only=featured_only,
        search=search,
        new_only=new_only,
        expiring_soon=expiring_soon,
    )


# ====================
# Health Check and Service Info
# ====================


@app.get(f"{BASE_PATH}/health", response_model=HealthResponse)
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    dependencies = {}

    if repository and repository.db:
        is_healthy = await repository.db.health_check()
        dependencies["database"] = "healthy" if is_healthy else "unhealthy"
    else:
        dependencies["database"] = "unhealthy"

    if event_bus is not None:
        dependencies["event_bus"] = "healthy" if event_bus.is_connected else "unhealthy"

    return HealthResponse(
        status="healthy" if all(v == "healthy" for v in dependencies.values()) else "degraded",
        service=SERVICE_METADATA["service_name"],
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        dependencies=dependencies,
    )


@app.get(f"{BASE_PATH}/info", response_model=ServiceInfo)
async def get_service_info():
    """Get service information"""
    return ServiceInfo(
        service=SERVICE_METADATA["service_name"],
        version=SERVICE_METADATA["version"],
        description="Benefit eligibility and redemption engine for associations and affiliated businesses",
        capabilities=SERVICE_METADATA["capabilities"],
        routes=get_route_summary(),
    )


# ====================
# Member-facing API
# ====================


@app.get(f"{BASE_PATH}/available", response_model=BenefitListResponse)
async def list_available_benefits(
    member_id: str = Query(...),
    association_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    benefit_filter: BenefitFilter = Depends(get_benefit_filter),
    service: BenefitService = Depends(get_benefit_service),
):
    """Benefits a member may currently use"""
    try:
        benefits = await service.list_available_benefits(member_id, association_id, benefit_filter, limit)
        return BenefitListResponse(benefits=benefits, count=len(benefits))
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/catalog", response_model=CatalogResponse)
async def list_catalog_entries(
    member_id: str = Query(...),
    association_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    benefit_filter: BenefitFilter = Depends(get_benefit_filter),
    service: BenefitService = Depends(get_benefit_service),
):
    """Available benefits tagged with the source that surfaced them"""
    try:
        entries = await service.list_available_entries(member_id, association_id, benefit_filter, limit)
        return CatalogResponse(entries=entries, count=len(entries))
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/members/{{member_id}}/history", response_model=RedemptionHistoryResponse)
async def get_redemption_history(
    member_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    service: BenefitService = Depends(get_benefit_service),
):
    """Member redemption history, newest first"""
    try:
        redemptions = await service.get_redemption_history(member_id, limit)
        return RedemptionHistoryResponse(redemptions=redemptions, count=len(redemptions))
    except BenefitServiceError as e:
        raise to_http_exception(e)


# ====================
# Discovery API
# ====================


@app.get(f"{BASE_PATH}/search", response_model=BenefitListResponse)
async def search_benefits(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=20, ge=1, le=100),
    benefit_filter: BenefitFilter = Depends(get_benefit_filter),
    service: BenefitService = Depends(get_benefit_service),
):
    """Search active benefits"""
    try:
        benefits = await service.search_benefits(q, benefit_filter, limit)
        return BenefitListResponse(benefits=benefits, count=len(benefits))
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/categories", response_model=List[str])
async def get_categories(service: BenefitService = Depends(get_benefit_service)):
    """Categories in use"""
    try:
        return await service.get_categories()
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/stats", response_model=StatsSummary)
async def get_statistics(
    business_id: Optional[str] = Query(default=None),
    association_id: Optional[str] = Query(default=None),
    member_id: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    service: BenefitService = Depends(get_benefit_service),
):
    """Benefit statistics for a business, association or member"""
    try:
        scope = StatsScope(
            business_id=business_id,
            association_id=association_id,
            member_id=member_id,
            start=start,
            end=end,
        )
        return await service.get_stats(scope)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/businesses/{{business_id}}", response_model=BenefitListResponse)
async def list_business_benefits(
    business_id: str,
    service: BenefitService = Depends(get_benefit_service),
):
    """All benefits owned by a business"""
    try:
        benefits = await service.list_business_benefits(business_id)
        return BenefitListResponse(benefits=benefits, count=len(benefits))
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/businesses/{{business_id}}/associations", response_model=List[AvailableAssociation])
async def get_available_associations(
    business_id: str,
    service: BenefitService = Depends(get_benefit_service),
):
    """Associations a business can target"""
    try:
        return await service.get_available_associations(business_id)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/associations/{{association_id}}", response_model=BenefitListResponse)
async def list_association_benefits(
    association_id: str,
    service: BenefitService = Depends(get_benefit_service),
):
    """All benefits reachable through an association"""
    try:
        benefits = await service.list_association_benefits(association_id)
        return BenefitListResponse(benefits=benefits, count=len(benefits))
    except BenefitServiceError as e:
        raise to_http_exception(e)


# ====================
# Maintenance API
# ====================


@app.post(f"{BASE_PATH}/maintenance/expire", response_model=ExpirySweepResponse)
async def expire_benefits(service: BenefitService = Depends(get_benefit_service)):
    """Move ended benefits to expired"""
    try:
        return await service.expire_benefits()
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.post(f"{BASE_PATH}/maintenance/counters", response_model=CounterResyncResponse)
async def resynchronize_counters(
    business_id: Optional[str] = Query(default=None),
    service: BenefitService = Depends(get_benefit_service),
):
    """Recompute active benefit counters"""
    try:
        return await service.resynchronize_counters(business_id)
    except BenefitServiceError as e:
        raise to_http_exception(e)


# ====================
# Benefit Management API
# ====================


@app.post(BASE_PATH, response_model=Benefit, status_code=201)
async def create_benefit(
    request: CreateBenefitRequest,
    service: BenefitService = Depends(get_benefit_service),
):
    """Create a benefit"""
    try:
        return await service.create_benefit(request, request.actor_id, request.actor_role)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.get(f"{BASE_PATH}/{{benefit_id}}", response_model=Benefit)
async def get_benefit(
    benefit_id: str,
    service: BenefitService = Depends(get_benefit_service),
):
    """Get benefit by ID"""
    try:
        return await service.get_benefit(benefit_id)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.patch(f"{BASE_PATH}/{{benefit_id}}", response_model=Benefit)
async def update_benefit(
    benefit_id: str,
    request: BenefitUpdate,
    service: BenefitService = Depends(get_benefit_service),
):
    """Partially update a benefit"""
    try:
        return await service.update_benefit(benefit_id, request)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.put(f"{BASE_PATH}/{{benefit_id}}/state", response_model=Benefit)
async def set_benefit_state(
    benefit_id: str,
    request: SetBenefitStateRequest,
    service: BenefitService = Depends(get_benefit_service),
):
    """Set benefit lifecycle state"""
    try:
        return await service.set_benefit_state(benefit_id, request.state)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.post(f"{BASE_PATH}/{{benefit_id}}/deactivate", response_model=Benefit)
async def deactivate_benefit(
    benefit_id: str,
    service: BenefitService = Depends(get_benefit_service),
):
    """Deactivate a benefit"""
    try:
        return await service.deactivate_benefit(benefit_id)
    except BenefitServiceError as e:
        raise to_http_exception(e)


@app.post(f"{BASE_PATH}/{{benefit_id}}/redeem", response_model=RedemptionResponse)
async def redeem_benefit(
    benefit_id: str,
    request: RedeemBenefitRequest,
    service: BenefitService = Depends(get_benefit_service),
):
    """Redeem a benefit for a member"""
    try:
        redemption = await service.redeem_benefit(
            benefit_id=benefit_id,
            member_id=request.member_id,
            identity=MemberIdentity(name=request.member_name, email=request.member_email),
            business_id=request.business_id,
            association_id=request.association_id,
            original_amount=request.original_amount,
        )
        return RedemptionResponse(redemption=redemption)
    except BenefitServiceError as e:
        raise to_http_exception(e)


# ====================
# Error Handling
# ====================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error occurred"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.benefit_service.main:app",
        host=settings.default_host,
        port=SERVICE_PORT,
        reload=settings.debug,
        log_level=settings.logging.log_level.lower(),
    )
