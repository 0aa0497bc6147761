"""Profile router - Public listing endpoint"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ...config import PUBLIC_PROFILES_CACHE_CONTROL, PUBLIC_PROFILES_RPM
from ...rate_limiter import create_rate_limiter
from .schemas import ErrorResponse, PublicProfilesResponse
from .service import PublicProfileService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profiles", tags=["Profiles"])

# Public read-only data: keep serving when Redis is down
rate_limit_public_profiles = create_rate_limiter(
    limit=PUBLIC_PROFILES_RPM,
    window_seconds=60,
    key_prefix="public_profiles",
    use_ip=True,
    fail_open=True,
)


def get_public_profile_service(request: Request) -> PublicProfileService:
    """Dependency injection for the application-wide PublicProfileService"""
    return request.app.state.public_profile_service


@router.get(
    "/public",
    response_model=PublicProfilesResponse,
    responses={500: {"model": ErrorResponse}},
)
async def get_public_profiles(
    refresh: Optional[str] = Query(None, description="Pass 1 to bypass the listing cache"),
    city: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: PublicProfileService = Depends(get_public_profile_service),
    _: None = Depends(rate_limit_public_profiles),
):
    """Published profiles with ratings, prices and venue coordinates"""
    force_refresh = refresh == "1"

    try:
        profiles = await service.get_public_profiles(force_refresh)
    except Exception as e:
        logger.exception(f"❌ Failed to load public profiles: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to load profiles"})

    if city or category or limit is not None or offset:
        profiles = service.filter_profiles(
            profiles, city=city, category=category, limit=limit, offset=offset
        )

    return JSONResponse(
        content={"profiles": profiles},
        headers={"Cache-Control": PUBLIC_PROFILES_CACHE_CONTROL},
    )
