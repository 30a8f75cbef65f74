"""
Tunesmith Rate Limit API Routes
"""

import uuid

from fastapi import APIRouter, Depends

from ..dependencies import ServiceContainer, get_current_user_id, get_services
from ...database.schemas import RateLimitResponse

router = APIRouter()


@router.get("/{service}", response_model=RateLimitResponse)
async def get_rate_limit(
    service: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services)
):
    """Current window for (caller, service) without using up a request"""
    status = await services.rate_limiter.get_status(str(user_id), service)
    return RateLimitResponse(
        service=service,
        allowed=status.allowed,
        remaining=status.remaining,
        limit=status.limit,
        reset_time=status.reset_time,
        retry_after=status.retry_after
    )
