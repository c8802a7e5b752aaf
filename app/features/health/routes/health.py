from fastapi import APIRouter, Request, status
from app.platform.response import api_response


router = APIRouter()

@router.get("/health", tags=["health"])
async def health_check(request: Request):
    rate_limiter = getattr(request.app.state, "rate_limiter", None)
    return api_response(
        data={
            "status": "ok",
            "service": "Browser Compare",
            "rate_limiter_tokens": await rate_limiter.available_tokens() if rate_limiter else None,
        },
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
