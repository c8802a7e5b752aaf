from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.features.health.routes.health import router as health_router
from app.platform.config import settings
from app.platform.db.session import init_models
from app.platform.exceptions import add_exception_handlers
from app.platform.logger import StructuredLogger
from app.platform.utils.rate_limit import TokenBucketRateLimiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Process-wide collaborators, built once and shared by every request
    logger = StructuredLogger("browser_compare")
    app.state.logger = logger
    app.state.rate_limiter = TokenBucketRateLimiter.from_settings(settings, logger=logger.child("rate_limiter"))
    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    await init_models()
    logger.info("Service started", environment=settings.ENVIRONMENT)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        logger.info("Service stopped")


app = FastAPI(
    title="Browser Compare API",
    description="Compare two versions of a website across browsers and devices using BrowserStack screenshots",
    version="1.0.0",
    lifespan=lifespan,
)


# Root endpoint for basic info
@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "Browser Compare API",
        "description": "Visual comparison of website versions across browser and device configurations.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
