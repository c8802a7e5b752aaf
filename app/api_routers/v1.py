from fastapi import APIRouter

from app.features.health.routes.health import router as health_router
from app.features.screenshots.routes.browserstack import router as browserstack_router
from app.features.comparisons.routes.comparisons import router as comparisons_router
from app.features.comparisons.routes.configs import router as configs_router
from app.features.comparisons.routes.webhook import router as webhook_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(health_router)
api_router.include_router(browserstack_router)
api_router.include_router(comparisons_router)
api_router.include_router(configs_router)
api_router.include_router(webhook_router)
