from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.comparisons.schemas.comparison import ComparisonCreate, ComparisonResponse
from app.features.comparisons.services.comparison import ComparisonService
from app.features.comparisons.services.store import SqlComparisonStore
from app.features.screenshots.dependencies.browserstack import (
    get_browserstack_client,
    get_config_validator,
    get_normalizer,
    get_request_validator,
    get_structured_logger,
)
from app.features.screenshots.services.browser_catalog import BrowserConfigValidator
from app.features.screenshots.services.browserstack_client import BrowserstackClient
from app.features.screenshots.services.os_normalizer import ConfigNormalizer
from app.features.screenshots.services.request_validator import RequestValidator
from app.platform.db.session import get_db
from app.platform.logger import StructuredLogger
from app.platform.response import api_response

router = APIRouter(prefix="/comparisons", tags=["Comparisons"])


def get_comparison_service(
    db: AsyncSession = Depends(get_db),
    client: BrowserstackClient = Depends(get_browserstack_client),
    validator: RequestValidator = Depends(get_request_validator),
    normalizer: ConfigNormalizer = Depends(get_normalizer),
    config_validator: BrowserConfigValidator = Depends(get_config_validator),
    logger: StructuredLogger = Depends(get_structured_logger),
) -> ComparisonService:
    return ComparisonService(
        store=SqlComparisonStore(db),
        client=client,
        validator=validator,
        logger=logger.child("comparison"),
        normalizer=normalizer,
        config_validator=config_validator,
    )


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Run a comparison",
    description="Capture baseline and new screenshots for every selected configuration",
)
async def create_comparison(
    request: ComparisonCreate,
    service: ComparisonService = Depends(get_comparison_service),
):
    test = await service.start_comparison(request)
    return api_response(
        data=ComparisonResponse.from_model(test),
        message="Screenshot generation completed"
        if test.status.value == "completed"
        else "Screenshot generation initiated",
        status_code=status.HTTP_201_CREATED,
    )


@router.get(
    "/by-correlation/{correlation_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Find comparison by correlation id",
    description="Look up the comparison behind a correlation id from an error response or log line",
)
async def get_comparison_by_correlation(correlation_id: str, db: AsyncSession = Depends(get_db)):
    test = await SqlComparisonStore(db).get_test_by_correlation(correlation_id)
    if not test:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comparison not found")
    return api_response(data=ComparisonResponse.from_model(test), message="Comparison retrieved")


@router.get(
    "/{test_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Get comparison",
    description="A comparison test and its screenshot rows",
)
async def get_comparison(test_id: str, db: AsyncSession = Depends(get_db)):
    test = await SqlComparisonStore(db).get_test(test_id)
    if not test:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Comparison not found")
    return api_response(data=ComparisonResponse.from_model(test), message="Comparison retrieved")
