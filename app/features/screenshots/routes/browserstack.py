from fastapi import APIRouter, Depends, status

from app.features.screenshots.dependencies.browserstack import (
    get_browserstack_client,
    get_config_validator,
)
from app.features.screenshots.schemas.screenshot import ConfigValidationRequest
from app.features.screenshots.services.browser_catalog import BrowserConfigValidator, partition_browsers
from app.features.screenshots.services.browserstack_client import BrowserstackClient
from app.platform.response import api_response

router = APIRouter(prefix="/browserstack", tags=["BrowserStack"])


@router.get(
    "/browsers",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="List available browsers",
    description="Available BrowserStack environments split into desktop browsers and mobile devices",
)
async def list_browsers(client: BrowserstackClient = Depends(get_browserstack_client)):
    browsers = await client.get_browsers()
    catalog = partition_browsers(browsers)
    return api_response(
        data=catalog,
        message=f"Found {len(catalog.desktop)} desktop and {len(catalog.mobile)} mobile configurations",
    )


@router.post(
    "/configs/validate",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Validate a browser configuration",
    description="Check a configuration against the live catalog, suggesting the closest match when it is not offered",
)
async def validate_config(
    request: ConfigValidationRequest,
    client: BrowserstackClient = Depends(get_browserstack_client),
    validator: BrowserConfigValidator = Depends(get_config_validator),
):
    browsers = await client.get_browsers()
    result = validator.validate(request, browsers)
    return api_response(data=result, message=result.message)
