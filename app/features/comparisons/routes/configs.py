from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.comparisons.schemas.saved_config import BrowserstackConfigCreate, BrowserstackConfigResponse
from app.features.comparisons.services.store import SqlComparisonStore
from app.features.screenshots.dependencies.browserstack import get_normalizer
from app.features.screenshots.services.os_normalizer import ConfigNormalizer
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/configs", tags=["Saved Configurations"])


@router.post(
    "",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Save a configuration",
    description="Store a target environment that comparisons can reference by id",
)
async def create_saved_config(
    request: BrowserstackConfigCreate,
    db: AsyncSession = Depends(get_db),
    normalizer: ConfigNormalizer = Depends(get_normalizer),
):
    os_name, os_version = normalizer.normalize(request.os, request.os_version)
    fields = request.model_dump()
    fields.update(name=request.name.strip(), os=os_name, os_version=os_version)
    if request.device_type == "desktop":
        fields["browser_version"] = normalizer.normalize_browser_version(request.browser_version)

    config = await SqlComparisonStore(db).create_saved_config(**fields)
    return api_response(
        data=BrowserstackConfigResponse.model_validate(config),
        message="Configuration saved",
        status_code=status.HTTP_201_CREATED,
    )


@router.get(
    "",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="List saved configurations",
    description="Active configurations, oldest first; pass include_inactive to see deactivated ones too",
)
async def list_saved_configs(include_inactive: bool = False, db: AsyncSession = Depends(get_db)):
    configs = await SqlComparisonStore(db).list_saved_configs(include_inactive=include_inactive)
    return api_response(
        data=[BrowserstackConfigResponse.model_validate(c) for c in configs],
        message="Configurations retrieved",
    )


@router.delete(
    "/{config_id}",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="Deactivate a configuration",
    description="Stop offering a configuration; comparisons that used it keep their rows",
)
async def deactivate_saved_config(config_id: str, db: AsyncSession = Depends(get_db)):
    config = await SqlComparisonStore(db).deactivate_saved_config(config_id)
    if not config:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Configuration not found")
    return api_response(data=BrowserstackConfigResponse.model_validate(config), message="Configuration deactivated")
