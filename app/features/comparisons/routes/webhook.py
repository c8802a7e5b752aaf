from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.comparisons.schemas.comparison import WebhookPayload, WebhookResult
from app.features.comparisons.services.store import SqlComparisonStore
from app.features.screenshots.dependencies.browserstack import get_structured_logger
from app.platform.db.session import get_db
from app.platform.exceptions import new_correlation_id
from app.platform.logger import StructuredLogger
from app.platform.response import api_response

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post(
    "/browserstack",
    response_model=dict,
    status_code=status.HTTP_200_OK,
    summary="BrowserStack job callback",
    description="Stores finished screenshots for the comparison that owns the job",
)
async def browserstack_webhook(
    payload: WebhookPayload,
    db: AsyncSession = Depends(get_db),
    logger: StructuredLogger = Depends(get_structured_logger),
):
    request_id = new_correlation_id()
    log = logger.child("webhook")
    log.info(
        "Received BrowserStack webhook",
        correlation_id=request_id,
        job_id=payload.job_id,
        state=payload.state,
        screenshot_count=len(payload.screenshots),
    )

    test, side, updated, created = await SqlComparisonStore(db).upsert_webhook_screenshots(
        payload.job_id, payload.state, payload.screenshots
    )

    if not test:
        log.warn("Webhook for unknown job", correlation_id=request_id, job_id=payload.job_id)
        return api_response(
            data=WebhookResult(job_id=payload.job_id),
            message="No comparison owns this job",
            status_code=status.HTTP_404_NOT_FOUND,
        )

    log.info(
        "Stored webhook screenshots",
        correlation_id=request_id,
        job_id=payload.job_id,
        test_id=test.id,
        side=side,
        updated=updated,
        created=created,
    )
    return api_response(
        data=WebhookResult(job_id=payload.job_id, side=side, test_id=test.id, updated=updated, created=created),
        message="Webhook processed",
    )
