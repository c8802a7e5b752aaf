import asyncio
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from app.features.comparisons.models.comparison_test import ComparisonStatus, ComparisonTest
from app.features.comparisons.schemas.comparison import ComparisonCreate
from app.features.comparisons.services.store import ComparisonStore
from app.features.screenshots.schemas.screenshot import BrowserConfig, ConfigValidationRequest, ScreenshotJob
from app.features.screenshots.services.browser_catalog import BrowserConfigValidator
from app.features.screenshots.services.browserstack_client import BrowserstackClient
from app.features.screenshots.services.os_normalizer import ConfigNormalizer
from app.features.screenshots.services.request_validator import RequestValidator
from app.platform.exceptions import BrowserstackError, ErrorKind, new_correlation_id


async def gather_or_cancel(*aws: Awaitable) -> List[Any]:
    """
    Run awaitables concurrently; if one fails, cancel the rest and wait for
    them before re-raising.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ComparisonService:
    """
    Runs a baseline-vs-new comparison: validate both requests, submit both
    jobs, poll them to completion and persist the screenshot rows.
    """

    def __init__(
        self,
        store: ComparisonStore,
        client: BrowserstackClient,
        validator: RequestValidator,
        logger,
        normalizer: Optional[ConfigNormalizer] = None,
        config_validator: Optional[BrowserConfigValidator] = None,
    ):
        self.store = store
        self.client = client
        self.validator = validator
        self.logger = logger
        self.normalizer = normalizer or ConfigNormalizer()
        self.config_validator = config_validator or BrowserConfigValidator(normalizer=self.normalizer, logger=logger)

    async def _selected_configs(self, payload: ComparisonCreate, correlation_id: str) -> List[Dict[str, Any]]:
        if payload.selected_configs:
            return payload.selected_configs
        if payload.config_ids:
            saved = await self.store.get_saved_configs(payload.config_ids)
            if len(saved) != len(set(payload.config_ids)):
                found = {c.id for c in saved}
                missing = [i for i in payload.config_ids if i not in found]
                raise BrowserstackError(
                    ErrorKind.VALIDATION,
                    "Some selected configurations do not exist or are inactive",
                    correlation_id=correlation_id,
                    context={"missing_config_ids": missing},
                )
            return [config.as_selected_config() for config in saved]
        # Let the validator report the empty selection
        return []

    async def _check_available(self, browsers: List[BrowserConfig], correlation_id: str) -> None:
        """Reject configurations the live catalog does not offer, before anything is stored or submitted."""
        available = await self.client.get_browsers(correlation_id)
        for index, config in enumerate(browsers):
            result = self.config_validator.validate(
                ConfigValidationRequest(
                    device_type=config.device_type.value,
                    os=config.os,
                    os_version=config.os_version,
                    browser=config.browser,
                    browser_version=config.browser_version,
                    device=config.device,
                ),
                available,
            )
            if result.valid:
                continue
            suggestion = result.suggestion.model_dump(exclude_none=True) if result.suggestion else None
            self.logger.warn(
                "Configuration not available",
                correlation_id=correlation_id,
                index=index,
                config=config.display_name,
                reason=result.message,
            )
            raise BrowserstackError(
                ErrorKind.VALIDATION,
                f"{config.display_name}: {result.message}",
                correlation_id=correlation_id,
                context={"index": index, "suggestion": suggestion},
            )

    async def start_comparison(
        self,
        payload: ComparisonCreate,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ComparisonTest:
        correlation_id = new_correlation_id()
        selected = await self._selected_configs(payload, correlation_id)

        baseline_request = self.validator.validate(
            payload.screenshot_payload(payload.baseline_url, selected), correlation_id
        )
        new_request = self.validator.validate(payload.screenshot_payload(payload.new_url, selected), correlation_id)
        await self._check_available(baseline_request.browsers, correlation_id)

        # Rows carry the canonical OS names the API reports back
        browsers = [self.normalizer.normalize_config(b) for b in baseline_request.browsers]

        test = await self.store.create_test_record(
            baseline_request.url, new_request.url, correlation_id=correlation_id
        )
        self.logger.info(
            "Starting comparison",
            correlation_id=correlation_id,
            test_id=test.id,
            config_count=len(baseline_request.browsers),
        )

        try:
            baseline_job, new_job = await gather_or_cancel(
                self.client.submit(baseline_request),
                self.client.submit(new_request),
            )
            await self.store.update_test_status(
                test.id,
                ComparisonStatus.in_progress,
                baseline_job_id=baseline_job.job_id,
                new_job_id=new_job.job_id,
            )

            if baseline_request.options.callback_url:
                # Results arrive through the webhook receiver
                await self.store.create_screenshot_records(test.id, browsers)
                self.logger.info(
                    "Comparison submitted, awaiting webhook",
                    correlation_id=correlation_id,
                    test_id=test.id,
                    baseline_job_id=baseline_job.job_id,
                    new_job_id=new_job.job_id,
                )
                return await self.store.get_test(test.id)

            baseline_done, new_done = await self._poll_both(baseline_job, new_job, correlation_id, cancel_event)
        except BrowserstackError as e:
            status = ComparisonStatus.cancelled if e.kind is ErrorKind.CANCELLED else ComparisonStatus.failed
            await self.store.update_test_status(
                test.id, status, error_kind=e.kind.value, error_message=e.message
            )
            self.logger.error(
                "Comparison failed",
                correlation_id=correlation_id,
                test_id=test.id,
                kind=e.kind.value,
                error_message=e.message,
            )
            raise
        except asyncio.CancelledError:
            self.logger.warn("Comparison cancelled", correlation_id=correlation_id, test_id=test.id)
            await self.store.update_test_status(
                test.id,
                ComparisonStatus.cancelled,
                error_kind=ErrorKind.CANCELLED.value,
                error_message="Comparison cancelled",
            )
            raise

        await self.store.create_screenshot_records(
            test.id, browsers, baseline_done.screenshots, new_done.screenshots
        )
        await self.store.update_test_status(test.id, ComparisonStatus.completed)
        self.logger.info(
            "Comparison completed",
            correlation_id=correlation_id,
            test_id=test.id,
            baseline_screenshots=len(baseline_done.screenshots or []),
            new_screenshots=len(new_done.screenshots or []),
        )
        return await self.store.get_test(test.id)

    async def _poll_both(
        self,
        baseline_job: ScreenshotJob,
        new_job: ScreenshotJob,
        correlation_id: str,
        cancel_event: Optional[asyncio.Event],
    ) -> Tuple[ScreenshotJob, ScreenshotJob]:
        baseline_done, new_done = await gather_or_cancel(
            self.client.poll(baseline_job.job_id, correlation_id, cancel_event),
            self.client.poll(new_job.job_id, correlation_id, cancel_event),
        )
        return baseline_done, new_done
