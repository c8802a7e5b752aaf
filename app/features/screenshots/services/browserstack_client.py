"""
BrowserStack Screenshots API client.

Owns the two-phase protocol: submit a job, then poll it until it reaches a
terminal state. Every remote call first takes a token from the shared rate
limiter. Transport and API failures surface as BrowserstackError with a
kind the caller can act on.
"""
import asyncio
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.features.screenshots.schemas.screenshot import (
    AvailableBrowser,
    BrowserConfig,
    JobState,
    Screenshot,
    ScreenshotJob,
    ScreenshotRequest,
)
from app.features.screenshots.services.os_normalizer import ConfigNormalizer
from app.platform.exceptions import BrowserstackError, ErrorKind, new_correlation_id
from app.platform.utils.rate_limit import TokenBucketRateLimiter
from app.platform.utils.url_validator import url_host

SCREENSHOTS_PATH = "/screenshots/v1"

# Upstream job states that still need polling
_PENDING_STATES = {"queued", "queued_all", "processing", "pending", "running"}


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the API's own error message."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("message", "error", "errors"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)

    text = response.text.strip()
    return text or response.reason_phrase or f"HTTP {response.status_code}"


def classify_status(status_code: int) -> ErrorKind:
    if status_code == 401:
        return ErrorKind.AUTH
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.UPSTREAM
    return ErrorKind.CLIENT_ERROR


class BrowserstackClient:
    """
    Stateless per call; the only shared state is the injected rate limiter.
    """

    def __init__(
        self,
        settings,
        http_client: httpx.AsyncClient,
        rate_limiter: TokenBucketRateLimiter,
        logger,
        normalizer: Optional[ConfigNormalizer] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
    ):
        username, access_key = settings.require_browserstack_credentials()
        self._auth = httpx.BasicAuth(username, access_key)
        self._base_url = settings.BROWSERSTACK_API_BASE.rstrip("/")
        self._http = http_client
        self._rate_limiter = rate_limiter
        self._logger = logger
        self._normalizer = normalizer or ConfigNormalizer(logger=logger)
        self.poll_interval = settings.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_poll_attempts = settings.MAX_POLL_ATTEMPTS if max_poll_attempts is None else max_poll_attempts

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._base_url}{SCREENSHOTS_PATH}{path}"

    def _raise(self, kind: ErrorKind, message: str, correlation_id: str, status_code=None, **context):
        error = BrowserstackError(
            kind,
            message,
            status_code=status_code,
            correlation_id=correlation_id,
            context=context,
        )
        self._logger.error(
            "BrowserStack call failed",
            correlation_id=correlation_id,
            kind=kind.value,
            status_code=status_code,
            error_message=message,
            retryable=kind.retryable,
            **context,
        )
        raise error

    async def _request(
        self,
        method: str,
        path: str,
        correlation_id: str,
        operation: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        await self._rate_limiter.acquire(correlation_id)

        try:
            response = await self._http.request(
                method,
                self._url(path),
                json=json,
                auth=self._auth,
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as e:
            self._raise(
                ErrorKind.UPSTREAM,
                f"Network error talking to BrowserStack: {e}",
                correlation_id,
                operation=operation,
                error_type=type(e).__name__,
            )

        if not response.is_success:
            kind = classify_status(response.status_code)
            if kind is ErrorKind.AUTH:
                message = "Authentication failed. Please check your BrowserStack credentials."
            elif kind is ErrorKind.RATE_LIMITED:
                message = "API rate limit exceeded. Please try again later."
            else:
                message = _error_message(response)
            self._raise(kind, message, correlation_id, status_code=response.status_code, operation=operation)

        try:
            return response.json()
        except ValueError:
            self._raise(
                ErrorKind.MALFORMED_RESPONSE,
                "BrowserStack returned a body that is not JSON",
                correlation_id,
                status_code=response.status_code,
                operation=operation,
            )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def get_browsers(self, correlation_id: Optional[str] = None) -> List[AvailableBrowser]:
        correlation_id = correlation_id or new_correlation_id()
        self._logger.info("Fetching available browsers", correlation_id=correlation_id)

        body = await self._request("GET", "/browsers.json", correlation_id, "get_browsers")
        if not isinstance(body, list):
            self._raise(
                ErrorKind.MALFORMED_RESPONSE,
                "Browser list response is not a list",
                correlation_id,
                operation="get_browsers",
            )

        try:
            browsers = [AvailableBrowser.model_validate(entry) for entry in body]
        except ValidationError as e:
            self._raise(
                ErrorKind.MALFORMED_RESPONSE,
                f"Browser list entry is malformed: {e.errors()[0].get('msg')}",
                correlation_id,
                operation="get_browsers",
            )

        self._logger.debug("Fetched available browsers", correlation_id=correlation_id, count=len(browsers))
        return browsers

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    def _browser_entry(self, config: BrowserConfig) -> Dict[str, Any]:
        config = self._normalizer.normalize_config(config)
        entry: Dict[str, Any] = {"os": config.os, "os_version": config.os_version}
        if config.device:
            entry["device"] = config.device
            entry["real_mobile"] = True
        else:
            entry["browser"] = config.browser
            entry["browser_version"] = self._normalizer.normalize_browser_version(config.browser_version)
        if config.orientation:
            entry["orientation"] = config.orientation
        if config.win_res:
            entry["win_res"] = config.win_res
        if config.mac_res:
            entry["mac_res"] = config.mac_res
        return entry

    def build_payload(self, request: ScreenshotRequest) -> Dict[str, Any]:
        options = request.options
        payload: Dict[str, Any] = {
            "url": request.url,
            "browsers": [self._browser_entry(config) for config in request.browsers],
            "quality": options.quality,
            "wait_time": options.wait_time,
            "local": options.local,
        }

        # Only send optional parameters that are set
        if options.orientation:
            payload["orientation"] = options.orientation
        if options.callback_url:
            payload["callback_url"] = options.callback_url
        if options.win_res:
            payload["win_res"] = options.win_res
        if options.mac_res:
            payload["mac_res"] = options.mac_res
        return payload

    async def submit(self, request: ScreenshotRequest) -> ScreenshotJob:
        correlation_id = request.correlation_id or new_correlation_id()
        payload = self.build_payload(request)

        self._logger.info(
            "Submitting screenshot job",
            correlation_id=correlation_id,
            url_host=url_host(request.url),
            browser_count=len(payload["browsers"]),
            quality=payload["quality"],
            wait_time=payload["wait_time"],
        )

        body = await self._request("POST", "", correlation_id, "submit", json=payload)

        job_id = body.get("job_id") if isinstance(body, dict) else None
        if not job_id:
            self._raise(
                ErrorKind.MALFORMED_RESPONSE,
                "Submission response did not contain a job id",
                correlation_id,
                operation="submit",
            )

        self._logger.info("Screenshot job submitted", correlation_id=correlation_id, job_id=job_id)
        return ScreenshotJob(
            job_id=str(job_id),
            state=JobState.queued,
            callback_url=body.get("callback_url") or request.options.callback_url,
            correlation_id=correlation_id,
        )

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    def _parse_job(self, job_id: str, body: Any, correlation_id: str) -> Optional[ScreenshotJob]:
        """Terminal job for done/error, None while the job is still pending."""
        if not isinstance(body, dict):
            self._raise(
                ErrorKind.MALFORMED_RESPONSE,
                "Job status response is not an object",
                correlation_id,
                job_id=job_id,
                operation="poll",
            )

        state = str(body.get("state") or "").lower()

        if state == JobState.error.value:
            self._raise(
                ErrorKind.JOB_FAILED,
                f"Screenshot generation failed: {body.get('message') or 'no message from API'}",
                correlation_id,
                job_id=job_id,
                operation="poll",
            )

        if state == JobState.done.value:
            raw_screenshots = body.get("screenshots")
            if not isinstance(raw_screenshots, list):
                self._raise(
                    ErrorKind.MALFORMED_RESPONSE,
                    "Job finished without a screenshot list",
                    correlation_id,
                    job_id=job_id,
                    operation="poll",
                )
            try:
                screenshots = [Screenshot.model_validate(s) for s in raw_screenshots]
            except ValidationError as e:
                self._raise(
                    ErrorKind.MALFORMED_RESPONSE,
                    f"Screenshot entry is malformed: {e.errors()[0].get('msg')}",
                    correlation_id,
                    job_id=job_id,
                    operation="poll",
                )
            return ScreenshotJob(
                job_id=job_id,
                state=JobState.done,
                message=body.get("message"),
                callback_url=body.get("callback_url"),
                screenshots=screenshots,
                correlation_id=correlation_id,
            )

        if state not in _PENDING_STATES:
            self._logger.warn(
                "Unrecognized job state, treating as pending",
                correlation_id=correlation_id,
                job_id=job_id,
                state=state,
            )
        return None

    async def _wait(self, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep one poll interval. True when the caller asked to stop."""
        if cancel_event is None:
            await asyncio.sleep(self.poll_interval)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def poll(
        self,
        job_id: str,
        correlation_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScreenshotJob:
        correlation_id = correlation_id or new_correlation_id()

        try:
            for attempt in range(1, self.max_poll_attempts + 1):
                if cancel_event is not None and cancel_event.is_set():
                    self._raise(
                        ErrorKind.CANCELLED,
                        "Polling cancelled by caller",
                        correlation_id,
                        job_id=job_id,
                        attempt=attempt,
                    )

                body = await self._request("GET", f"/{job_id}.json", correlation_id, "poll")
                job = self._parse_job(job_id, body, correlation_id)
                if job is not None:
                    self._logger.info(
                        "Screenshot job finished",
                        correlation_id=correlation_id,
                        job_id=job_id,
                        attempts=attempt,
                        screenshot_count=len(job.screenshots or []),
                    )
                    return job

                self._logger.debug(
                    "Screenshot job still pending",
                    correlation_id=correlation_id,
                    job_id=job_id,
                    attempt=attempt,
                    max_attempts=self.max_poll_attempts,
                    state=body.get("state"),
                )

                if attempt < self.max_poll_attempts and await self._wait(cancel_event):
                    self._raise(
                        ErrorKind.CANCELLED,
                        "Polling cancelled by caller",
                        correlation_id,
                        job_id=job_id,
                        attempt=attempt,
                    )
        except asyncio.CancelledError:
            self._logger.warn("Polling task cancelled", correlation_id=correlation_id, job_id=job_id)
            raise

        self._raise(
            ErrorKind.TIMEOUT,
            f"Job polling exceeded maximum attempts ({self.max_poll_attempts})",
            correlation_id,
            job_id=job_id,
            attempts=self.max_poll_attempts,
        )

    # ------------------------------------------------------------------
    # Submit + poll
    # ------------------------------------------------------------------

    async def generate_screenshots(
        self,
        request: ScreenshotRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScreenshotJob:
        """
        Submit a job and wait for its screenshots.

        When the request carries a callback URL the API pushes results to
        the webhook receiver, so the queued job is returned without polling.
        """
        job = await self.submit(request)
        if request.options.callback_url:
            self._logger.info(
                "Callback URL set, skipping polling",
                correlation_id=job.correlation_id,
                job_id=job.job_id,
            )
            return job
        return await self.poll(job.job_id, job.correlation_id, cancel_event)
