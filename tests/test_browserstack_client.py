import asyncio
import json

import httpx
import pytest

from app.features.screenshots.schemas.screenshot import (
    BrowserConfig,
    JobState,
    ScreenshotOptions,
    ScreenshotRequest,
)
from app.features.screenshots.services.browserstack_client import BrowserstackClient, classify_status
from app.platform.config import settings
from app.platform.exceptions import BrowserstackError, ErrorKind
from app.platform.utils.rate_limit import TokenBucketRateLimiter

SCREENSHOTS = [
    {
        "id": "shot-1",
        "os": "Windows",
        "os_version": "11",
        "browser": "chrome",
        "browser_version": "121.0",
        "image_url": "https://img.example.com/1.png",
        "thumb_url": "https://img.example.com/1_thumb.png",
        "state": "done",
    }
]


def make_request(callback_url=None, **option_overrides) -> ScreenshotRequest:
    return ScreenshotRequest(
        url="https://example.com",
        browsers=[
            BrowserConfig(os="windows", os_version="Windows 11", browser="chrome", browser_version="latest"),
            BrowserConfig(os="iOS", os_version="17", device="iPhone 15"),
        ],
        options=ScreenshotOptions(callback_url=callback_url, **option_overrides),
        correlation_id="corr-c",
    )


def scripted(submit_response: httpx.Response, poll_states=()):
    """Handler answering the submit call, then each poll from ``poll_states`` in turn."""
    states = list(poll_states)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return submit_response
        state = states.pop(0) if len(states) > 1 else states[0]
        body = {"job_id": "abc", "state": state}
        if state == "done":
            body["screenshots"] = SCREENSHOTS
        return httpx.Response(200, json=body)

    return handler


def error_kind(exc_info) -> ErrorKind:
    return exc_info.value.kind


@pytest.mark.asyncio
async def test_job_completes_after_three_polls(make_client):
    client, transport, _ = make_client(
        scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing", "processing", "done"])
    )

    job = await client.generate_screenshots(make_request())

    assert job.job_id == "abc"
    assert job.state is JobState.done
    assert [s.id for s in job.screenshots] == ["shot-1"]
    assert job.correlation_id == "corr-c"
    assert transport.count("POST") == 1
    assert transport.count("GET", "/abc.json") == 3


@pytest.mark.asyncio
async def test_polling_times_out_after_max_attempts(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.generate_screenshots(make_request())

    assert error_kind(exc_info) is ErrorKind.TIMEOUT
    assert exc_info.value.retryable
    assert transport.count("GET") == 30


@pytest.mark.asyncio
async def test_rate_limited_submit_never_polls(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(429, json={"message": "Too many"}), ["done"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.generate_screenshots(make_request())

    assert error_kind(exc_info) is ErrorKind.RATE_LIMITED
    assert exc_info.value.status_code == 429
    assert transport.count("GET") == 0


@pytest.mark.asyncio
async def test_auth_failure_spends_no_further_tokens(make_client):
    limiter = TokenBucketRateLimiter(capacity=10, refill_interval_ms=60_000)
    client, transport, _ = make_client(scripted(httpx.Response(401, text="Unauthorized"), ["done"]), limiter)

    with pytest.raises(BrowserstackError) as exc_info:
        await client.generate_screenshots(make_request())

    assert error_kind(exc_info) is ErrorKind.AUTH
    assert not exc_info.value.retryable
    assert limiter.tokens == 9
    assert len(transport.requests) == 1


@pytest.mark.asyncio
async def test_errored_job_is_job_failed(make_client):
    client, _, _ = make_client(scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing", "error"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.generate_screenshots(make_request())

    assert error_kind(exc_info) is ErrorKind.JOB_FAILED
    assert exc_info.value.context["job_id"] == "abc"


@pytest.mark.asyncio
async def test_submit_without_job_id_is_malformed(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(200, json={"status": "ok"}), ["done"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.submit(make_request())

    assert error_kind(exc_info) is ErrorKind.MALFORMED_RESPONSE
    assert transport.count("GET") == 0


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(make_client):
    client, _, _ = make_client(scripted(httpx.Response(200, text="<html>oops</html>"), ["done"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.submit(make_request())

    assert error_kind(exc_info) is ErrorKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_done_without_screenshot_list_is_malformed(make_client):
    def handler(request):
        return httpx.Response(200, json={"job_id": "abc", "state": "done"})

    client, _, _ = make_client(handler)

    with pytest.raises(BrowserstackError) as exc_info:
        await client.poll("abc")

    assert error_kind(exc_info) is ErrorKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_unknown_state_is_treated_as_pending(make_client, log_capture):
    client, transport, _ = make_client(
        scripted(httpx.Response(200, json={"job_id": "abc"}), ["queued_all", "rendering", "done"])
    )

    job = await client.poll("abc")

    assert job.state is JobState.done
    assert transport.count("GET") == 3
    assert "Unrecognized job state, treating as pending" in log_capture.messages("warning")


@pytest.mark.asyncio
async def test_network_error_is_upstream(make_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _, _ = make_client(handler)

    with pytest.raises(BrowserstackError) as exc_info:
        await client.submit(make_request())

    assert error_kind(exc_info) is ErrorKind.UPSTREAM
    assert exc_info.value.retryable
    assert exc_info.value.context["error_type"] == "ConnectError"


@pytest.mark.asyncio
async def test_server_error_keeps_api_message(make_client):
    client, _, _ = make_client(scripted(httpx.Response(503, json={"message": "Maintenance"}), ["done"]))

    with pytest.raises(BrowserstackError) as exc_info:
        await client.submit(make_request())

    assert error_kind(exc_info) is ErrorKind.UPSTREAM
    assert exc_info.value.message == "Maintenance"


@pytest.mark.parametrize(
    "status_code, kind",
    [
        (400, ErrorKind.CLIENT_ERROR),
        (403, ErrorKind.CLIENT_ERROR),
        (422, ErrorKind.CLIENT_ERROR),
        (401, ErrorKind.AUTH),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.UPSTREAM),
        (502, ErrorKind.UPSTREAM),
    ],
)
def test_classify_status(status_code, kind):
    assert classify_status(status_code) is kind


@pytest.mark.asyncio
async def test_cancel_before_polling(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing"]))
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(BrowserstackError) as exc_info:
        await client.poll("abc", cancel_event=cancel)

    assert error_kind(exc_info) is ErrorKind.CANCELLED
    assert transport.count("GET") == 0


@pytest.mark.asyncio
async def test_cancel_during_wait_stops_polling(make_client):
    cancel = asyncio.Event()

    def handler(request):
        cancel.set()
        return httpx.Response(200, json={"job_id": "abc", "state": "processing"})

    client, transport, _ = make_client(handler, poll_interval=30)

    with pytest.raises(BrowserstackError) as exc_info:
        await client.poll("abc", cancel_event=cancel)

    assert error_kind(exc_info) is ErrorKind.CANCELLED
    assert transport.count("GET") == 1


@pytest.mark.asyncio
async def test_task_cancellation_propagates(make_client, log_capture):
    client, transport, _ = make_client(
        scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing"]), poll_interval=30
    )

    task = asyncio.create_task(client.poll("abc", correlation_id="corr-t"))
    while not transport.requests:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert "Polling task cancelled" in log_capture.messages("warning")


@pytest.mark.asyncio
async def test_callback_url_skips_polling(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(200, json={"job_id": "abc"}), ["processing"]))

    job = await client.generate_screenshots(make_request(callback_url="https://hooks.example.com/bs"))

    assert job.state is JobState.queued
    assert job.callback_url == "https://hooks.example.com/bs"
    assert transport.count("GET") == 0


@pytest.mark.asyncio
async def test_submit_payload_shape(make_client):
    client, transport, _ = make_client(scripted(httpx.Response(200, json={"job_id": "abc"}), ["done"]))

    await client.submit(make_request(quality="original", wait_time=10))

    request = transport.requests[0]
    assert request.url.path == "/screenshots/v1"
    assert request.headers["Authorization"].startswith("Basic ")
    body = json.loads(request.content)
    assert body == {
        "url": "https://example.com",
        "browsers": [
            {"os": "Windows", "os_version": "11", "browser": "chrome", "browser_version": "latest"},
            {"os": "ios", "os_version": "17", "device": "iPhone 15", "real_mobile": True},
        ],
        "quality": "original",
        "wait_time": 10,
        "local": False,
    }


@pytest.mark.asyncio
async def test_get_browsers(make_client):
    catalog = [
        {"os": "Windows", "os_version": "11", "browser": "chrome", "browser_version": "121.0"},
        {"os": "ios", "os_version": "17", "device": "iPhone 15", "real_mobile": True, "browser": None},
    ]

    def handler(request):
        assert request.url.path == "/screenshots/v1/browsers.json"
        return httpx.Response(200, json=catalog)

    client, _, _ = make_client(handler)
    browsers = await client.get_browsers()

    assert [b.is_desktop for b in browsers] == [True, False]


@pytest.mark.asyncio
async def test_failures_are_logged_without_credentials(make_client, log_capture):
    client, _, _ = make_client(scripted(httpx.Response(401), ["done"]))

    with pytest.raises(BrowserstackError):
        await client.submit(make_request())

    failure = [r for r in log_capture.records if r["level"] == "error"][-1]
    assert failure["message"] == "BrowserStack call failed"
    assert failure["kind"] == "auth"
    assert failure["correlation_id"] == "corr-c"
    assert failure["retryable"] is False
    assert settings.BROWSERSTACK_ACCESS_KEY not in log_capture.stream.getvalue()


def test_missing_credentials_is_configuration_error():
    unconfigured = settings.model_copy(update={"BROWSERSTACK_USERNAME": None, "BROWSERSTACK_ACCESS_KEY": ""})

    with pytest.raises(BrowserstackError) as exc_info:
        BrowserstackClient(
            settings=unconfigured,
            http_client=httpx.AsyncClient(),
            rate_limiter=TokenBucketRateLimiter(),
            logger=None,
        )

    assert exc_info.value.kind is ErrorKind.CONFIGURATION
    assert exc_info.value.context["missing"] == ["BROWSERSTACK_USERNAME", "BROWSERSTACK_ACCESS_KEY"]
