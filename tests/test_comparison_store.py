import pytest

from app.features.comparisons.models import BrowserstackConfig, ComparisonStatus
from app.features.comparisons.services.store import SqlComparisonStore, match_screenshots
from app.features.screenshots.schemas.screenshot import BrowserConfig, Screenshot

CHROME = BrowserConfig(os="Windows", os_version="11", browser="chrome", browser_version="latest")
IPHONE = BrowserConfig(os="ios", os_version="17", device="iPhone 15")


def shot(id, **fields):
    return Screenshot(id=id, image_url=f"https://img.example.com/{id}.png", thumb_url=f"https://img.example.com/{id}_t.png", state="done", **fields)


CHROME_SHOT = dict(os="Windows", os_version="11", browser="chrome", browser_version="121.0")
IPHONE_SHOT = dict(os="ios", os_version="17", device="iPhone 15")


def test_match_screenshots_by_environment_not_position():
    paired = match_screenshots([CHROME, IPHONE], [shot("b", **IPHONE_SHOT), shot("a", **CHROME_SHOT)])
    assert [s.id for s in paired] == ["a", "b"]


def test_match_screenshots_falls_back_to_position():
    paired = match_screenshots([CHROME, IPHONE], [shot("x"), shot("y")])
    assert [s.id for s in paired] == ["x", "y"]


def test_match_screenshots_tells_os_versions_apart():
    win10 = CHROME.model_copy(update={"os_version": "10"})
    paired = match_screenshots(
        [win10, CHROME],
        [shot("s11", **CHROME_SHOT), shot("s10", **{**CHROME_SHOT, "os_version": "10"})],
    )
    assert [s.id for s in paired] == ["s10", "s11"]


def test_match_screenshots_tells_browser_versions_apart():
    chrome_119 = CHROME.model_copy(update={"browser_version": "119.0"})
    chrome_120 = CHROME.model_copy(update={"browser_version": "120"})
    paired = match_screenshots(
        [chrome_119, chrome_120],
        [shot("v120", **{**CHROME_SHOT, "browser_version": "120.0"}), shot("v119", **{**CHROME_SHOT, "browser_version": "119.0"})],
    )
    assert [s.id for s in paired] == ["v119", "v120"]


def test_match_screenshots_without_results():
    assert match_screenshots([CHROME, IPHONE], None) == [None, None]


@pytest.mark.asyncio
async def test_test_record_lifecycle(db_session):
    store = SqlComparisonStore(db_session)

    test = await store.create_test_record("https://example.com", "https://staging.example.com", correlation_id="corr-s")
    assert test.status is ComparisonStatus.pending
    assert test.id

    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")
    updated = await store.get_test(test.id)
    assert updated.status is ComparisonStatus.in_progress
    assert (updated.baseline_job_id, updated.new_job_id) == ("job-b", "job-n")

    await store.update_test_status(test.id, ComparisonStatus.failed, error_kind="timeout", error_message="slow")
    failed = await store.get_test(test.id)
    assert failed.status is ComparisonStatus.failed
    assert failed.error_kind == "timeout"


@pytest.mark.asyncio
async def test_update_missing_test_returns_none(db_session):
    store = SqlComparisonStore(db_session)
    assert await store.update_test_status("missing", ComparisonStatus.completed) is None
    assert await store.get_test("missing") is None


@pytest.mark.asyncio
async def test_screenshot_rows_pair_both_sides(db_session):
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")

    await store.create_screenshot_records(
        test.id,
        [CHROME, IPHONE],
        baseline=[shot("b-chrome", **CHROME_SHOT), shot("b-iphone", **IPHONE_SHOT)],
        new=[shot("n-iphone", **IPHONE_SHOT), shot("n-chrome", **CHROME_SHOT)],
    )

    stored = await store.get_test(test.id)
    rows = stored.screenshots
    assert [r.device_name for r in rows] == ["chrome on Windows", "iPhone 15"]
    assert rows[0].baseline_screenshot_url.endswith("b-chrome.png")
    assert rows[0].new_screenshot_url.endswith("n-chrome.png")
    assert rows[1].new_screenshot_id == "n-iphone"
    assert all(r.status == "done" for r in rows)
    assert all(r.diff_percentage is None for r in rows)


@pytest.mark.asyncio
async def test_webhook_fills_rows_and_completes_test(db_session):
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")
    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")
    await store.create_screenshot_records(test.id, [CHROME, IPHONE])

    found, side, updated, created = await store.upsert_webhook_screenshots(
        "job-b", "done", [shot("b-chrome", **CHROME_SHOT), shot("b-iphone", **IPHONE_SHOT)]
    )
    assert (found.id, side, updated, created) == (test.id, "baseline", 2, 0)
    assert found.status is ComparisonStatus.in_progress
    assert all(r.status == "pending" for r in found.screenshots)

    found, side, updated, created = await store.upsert_webhook_screenshots(
        "job-n", "done", [shot("n-chrome", **CHROME_SHOT), shot("n-iphone", **IPHONE_SHOT)]
    )
    assert (side, updated, created) == ("new", 2, 0)
    assert found.status is ComparisonStatus.completed
    assert all(r.status == "done" for r in found.screenshots)


@pytest.mark.asyncio
async def test_webhook_fills_rows_that_differ_only_by_browser_version(db_session):
    chrome_119 = CHROME.model_copy(update={"browser_version": "119.0"})
    chrome_120 = CHROME.model_copy(update={"browser_version": "120.0"})
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")
    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")
    await store.create_screenshot_records(test.id, [chrome_119, chrome_120])

    for job_id, prefix in (("job-b", "b"), ("job-n", "n")):
        found, _, updated, created = await store.upsert_webhook_screenshots(
            job_id,
            "done",
            [
                shot(f"{prefix}-120", **{**CHROME_SHOT, "browser_version": "120.0"}),
                shot(f"{prefix}-119", **{**CHROME_SHOT, "browser_version": "119.0"}),
            ],
        )
        assert (updated, created) == (2, 0)

    assert found.status is ComparisonStatus.completed
    rows = sorted(found.screenshots, key=lambda r: r.position)
    assert [(r.baseline_screenshot_id, r.new_screenshot_id) for r in rows] == [("b-119", "n-119"), ("b-120", "n-120")]
    assert all(r.status == "done" for r in rows)


@pytest.mark.asyncio
async def test_webhook_does_not_write_two_screenshots_into_one_row(db_session):
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")
    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")
    await store.create_screenshot_records(test.id, [CHROME])

    found, _, updated, created = await store.upsert_webhook_screenshots(
        "job-b", "done", [shot("b-first", **CHROME_SHOT), shot("b-second", **CHROME_SHOT)]
    )

    assert (updated, created) == (1, 1)
    assert sorted(r.baseline_screenshot_id for r in found.screenshots) == ["b-first", "b-second"]


@pytest.mark.asyncio
async def test_webhook_creates_rows_for_unexpected_screenshots(db_session):
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")
    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")

    found, side, updated, created = await store.upsert_webhook_screenshots(
        "job-b", "done", [shot("b-pixel", os="android", os_version="14.0", device="Google Pixel 8")]
    )
    assert (updated, created) == (0, 1)
    assert [r.device_name for r in found.screenshots] == ["Google Pixel 8"]


@pytest.mark.asyncio
async def test_webhook_error_fails_test(db_session):
    store = SqlComparisonStore(db_session)
    test = await store.create_test_record("https://example.com", "https://staging.example.com")
    await store.update_test_status(test.id, ComparisonStatus.in_progress, baseline_job_id="job-b", new_job_id="job-n")

    found, _, _, _ = await store.upsert_webhook_screenshots("job-n", "error", [])
    assert found.status is ComparisonStatus.failed
    assert found.error_kind == "job_failed"


@pytest.mark.asyncio
async def test_webhook_for_unknown_job(db_session):
    store = SqlComparisonStore(db_session)
    assert await store.upsert_webhook_screenshots("nobody", "done", []) == (None, None, 0, 0)


@pytest.mark.asyncio
async def test_saved_configs_keep_requested_order(db_session):
    chrome = BrowserstackConfig(
        name="Chrome on Windows 11", device_type="desktop", os="Windows", os_version="11", browser="chrome"
    )
    iphone = BrowserstackConfig(name="iPhone 15", device_type="mobile", os="ios", os_version="17", device="iPhone 15")
    retired = BrowserstackConfig(
        name="Old Safari", device_type="desktop", os="OS X", os_version="Mojave", browser="safari", is_active=False
    )
    db_session.add_all([chrome, iphone, retired])
    await db_session.commit()

    store = SqlComparisonStore(db_session)
    configs = await store.get_saved_configs([iphone.id, retired.id, chrome.id])

    assert [c.name for c in configs] == ["iPhone 15", "Chrome on Windows 11"]
    assert configs[0].as_selected_config() == {
        "device_type": "mobile",
        "os": "ios",
        "os_version": "17",
        "device": "iPhone 15",
    }
