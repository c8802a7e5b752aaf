from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.features.comparisons.models.browserstack_config import BrowserstackConfig
from app.features.comparisons.models.comparison_test import ComparisonStatus, ComparisonTest
from app.features.comparisons.models.test_screenshot import TestScreenshot
from app.features.screenshots.schemas.screenshot import LATEST_VERSION, BrowserConfig, Screenshot
from app.platform.logger import get_logger

logger = get_logger(__name__)


class ComparisonStore(Protocol):
    """Persisted-state collaborator used by the comparison service and webhook."""

    async def create_test_record(
        self, baseline_url: str, new_url: str, correlation_id: Optional[str] = None
    ) -> ComparisonTest: ...

    async def update_test_status(
        self,
        test_id: str,
        status: ComparisonStatus,
        *,
        baseline_job_id: Optional[str] = None,
        new_job_id: Optional[str] = None,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[ComparisonTest]: ...

    async def create_screenshot_records(
        self,
        test_id: str,
        browsers: Sequence[BrowserConfig],
        baseline: Optional[Sequence[Screenshot]] = None,
        new: Optional[Sequence[Screenshot]] = None,
    ) -> List[TestScreenshot]: ...

    async def upsert_webhook_screenshots(
        self, job_id: str, state: str, screenshots: Sequence[Screenshot]
    ) -> Tuple[Optional[ComparisonTest], Optional[str], int, int]: ...

    async def get_test(self, test_id: str) -> Optional[ComparisonTest]: ...

    async def get_test_by_correlation(self, correlation_id: str) -> Optional[ComparisonTest]: ...

    async def get_saved_configs(self, config_ids: Sequence[str]) -> List[BrowserstackConfig]: ...


def _lower(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _version_matches(wanted: Optional[str], actual: Optional[str]) -> bool:
    """``latest`` or no version matches anything; "121" matches "121.0"."""
    wanted = _lower(wanted)
    if not wanted or wanted == LATEST_VERSION:
        return True
    actual = _lower(actual)
    return actual == wanted or actual.startswith(wanted + ".")


def _matches(target, shot: Screenshot) -> bool:
    """
    True when ``shot`` was taken in the environment ``target`` describes.

    ``target`` is a BrowserConfig or a TestScreenshot row; both carry os,
    os_version, browser, browser_version and device.
    """
    if _lower(target.os) != _lower(shot.os):
        return False
    if _lower(target.os_version) != _lower(shot.os_version):
        return False
    if target.device:
        return _lower(target.device) == _lower(shot.device)
    if _lower(target.browser) != _lower(shot.browser):
        return False
    return _version_matches(target.browser_version, shot.browser_version)


def match_screenshots(
    browsers: Sequence[BrowserConfig], screenshots: Optional[Sequence[Screenshot]]
) -> List[Optional[Screenshot]]:
    """
    Pair each requested config with the screenshot the API produced for it.

    Matches on OS, OS version and device or browser (plus the browser
    version unless it is ``latest``); anything left over falls back to the
    screenshot at the same position.
    """
    if not screenshots:
        return [None] * len(browsers)

    used = set()
    paired: List[Optional[Screenshot]] = []
    for config in browsers:
        index = next(
            (i for i, shot in enumerate(screenshots) if i not in used and _matches(config, shot)),
            None,
        )
        paired.append(index)
        if index is not None:
            used.add(index)

    for position, index in enumerate(paired):
        if index is None and position < len(screenshots) and position not in used:
            paired[position] = position
            used.add(position)

    return [screenshots[i] if i is not None else None for i in paired]


class SqlComparisonStore:
    """ComparisonStore backed by the async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_test_record(
        self, baseline_url: str, new_url: str, correlation_id: Optional[str] = None
    ) -> ComparisonTest:
        test = ComparisonTest(
            baseline_url=baseline_url,
            new_url=new_url,
            status=ComparisonStatus.pending,
            correlation_id=correlation_id,
        )
        self.db.add(test)
        await self.db.commit()
        await self.db.refresh(test)
        logger.info(f"Created comparison test {test.id}")
        return test

    async def get_test(self, test_id: str) -> Optional[ComparisonTest]:
        result = await self.db.execute(
            select(ComparisonTest)
            .where(ComparisonTest.id == test_id)
            .options(selectinload(ComparisonTest.screenshots))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_test_by_correlation(self, correlation_id: str) -> Optional[ComparisonTest]:
        """The comparison a logged or returned correlation id belongs to."""
        result = await self.db.execute(
            select(ComparisonTest)
            .where(ComparisonTest.correlation_id == correlation_id)
            .options(selectinload(ComparisonTest.screenshots))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def update_test_status(
        self,
        test_id: str,
        status: ComparisonStatus,
        *,
        baseline_job_id: Optional[str] = None,
        new_job_id: Optional[str] = None,
        error_kind: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Optional[ComparisonTest]:
        test = await self.get_test(test_id)
        if not test:
            logger.warning(f"Status update for non-existent comparison test {test_id}")
            return None

        test.status = status
        if baseline_job_id:
            test.baseline_job_id = baseline_job_id
        if new_job_id:
            test.new_job_id = new_job_id
        if error_kind or error_message:
            test.error_kind = error_kind
            test.error_message = error_message

        await self.db.commit()
        await self.db.refresh(test)
        logger.info(f"Comparison test {test_id} -> {status.value}")
        return test

    async def create_screenshot_records(
        self,
        test_id: str,
        browsers: Sequence[BrowserConfig],
        baseline: Optional[Sequence[Screenshot]] = None,
        new: Optional[Sequence[Screenshot]] = None,
    ) -> List[TestScreenshot]:
        baseline_pairs = match_screenshots(browsers, baseline)
        new_pairs = match_screenshots(browsers, new)

        rows = []
        for position, config in enumerate(browsers):
            base_shot, new_shot = baseline_pairs[position], new_pairs[position]
            done = bool(base_shot and base_shot.image_url and new_shot and new_shot.image_url)
            row = TestScreenshot(
                test_id=test_id,
                position=position,
                device_name=config.display_name,
                os=config.os,
                os_version=config.os_version,
                browser=config.browser,
                browser_version=config.browser_version,
                device=config.device,
                baseline_screenshot_id=base_shot.id if base_shot else None,
                baseline_screenshot_url=base_shot.image_url if base_shot else None,
                baseline_thumb_url=base_shot.thumb_url if base_shot else None,
                new_screenshot_id=new_shot.id if new_shot else None,
                new_screenshot_url=new_shot.image_url if new_shot else None,
                new_thumb_url=new_shot.thumb_url if new_shot else None,
                diff_percentage=None,
                status="done" if done else "pending",
            )
            self.db.add(row)
            rows.append(row)

        await self.db.commit()
        logger.info(f"Created {len(rows)} screenshot records for comparison test {test_id}")
        return rows

    async def _find_test_by_job(self, job_id: str) -> Tuple[Optional[ComparisonTest], Optional[str]]:
        result = await self.db.execute(
            select(ComparisonTest)
            .options(selectinload(ComparisonTest.screenshots))
            .where(
                or_(ComparisonTest.baseline_job_id == job_id, ComparisonTest.new_job_id == job_id)
            )
            .execution_options(populate_existing=True)
        )
        test = result.scalars().first()
        if not test:
            return None, None
        return test, "baseline" if test.baseline_job_id == job_id else "new"

    async def upsert_webhook_screenshots(
        self, job_id: str, state: str, screenshots: Sequence[Screenshot]
    ) -> Tuple[Optional[ComparisonTest], Optional[str], int, int]:
        """
        Write finished screenshots for a job onto the matching rows.

        Rows are found by upstream screenshot id first, then by environment
        (OS, OS version, device or browser and version), never claiming a row
        twice in one call; screenshots with no row get a new one. Returns
        (test, side, updated, created).
        """
        test, side = await self._find_test_by_job(job_id)
        if not test:
            logger.warning(f"Webhook for unknown job {job_id}")
            return None, None, 0, 0

        rows: List[TestScreenshot] = list(test.screenshots)
        by_id: Dict[str, TestScreenshot] = {}
        for row in rows:
            upstream_id = row.baseline_screenshot_id if side == "baseline" else row.new_screenshot_id
            if upstream_id:
                by_id[upstream_id] = row

        # Rows already written by this webhook; one screenshot per row and side
        claimed = set()
        updated = created = 0
        for shot in screenshots:
            row = by_id.get(shot.id) if shot.id else None
            if row is None:
                row = next((r for r in rows if r not in claimed and _matches(r, shot)), None)
            if row is None:
                row = TestScreenshot(
                    test_id=test.id,
                    position=len(rows),
                    device_name=shot.device or f"{shot.browser} on {shot.os}",
                    os=shot.os,
                    os_version=shot.os_version,
                    browser=shot.browser,
                    browser_version=shot.browser_version,
                    device=shot.device,
                    status="pending",
                )
                self.db.add(row)
                rows.append(row)
                created += 1
            else:
                updated += 1
            claimed.add(row)

            if side == "baseline":
                row.baseline_screenshot_id = shot.id
                row.baseline_screenshot_url = shot.image_url
                row.baseline_thumb_url = shot.thumb_url
            else:
                row.new_screenshot_id = shot.id
                row.new_screenshot_url = shot.image_url
                row.new_thumb_url = shot.thumb_url
            if row.baseline_screenshot_url and row.new_screenshot_url:
                row.status = "done"
            elif (shot.state or state) == "error":
                row.status = "error"
            else:
                row.status = "pending"

        if state == "done" and rows and all(r.status == "done" for r in rows):
            test.status = ComparisonStatus.completed
        elif state == "error":
            test.status = ComparisonStatus.failed
            test.error_kind = "job_failed"
            test.error_message = f"BrowserStack reported job {job_id} as failed"

        await self.db.commit()
        await self.db.refresh(test)
        logger.info(f"Webhook for job {job_id} ({side}): {updated} updated, {created} created")
        return test, side, updated, created

    async def get_saved_configs(self, config_ids: Sequence[str]) -> List[BrowserstackConfig]:
        if not config_ids:
            return []
        result = await self.db.execute(
            select(BrowserstackConfig).where(
                BrowserstackConfig.id.in_(list(config_ids)),
                BrowserstackConfig.is_active.is_(True),
            )
        )
        configs = {c.id: c for c in result.scalars().all()}
        # Keep the caller's order
        return [configs[i] for i in config_ids if i in configs]

    async def create_saved_config(self, **fields) -> BrowserstackConfig:
        config = BrowserstackConfig(**fields)
        self.db.add(config)
        await self.db.commit()
        await self.db.refresh(config)
        logger.info(f"Saved configuration {config.id} ({config.name})")
        return config

    async def list_saved_configs(self, include_inactive: bool = False) -> List[BrowserstackConfig]:
        query = select(BrowserstackConfig).order_by(BrowserstackConfig.created_at, BrowserstackConfig.id)
        if not include_inactive:
            query = query.where(BrowserstackConfig.is_active.is_(True))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def deactivate_saved_config(self, config_id: str) -> Optional[BrowserstackConfig]:
        """Hide a configuration from listings and comparisons; the row is kept."""
        config = await self.db.get(BrowserstackConfig, config_id)
        if not config:
            logger.warning(f"Deactivation of non-existent configuration {config_id}")
            return None
        config.is_active = False
        await self.db.commit()
        await self.db.refresh(config)
        logger.info(f"Deactivated configuration {config_id}")
        return config
