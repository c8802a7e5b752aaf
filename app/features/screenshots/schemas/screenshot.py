"""
Screenshot Schemas

Models for the BrowserStack Screenshots API: browser configurations,
request options, submitted jobs and the screenshots they produce.
"""
import enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


VALID_WAIT_TIMES = (2, 5, 10, 15, 20, 60)
VALID_QUALITIES = ("compressed", "original")
VALID_ORIENTATIONS = ("portrait", "landscape")
VALID_DEVICE_TYPES = ("desktop", "mobile")

VALID_WIN_RESOLUTIONS = ("1024x768", "1280x1024", "1920x1080")
VALID_MAC_RESOLUTIONS = ("1024x768", "1280x960", "1280x1024", "1600x1200", "1920x1080")

DEFAULT_QUALITY = "compressed"
DEFAULT_WAIT_TIME = 5
LATEST_VERSION = "latest"


class DeviceType(str, enum.Enum):
    desktop = "desktop"
    mobile = "mobile"


class JobState(str, enum.Enum):
    """Screenshot job state machine"""
    queued = "queued"
    processing = "processing"
    done = "done"
    error = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.done, JobState.error)


# ============================================================================
# Request Schemas
# ============================================================================

class BrowserConfig(BaseModel):
    """One target environment: a desktop browser or a real mobile device."""
    model_config = ConfigDict(frozen=True)

    os: str
    os_version: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None
    win_res: Optional[str] = None
    mac_res: Optional[str] = None
    orientation: Optional[Literal["portrait", "landscape"]] = None

    @model_validator(mode="after")
    def check_exactly_one_target(self) -> "BrowserConfig":
        has_browser = bool(self.browser)
        has_device = bool(self.device)
        if has_browser == has_device:
            raise ValueError(
                "A configuration needs either browser fields (desktop) or a device (mobile), not both or neither"
            )
        if has_device and self.browser_version:
            raise ValueError("browser_version only applies to desktop configurations")
        return self

    @property
    def device_type(self) -> DeviceType:
        return DeviceType.mobile if self.device else DeviceType.desktop

    @property
    def real_mobile(self) -> bool:
        return self.device_type is DeviceType.mobile

    @property
    def display_name(self) -> str:
        if self.device:
            return self.device
        return f"{self.browser} on {self.os}"


class ScreenshotOptions(BaseModel):
    quality: Literal["compressed", "original"] = DEFAULT_QUALITY
    wait_time: Literal[2, 5, 10, 15, 20, 60] = DEFAULT_WAIT_TIME
    orientation: Optional[Literal["portrait", "landscape"]] = None
    callback_url: Optional[str] = None
    win_res: Optional[str] = None
    mac_res: Optional[str] = None
    local: bool = False


class ScreenshotRequest(BaseModel):
    """A validated request: target URL, ordered configs and options."""
    url: str
    browsers: List[BrowserConfig] = Field(min_length=1)
    options: ScreenshotOptions = Field(default_factory=ScreenshotOptions)
    correlation_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.com",
                "browsers": [
                    {"os": "Windows", "os_version": "11", "browser": "chrome", "browser_version": "latest"},
                    {"os": "ios", "os_version": "17", "device": "iPhone 15"},
                ],
                "options": {"quality": "compressed", "wait_time": 5},
            }
        }


# ============================================================================
# Upstream Response Schemas
# ============================================================================

class Screenshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    url: Optional[str] = None
    thumb_url: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[str] = None
    state: Optional[str] = None
    os: Optional[str] = None
    os_version: Optional[str] = None
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None
    orientation: Optional[str] = None

    @property
    def device_name(self) -> str:
        if self.device:
            return self.device
        return f"{self.browser} {self.browser_version}".strip()


class ScreenshotJob(BaseModel):
    """Snapshot of a remote job as last reported by the API."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    state: JobState = JobState.queued
    message: Optional[str] = None
    callback_url: Optional[str] = None
    screenshots: Optional[List[Screenshot]] = None
    correlation_id: Optional[str] = None


class AvailableBrowser(BaseModel):
    """One entry of the upstream browsers.json catalog."""
    model_config = ConfigDict(extra="ignore")

    os: str
    os_version: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None
    real_mobile: Optional[bool] = None

    @property
    def is_desktop(self) -> bool:
        return not self.device and not self.real_mobile


class BrowserCatalog(BaseModel):
    desktop: List[AvailableBrowser]
    mobile: List[AvailableBrowser]


class ConfigValidationResult(BaseModel):
    valid: bool
    message: str
    config: Optional[AvailableBrowser] = None
    suggestion: Optional[AvailableBrowser] = None


class ConfigValidationRequest(BaseModel):
    device_type: Literal["desktop", "mobile"]
    os: str
    os_version: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "device_type": "desktop",
                "os": "windows",
                "os_version": "11",
                "browser": "chrome",
                "browser_version": "latest",
            }
        }


def payload_summary(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Non-sensitive description of an inbound payload for log lines."""
    configs = payload.get("selected_configs")
    return {
        "config_count": len(configs) if isinstance(configs, list) else None,
        "has_callback_url": bool(payload.get("callback_url")),
        "fields": sorted(k for k in payload.keys() if isinstance(k, str)),
    }
