from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.screenshots.schemas.screenshot import Screenshot


class ComparisonCreate(BaseModel):
    """
    Start a comparison between two versions of a site.

    Configurations come either inline (``selected_configs``) or as ids of
    saved configurations (``config_ids``); inline entries win when both are
    given.
    """
    baseline_url: str
    new_url: str
    selected_configs: Optional[List[Dict[str, Any]]] = None
    config_ids: Optional[List[str]] = None
    quality: Optional[str] = None
    wait_time: Optional[int] = None
    orientation: Optional[str] = None
    win_res: Optional[str] = None
    mac_res: Optional[str] = None
    callback_url: Optional[str] = None
    local: Optional[bool] = None

    class Config:
        json_schema_extra = {
            "example": {
                "baseline_url": "https://example.com",
                "new_url": "https://staging.example.com",
                "selected_configs": [
                    {
                        "device_type": "desktop",
                        "os": "windows",
                        "os_version": "11",
                        "browser": "chrome",
                        "browser_version": "latest",
                    },
                    {"device_type": "mobile", "os": "ios", "os_version": "17", "device": "iPhone 15"},
                ],
                "wait_time": 5,
            }
        }

    def screenshot_payload(self, url: str, selected_configs: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Raw payload for RequestValidator, one per side of the comparison."""
        payload = {"url": url, "selected_configs": selected_configs}
        for key in ("quality", "wait_time", "orientation", "win_res", "mac_res", "callback_url", "local"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class ScreenshotRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    position: int
    device_name: str
    os: Optional[str] = None
    os_version: Optional[str] = None
    baseline_screenshot_url: Optional[str] = None
    baseline_thumb_url: Optional[str] = None
    new_screenshot_url: Optional[str] = None
    new_thumb_url: Optional[str] = None
    diff_percentage: Optional[float] = None
    status: str


class ComparisonResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    baseline_url: str
    new_url: str
    status: str
    baseline_job_id: Optional[str] = None
    new_job_id: Optional[str] = None
    correlation_id: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    screenshots: List[ScreenshotRowResponse] = Field(default_factory=list)

    @classmethod
    def from_model(cls, test) -> "ComparisonResponse":
        return cls(
            id=test.id,
            baseline_url=test.baseline_url,
            new_url=test.new_url,
            status=test.status.value,
            baseline_job_id=test.baseline_job_id,
            new_job_id=test.new_job_id,
            correlation_id=test.correlation_id,
            error_kind=test.error_kind,
            error_message=test.error_message,
            created_at=test.created_at,
            screenshots=[ScreenshotRowResponse.model_validate(s) for s in test.screenshots],
        )


class WebhookPayload(BaseModel):
    """Body BrowserStack posts to the callback URL when a job changes state."""
    model_config = ConfigDict(extra="ignore")

    job_id: str
    state: str
    screenshots: List[Screenshot] = Field(default_factory=list)


class WebhookResult(BaseModel):
    job_id: str
    side: Optional[Literal["baseline", "new"]] = None
    test_id: Optional[str] = None
    updated: int = 0
    created: int = 0
