from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class BrowserstackConfigCreate(BaseModel):
    """A target environment to keep for later comparisons."""
    name: str
    device_type: Literal["desktop", "mobile"]
    os: str
    os_version: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Chrome on Windows 11",
                "device_type": "desktop",
                "os": "Windows",
                "os_version": "11",
                "browser": "chrome",
                "browser_version": "latest",
            }
        }

    @model_validator(mode="after")
    def check_target_fields(self) -> "BrowserstackConfigCreate":
        if not self.name.strip():
            raise ValueError("name must not be blank")
        if self.device_type == "desktop":
            if not self.browser or self.device:
                raise ValueError("Desktop configurations need a browser and no device")
        elif not self.device or self.browser or self.browser_version:
            raise ValueError("Mobile configurations need a device and no browser fields")
        return self


class BrowserstackConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    device_type: str
    os: str
    os_version: str
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    device: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
