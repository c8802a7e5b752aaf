from sqlalchemy import Column, String, Boolean, CheckConstraint

from app.platform.db.base import BaseModel


class BrowserstackConfig(BaseModel):
    """A saved target environment users pick when starting a comparison."""

    __tablename__ = "browserstack_configs"

    name = Column(String(255), nullable=False)
    device_type = Column(String(16), nullable=False)  # desktop | mobile
    os = Column(String(64), nullable=False)
    os_version = Column(String(64), nullable=False)
    browser = Column(String(64), nullable=True)
    browser_version = Column(String(64), nullable=True)
    device = Column(String(128), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("device_type IN ('desktop', 'mobile')", name="check_device_type"),
        CheckConstraint(
            "(device_type = 'desktop' AND browser IS NOT NULL AND device IS NULL) OR "
            "(device_type = 'mobile' AND device IS NOT NULL AND browser IS NULL)",
            name="check_target_exclusivity",
        ),
    )

    def as_selected_config(self) -> dict:
        """Shape accepted by RequestValidator's ``selected_configs`` entries."""
        config = {"device_type": self.device_type, "os": self.os, "os_version": self.os_version}
        if self.device_type == "mobile":
            config["device"] = self.device
        else:
            config["browser"] = self.browser
            config["browser_version"] = self.browser_version
        return config
