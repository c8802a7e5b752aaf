from app.features.comparisons.models.comparison_test import ComparisonTest, ComparisonStatus
from app.features.comparisons.models.test_screenshot import TestScreenshot
from app.features.comparisons.models.browserstack_config import BrowserstackConfig

__all__ = ["ComparisonTest", "ComparisonStatus", "TestScreenshot", "BrowserstackConfig"]
