from typing import Iterable, List, Optional

from app.features.screenshots.schemas.screenshot import (
    LATEST_VERSION,
    AvailableBrowser,
    BrowserCatalog,
    ConfigValidationRequest,
    ConfigValidationResult,
)
from app.features.screenshots.services.os_normalizer import ConfigNormalizer


# Newest iOS major each real device can run
IOS_DEVICE_MAX_VERSION = {
    "iPhone 15": 17,
    "iPhone 14": 16,
    "iPhone 13": 15,
    "iPhone 12": 14,
    "iPhone 11": 13,
    "iPhone X": 11,
}
SUPPORTED_IOS_VERSIONS = ("12", "13", "14", "15", "16", "17")


def partition_browsers(browsers: Iterable[AvailableBrowser]) -> BrowserCatalog:
    """Split the upstream catalog into desktop browsers and mobile devices."""
    desktop: List[AvailableBrowser] = []
    mobile: List[AvailableBrowser] = []
    for entry in browsers:
        (desktop if entry.is_desktop else mobile).append(entry)
    return BrowserCatalog(desktop=desktop, mobile=mobile)


def check_ios_device(device: str, os_version: str) -> Optional[str]:
    """Problem description for an unsupported iPhone/iOS pair, None when fine."""
    max_version = IOS_DEVICE_MAX_VERSION.get(device)
    if max_version is None:
        return f"Invalid iOS device: {device}. Valid devices are: {', '.join(IOS_DEVICE_MAX_VERSION)}"
    major = os_version.split(".")[0]
    if major not in SUPPORTED_IOS_VERSIONS:
        return f"Invalid iOS version: {os_version}. Valid versions are: {', '.join(SUPPORTED_IOS_VERSIONS)}"
    if int(major) > max_version:
        return f"Invalid iOS version for {device}. Maximum supported version: {max_version}, got: {os_version}"
    return None


def _lower(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _version_key(version: Optional[str]):
    parts = []
    for piece in (version or "").split("."):
        try:
            parts.append(int(piece))
        except ValueError:
            parts.append(0)
    return tuple(parts)


def latest_version(entries: Iterable[AvailableBrowser]) -> Optional[str]:
    versions = [e.browser_version for e in entries if e.browser_version]
    if not versions:
        return None
    return max(versions, key=_version_key)


class BrowserConfigValidator:
    """
    Checks a saved configuration against the live browser catalog.

    ``latest`` (or no version at all) is accepted for any browser the
    catalog lists on that OS; explicit versions must match exactly or as a
    prefix ("121" matches "121.0").
    """

    def __init__(self, normalizer: Optional[ConfigNormalizer] = None, logger=None):
        self._normalizer = normalizer or ConfigNormalizer(logger=logger)
        self._logger = logger

    def validate(self, config: ConfigValidationRequest, available: List[AvailableBrowser]) -> ConfigValidationResult:
        os_name, os_version = self._normalizer.normalize(config.os, config.os_version)
        same_os = [b for b in available if _lower(b.os) == _lower(os_name)]
        exact_os = [b for b in same_os if b.os_version == os_version]

        if config.device_type == "mobile":
            result = self._validate_mobile(config, os_name, os_version, same_os, exact_os)
        else:
            result = self._validate_desktop(config, same_os, exact_os)

        if self._logger:
            self._logger.debug(
                "Validated configuration against catalog",
                device_type=config.device_type,
                os=os_name,
                os_version=os_version,
                valid=result.valid,
            )
        return result

    def _validate_mobile(self, config, os_name, os_version, same_os, exact_os) -> ConfigValidationResult:
        if not config.device:
            return ConfigValidationResult(valid=False, message="Device is required for mobile configurations")

        if os_name == "ios":
            problem = check_ios_device(config.device, os_version)
            if problem:
                return ConfigValidationResult(valid=False, message=problem)

        match = next((b for b in exact_os if b.device == config.device), None)
        if match:
            return ConfigValidationResult(valid=True, message="Configuration is valid", config=match)

        closest = next((b for b in same_os if b.device == config.device), None)
        if closest:
            return ConfigValidationResult(
                valid=False,
                message=f"Configuration not found. Closest match found with OS version {closest.os_version}",
                suggestion=closest,
            )
        return ConfigValidationResult(valid=False, message="No matching or similar configuration found")

    def _validate_desktop(self, config, same_os, exact_os) -> ConfigValidationResult:
        if not config.browser:
            return ConfigValidationResult(valid=False, message="Browser is required for desktop configurations")

        browser = _lower(config.browser)
        version = _lower(config.browser_version)
        browser_matches = [b for b in exact_os if _lower(b.browser) == browser]

        if browser_matches:
            if not version or version == LATEST_VERSION:
                newest = latest_version(browser_matches)
                match = next((b for b in browser_matches if b.browser_version == newest), browser_matches[0])
                return ConfigValidationResult(valid=True, message="Configuration is valid", config=match)

            match = next(
                (
                    b
                    for b in browser_matches
                    if _lower(b.browser_version) == version or _lower(b.browser_version).startswith(version)
                ),
                None,
            )
            if match:
                return ConfigValidationResult(valid=True, message="Configuration is valid", config=match)

        closest = next((b for b in same_os if _lower(b.browser) == browser), None)
        if closest:
            return ConfigValidationResult(
                valid=False,
                message=(
                    f"Configuration not found. Closest match found with OS version {closest.os_version} "
                    f"and browser version {closest.browser_version}"
                ),
                suggestion=closest,
            )
        return ConfigValidationResult(valid=False, message="No matching or similar configuration found")
