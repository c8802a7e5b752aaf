from typing import Dict, Optional, Tuple

from app.features.screenshots.schemas.screenshot import LATEST_VERSION, BrowserConfig


# Common OS spellings -> BrowserStack's canonical OS names
OS_ALIASES: Dict[str, str] = {
    "windows": "Windows",
    "win": "Windows",
    "os x": "OS X",
    "osx": "OS X",
    "macos": "OS X",
    "mac os": "OS X",
    "mac os x": "OS X",
    "mac": "OS X",
    "ios": "ios",
    "iphone os": "ios",
    "android": "android",
}

# Per canonical OS: casual version strings -> canonical version strings
OS_VERSION_ALIASES: Dict[str, Dict[str, str]] = {
    "Windows": {
        "windows 11": "11",
        "win 11": "11",
        "win11": "11",
        "windows 10": "10",
        "win 10": "10",
        "win10": "10",
        "windows 8.1": "8.1",
        "win 8.1": "8.1",
        "windows 8": "8",
        "win 8": "8",
        "windows 7": "7",
        "win 7": "7",
        "windows xp": "XP",
        "xp": "XP",
    },
    "OS X": {
        "sequoia": "Sequoia",
        "macos sequoia": "Sequoia",
        "15": "Sequoia",
        "sonoma": "Sonoma",
        "macos sonoma": "Sonoma",
        "14": "Sonoma",
        "ventura": "Ventura",
        "macos ventura": "Ventura",
        "13": "Ventura",
        "monterey": "Monterey",
        "macos monterey": "Monterey",
        "12": "Monterey",
        "big sur": "Big Sur",
        "bigsur": "Big Sur",
        "macos big sur": "Big Sur",
        "11": "Big Sur",
        "catalina": "Catalina",
        "10.15": "Catalina",
        "mojave": "Mojave",
        "10.14": "Mojave",
        "high sierra": "High Sierra",
        "10.13": "High Sierra",
    },
    "ios": {
        "ios 18": "18",
        "ios 17": "17",
        "ios 16": "16",
        "ios 15": "15",
        "ios 14": "14",
        "ios 13": "13",
        "ios 12": "12",
    },
    "android": {
        "android 15": "15.0",
        "android 14": "14.0",
        "android 13": "13.0",
        "android 12": "12.0",
        "android 11": "11.0",
        "android 10": "10.0",
        "15": "15.0",
        "14": "14.0",
        "13": "13.0",
        "12": "12.0",
        "11": "11.0",
        "10": "10.0",
    },
}


def _key(value: str) -> str:
    return " ".join(value.strip().lower().split())


class ConfigNormalizer:
    """
    Maps loosely written OS names and versions to the API's vocabulary.

    Pure and deterministic. Values missing from the tables are assumed to be
    canonical already and come back untouched, which also makes normalize
    idempotent: every table value maps to itself.
    """

    def __init__(self, logger=None):
        self._logger = logger

    def normalize_os(self, os_name: str) -> str:
        return OS_ALIASES.get(_key(os_name), os_name)

    def normalize_os_version(self, canonical_os: str, os_version: str) -> str:
        versions = OS_VERSION_ALIASES.get(canonical_os)
        if not versions:
            return os_version
        key = _key(os_version)
        if key in versions:
            return versions[key]
        # Already-canonical values compare case-insensitively ("big sur" vs "Big Sur")
        for canonical in versions.values():
            if _key(canonical) == key:
                return canonical
        return os_version

    def normalize(self, os_name: str, os_version: str) -> Tuple[str, str]:
        canonical_os = self.normalize_os(os_name)
        canonical_version = self.normalize_os_version(canonical_os, os_version)

        if self._logger and (canonical_os, canonical_version) != (os_name, os_version):
            self._logger.debug(
                "Normalized OS configuration",
                os=os_name,
                os_version=os_version,
                canonical_os=canonical_os,
                canonical_os_version=canonical_version,
            )
        return canonical_os, canonical_version

    @staticmethod
    def normalize_browser_version(browser_version: Optional[str]) -> str:
        if not browser_version or browser_version.strip().lower() == LATEST_VERSION:
            return LATEST_VERSION
        return browser_version.strip()

    def normalize_config(self, config: BrowserConfig) -> BrowserConfig:
        canonical_os, canonical_version = self.normalize(config.os, config.os_version)
        update = {"os": canonical_os, "os_version": canonical_version}
        if config.browser:
            update["browser_version"] = self.normalize_browser_version(config.browser_version)
        return config.model_copy(update=update)
