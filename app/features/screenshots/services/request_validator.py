from typing import Any, Dict, Optional

from pydantic import ValidationError

from app.features.screenshots.schemas.screenshot import (
    LATEST_VERSION,
    VALID_DEVICE_TYPES,
    VALID_MAC_RESOLUTIONS,
    VALID_ORIENTATIONS,
    VALID_QUALITIES,
    VALID_WAIT_TIMES,
    VALID_WIN_RESOLUTIONS,
    BrowserConfig,
    ScreenshotOptions,
    ScreenshotRequest,
    payload_summary,
)
from app.platform.exceptions import BrowserstackError, ErrorKind, new_correlation_id
from app.platform.utils.url_validator import url_host, validate_url


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


class RequestValidator:
    """
    Validates and shapes an inbound screenshot request.

    Checks run in a fixed order and the first violation raises a
    VALIDATION error. Apart from filling defaults the request comes out as
    it went in; OS/version canonicalization is the normalizer's job.
    """

    def __init__(self, logger=None):
        self._logger = logger

    def _fail(self, message: str, correlation_id: str, **context) -> BrowserstackError:
        error = BrowserstackError(
            ErrorKind.VALIDATION,
            message,
            correlation_id=correlation_id,
            context=context,
        )
        if self._logger:
            self._logger.warn(
                "Request validation failed",
                correlation_id=correlation_id,
                kind=error.kind.value,
                reason=message,
                **context,
            )
        return error

    def _check_resolution(self, value, valid, platform: str, correlation_id: str, **context) -> None:
        if value is None:
            return
        if value not in valid:
            raise self._fail(
                f"Invalid {platform} resolution: {value}. Valid resolutions are: {', '.join(valid)}",
                correlation_id,
                field="win_res" if platform == "Windows" else "mac_res",
                **context,
            )

    def validate(self, raw: Dict[str, Any], correlation_id: Optional[str] = None) -> ScreenshotRequest:
        correlation_id = correlation_id or new_correlation_id()

        if not isinstance(raw, dict):
            raise self._fail("Request body must be an object", correlation_id)

        if self._logger:
            self._logger.info(
                "Validating screenshot request",
                correlation_id=correlation_id,
                url_host=url_host(raw["url"]) if isinstance(raw.get("url"), str) else None,
                **payload_summary(raw),
            )

        # 1. url
        url = raw.get("url")
        if _is_blank(url):
            raise self._fail("URL is required", correlation_id, field="url")
        is_valid, url, url_error = validate_url(url)
        if not is_valid:
            raise self._fail(f"Invalid URL: {url_error}", correlation_id, field="url")

        # 2. selected_configs
        configs = raw.get("selected_configs")
        if configs is None:
            raise self._fail("At least one configuration must be selected", correlation_id, field="selected_configs")
        if not isinstance(configs, list):
            raise self._fail("selected_configs must be a list", correlation_id, field="selected_configs")
        if len(configs) == 0:
            raise self._fail("At least one configuration must be selected", correlation_id, field="selected_configs")

        # 3. per-config shape
        for index, config in enumerate(configs):
            if not isinstance(config, dict):
                raise self._fail(f"Invalid configuration at index {index}", correlation_id, index=index)
            if _is_blank(config.get("os")) or _is_blank(config.get("os_version")):
                raise self._fail(
                    f"Invalid configuration at index {index}: os and os_version are required",
                    correlation_id,
                    index=index,
                )
            device_type = config.get("device_type")
            if device_type not in VALID_DEVICE_TYPES:
                raise self._fail(
                    f"Invalid configuration at index {index}: device_type must be one of {', '.join(VALID_DEVICE_TYPES)}",
                    correlation_id,
                    index=index,
                )
            if device_type == "desktop":
                if _is_blank(config.get("browser")):
                    raise self._fail(
                        f"Browser is required for desktop configuration at index {index}",
                        correlation_id,
                        index=index,
                    )
                if config.get("device"):
                    raise self._fail(
                        f"Desktop configuration at index {index} cannot name a device",
                        correlation_id,
                        index=index,
                    )
            else:
                if _is_blank(config.get("device")):
                    raise self._fail(
                        f"Device is required for mobile configuration at index {index}",
                        correlation_id,
                        index=index,
                    )
                if config.get("browser") or config.get("browser_version"):
                    raise self._fail(
                        f"Mobile configuration at index {index} cannot name a browser",
                        correlation_id,
                        index=index,
                    )
            orientation = config.get("orientation")
            if orientation is not None and orientation not in VALID_ORIENTATIONS:
                raise self._fail(
                    f"Invalid orientation at index {index}: {orientation}",
                    correlation_id,
                    index=index,
                )

        # 4. wait_time
        wait_time = raw.get("wait_time")
        if wait_time is not None:
            if isinstance(wait_time, bool) or wait_time not in VALID_WAIT_TIMES:
                raise self._fail(
                    f"Invalid wait time: {wait_time}. Valid wait times are: "
                    f"{', '.join(str(w) for w in VALID_WAIT_TIMES)} seconds",
                    correlation_id,
                    field="wait_time",
                )

        # 5. quality / orientation
        quality = raw.get("quality")
        if quality is not None and quality not in VALID_QUALITIES:
            raise self._fail(
                f"Invalid quality: {quality}. Valid values are: {', '.join(VALID_QUALITIES)}",
                correlation_id,
                field="quality",
            )
        orientation = raw.get("orientation")
        if orientation is not None and orientation not in VALID_ORIENTATIONS:
            raise self._fail(
                f"Invalid orientation: {orientation}. Valid values are: {', '.join(VALID_ORIENTATIONS)}",
                correlation_id,
                field="orientation",
            )

        # 6. resolutions
        self._check_resolution(raw.get("win_res"), VALID_WIN_RESOLUTIONS, "Windows", correlation_id)
        self._check_resolution(raw.get("mac_res"), VALID_MAC_RESOLUTIONS, "Mac", correlation_id)
        for index, config in enumerate(configs):
            self._check_resolution(config.get("win_res"), VALID_WIN_RESOLUTIONS, "Windows", correlation_id, index=index)
            self._check_resolution(config.get("mac_res"), VALID_MAC_RESOLUTIONS, "Mac", correlation_id, index=index)

        callback_url = raw.get("callback_url")
        if callback_url is not None:
            is_valid, callback_url, url_error = validate_url(callback_url)
            if not is_valid:
                raise self._fail(f"Invalid callback URL: {url_error}", correlation_id, field="callback_url")

        try:
            request = ScreenshotRequest(
                url=url,
                browsers=[self._build_config(config) for config in configs],
                options=ScreenshotOptions(
                    **{
                        key: raw[key]
                        for key in ("quality", "wait_time", "orientation", "win_res", "mac_res", "local")
                        if raw.get(key) is not None
                    },
                    callback_url=callback_url,
                ),
                correlation_id=correlation_id,
            )
        except ValidationError as e:
            raise self._fail(f"Invalid request: {e.errors()[0].get('msg')}", correlation_id) from e

        if self._logger:
            self._logger.debug(
                "Request validation successful",
                correlation_id=correlation_id,
                config_count=len(request.browsers),
            )
        return request

    @staticmethod
    def _build_config(config: Dict[str, Any]) -> BrowserConfig:
        fields = {
            "os": config["os"].strip(),
            "os_version": config["os_version"].strip(),
            "win_res": config.get("win_res"),
            "mac_res": config.get("mac_res"),
            "orientation": config.get("orientation"),
        }
        if config["device_type"] == "mobile":
            fields["device"] = config["device"]
        else:
            fields["browser"] = config["browser"]
            fields["browser_version"] = config.get("browser_version") or LATEST_VERSION
        return BrowserConfig(**fields)
