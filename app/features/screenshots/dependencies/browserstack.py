from fastapi import Depends, Request

from app.features.screenshots.services.browser_catalog import BrowserConfigValidator
from app.features.screenshots.services.browserstack_client import BrowserstackClient
from app.features.screenshots.services.os_normalizer import ConfigNormalizer
from app.features.screenshots.services.request_validator import RequestValidator
from app.platform.config import Settings, settings as default_settings
from app.platform.logger import StructuredLogger
from app.platform.utils.rate_limit import TokenBucketRateLimiter


def get_settings() -> Settings:
    return default_settings


def get_structured_logger(request: Request) -> StructuredLogger:
    """The process-wide logger built in the app lifespan."""
    return request.app.state.logger


def get_rate_limiter(request: Request) -> TokenBucketRateLimiter:
    return request.app.state.rate_limiter


def get_normalizer(logger: StructuredLogger = Depends(get_structured_logger)) -> ConfigNormalizer:
    return ConfigNormalizer(logger=logger.child("normalizer"))


def get_request_validator(logger: StructuredLogger = Depends(get_structured_logger)) -> RequestValidator:
    return RequestValidator(logger=logger.child("validator"))


def get_config_validator(
    normalizer: ConfigNormalizer = Depends(get_normalizer),
    logger: StructuredLogger = Depends(get_structured_logger),
) -> BrowserConfigValidator:
    return BrowserConfigValidator(normalizer=normalizer, logger=logger.child("catalog"))


def get_browserstack_client(
    request: Request,
    settings: Settings = Depends(get_settings),
    rate_limiter: TokenBucketRateLimiter = Depends(get_rate_limiter),
    normalizer: ConfigNormalizer = Depends(get_normalizer),
    logger: StructuredLogger = Depends(get_structured_logger),
) -> BrowserstackClient:
    """
    Client bound to the shared HTTP pool and rate limiter.

    Missing credentials surface here as a CONFIGURATION error before any
    remote call is made.
    """
    return BrowserstackClient(
        settings=settings,
        http_client=request.app.state.http_client,
        rate_limiter=rate_limiter,
        logger=logger.child("client"),
        normalizer=normalizer,
    )
