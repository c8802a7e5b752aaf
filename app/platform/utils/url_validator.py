from urllib.parse import urlparse
from typing import Tuple


ALLOWED_SCHEMES = ("http", "https")


def validate_url(url) -> Tuple[bool, str, str]:
    """
    Check that ``url`` is a syntactically valid absolute http(s) URL.

    Returns (is_valid, stripped_url, error_message).
    """
    if not isinstance(url, str) or not url.strip():
        return False, "", "URL cannot be empty"

    url = url.strip()

    try:
        parsed = urlparse(url)
    except ValueError as e:
        return False, url, f"URL parsing error: {str(e)}"

    if not parsed.scheme:
        return False, url, "Invalid URL format: URL must be absolute (missing scheme)"

    if parsed.scheme not in ALLOWED_SCHEMES:
        return False, url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

    if not parsed.netloc or not parsed.hostname:
        return False, url, "Invalid URL format: missing domain"

    if any(ch.isspace() for ch in url):
        return False, url, "Invalid URL format: whitespace in URL"

    return True, url, ""


def url_host(url: str) -> str:
    """Host part of a URL for log lines; never the path or query."""
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""
