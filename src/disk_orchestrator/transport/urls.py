"""
URL resolution for operation descriptors.

Relative resource paths are joined onto the control-plane base URL and every
URL is stamped with an ``api-version`` query parameter unless it already
carries one.
"""

from typing import Optional


def build_url(path_or_url: str, api_version: Optional[str], base_url: str) -> str:
    """
    Resolve a resource path or absolute URL into a request URL.

    Examples:
        >>> build_url("/subscriptions/s", "2025-04-01", "https://management.azure.com")
        'https://management.azure.com/subscriptions/s?api-version=2025-04-01'
        >>> build_url("https://host/x?$expand=instanceView", "v1", "https://ignored")
        'https://host/x?$expand=instanceView&api-version=v1'
    """
    if path_or_url.startswith(("http://", "https://")):
        url = path_or_url
    else:
        path = path_or_url if path_or_url.startswith("/") else f"/{path_or_url}"
        url = f"{base_url.rstrip('/')}{path}"

    if not api_version or "api-version=" in url:
        return url

    separator = "&" if "?" in url else "?"
    return f"{url}{separator}api-version={api_version}"
