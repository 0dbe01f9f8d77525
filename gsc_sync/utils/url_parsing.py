"""
URL helpers for page URLs returned by Search Console.
"""
from urllib.parse import unquote, urlparse
from typing import Optional


def decode_page_url(url: Optional[str]) -> Optional[str]:
    """
    Percent-decode a page URL for storage and display.

    Search Console returns non-ASCII paths encoded (e.g. /%E0%A4%95); stored
    top-page URLs are kept human readable. Empty values map to None.
    """
    if not url:
        return None
    return unquote(url)


def site_slug(site_url: str) -> str:
    """Filesystem-safe slug for a Search Console property (sc-domain: or URL prefix)"""
    if site_url.startswith("sc-domain:"):
        host = site_url[len("sc-domain:"):]
    else:
        parsed = urlparse(site_url)
        host = parsed.netloc or parsed.path
    slug = "".join(ch if ch.isalnum() else "_" for ch in host.lower())
    return slug.strip("_") or "site"
