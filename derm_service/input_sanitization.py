"""
Input sanitization for clinical context and image references.

Free text from patients ends up inside model prompts, so HTML and control
characters are stripped and lengths are capped. Image references are
checked for scheme, host and file format before anything is sent upstream.
"""
import ipaddress
import re
from typing import Iterable, Optional
from urllib.parse import urlparse

MAX_FIELD_LENGTH = 2000
MAX_LIST_ITEMS = 30
MAX_LIST_ITEM_LENGTH = 300

SUPPORTED_IMAGE_FORMATS = ["JPEG", "PNG", "WebP", "GIF"]
ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


def sanitize_text(text: Optional[str], max_length: Optional[int] = MAX_FIELD_LENGTH) -> str:
    """Strip HTML tags and control characters, then cap the length."""
    if not text:
        return ""

    text = str(text).strip()
    text = _strip_html_tags(text)
    text = _remove_control_chars(text)

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text.strip()


def sanitize_list(values: Iterable[str]) -> list[str]:
    """Sanitize each item and drop the ones that end up empty."""
    cleaned = []
    for value in values:
        item = sanitize_text(value, max_length=MAX_LIST_ITEM_LENGTH)
        if item:
            cleaned.append(item)
        if len(cleaned) >= MAX_LIST_ITEMS:
            break
    return cleaned


def _strip_html_tags(text: str) -> str:
    """Remove HTML tags from text."""
    text = re.sub(r'<script[^>]*>.*?</script>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<style[^>]*>.*?</style>', '', text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r'<[^>]+>', '', text)
    return text


def _remove_control_chars(text: str) -> str:
    """Remove control characters except tab and newline."""
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)


def path_extension(path: str) -> str:
    """Lowercase extension of the last path segment, or '' when there is none."""
    segment = path.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in segment:
        return ""
    return "." + segment.rsplit(".", 1)[-1].lower()


def has_supported_extension(path: str, required: bool = False) -> bool:
    """Check an image path against the accepted formats.

    When ``required`` is False a path without any extension is accepted
    (signed URLs and CDNs frequently omit it).
    """
    ext = path_extension(path)
    if not ext:
        return not required
    return ext in ALLOWED_IMAGE_EXTENSIONS


def _is_private_host(host: str) -> bool:
    if host in ("localhost",) or host.endswith(".localhost") or host.endswith(".internal"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    return addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved or addr.is_unspecified


def host_is_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    """Exact or subdomain match against the allow-list."""
    host = host.lower().rstrip(".")
    for allowed in allowed_hosts:
        allowed = allowed.lower().rstrip(".")
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def check_image_url(url: str, allowed_hosts: Iterable[str] = ()) -> Optional[str]:
    """Return a reason string when an external image URL is not acceptable."""
    if not isinstance(url, str) or not url.strip():
        return "empty image URL"

    parsed = urlparse(url.strip())
    if parsed.scheme != "https":
        return "image URLs must use https"
    host = (parsed.hostname or "").lower()
    if not host:
        return "image URL has no host"
    if _is_private_host(host):
        return f"image host '{host}' is not reachable from this service"

    allowed_hosts = tuple(allowed_hosts)
    if allowed_hosts and not host_is_allowed(host, allowed_hosts):
        return f"image host '{host}' is not in the allowed host list"
    return None


def url_path(url: str) -> str:
    return urlparse(url.strip()).path
