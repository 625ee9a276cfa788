import time
import uuid
from urllib.parse import urldefrag, urlparse, urlunparse


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def normalize_url(value: str) -> str:
    """Add a scheme when missing and prefer https over http."""
    value = value.strip()
    if "://" not in value:
        value = "https://" + value.lstrip("/")
    parsed = urlparse(value)
    if parsed.scheme == "http":
        parsed = parsed._replace(scheme="https")
    if not parsed.path:
        parsed = parsed._replace(path="/")
    return urlunparse(parsed)


def fetch_candidates(value: str) -> list[str]:
    """URLs to try for a raw input, the https form first."""
    normalized = normalize_url(value)
    candidates = [normalized]
    original = value.strip()
    if original.startswith("http://"):
        fallback = urlunparse(urlparse(normalized)._replace(scheme="http"))
        candidates.append(fallback)
    return candidates


def get_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def strip_fragment(url: str) -> str:
    return urldefrag(url)[0]


def hostname_of(url: str) -> str:
    return urlparse(url).hostname or url


def generate_id() -> str:
    """Time-ordered, collision-resistant archive id."""
    return f"{int(time.time() * 1000):x}{uuid.uuid4().hex[:10]}"
