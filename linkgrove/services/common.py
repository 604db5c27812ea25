import re
from urllib.parse import quote, urlparse, urlunparse

FAVICON_PROVIDER = "https://www.google.com/s2/favicons"

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_URL_IN_TEXT_RE = re.compile(
    r"(?:https?://|www\.)[^\s<>\"']+"
    r"|(?<![@\w.-])(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}(?:/[^\s<>\"']*)?"
)


def format_url(url: str) -> str:
    value = (url or "").strip()
    if not value:
        return ""
    if not _SCHEME_RE.match(value):
        value = f"https://{value}"
    return value


def normalize_url(url: str) -> str:
    value = format_url(url)
    if not value:
        return ""
    parsed = urlparse(value)
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path
    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, parsed.fragment))


def is_valid_url(url: str) -> bool:
    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return False
    if parsed.scheme not in {"http", "https"} or not hostname:
        return False
    return hostname == "localhost" or "." in hostname


def extract_url_from_text(text: str) -> str | None:
    if not text:
        return None
    match = _URL_IN_TEXT_RE.search(text)
    if not match:
        return None
    return match.group(0).rstrip(".,;:!?)")


def domain_from_url(url: str) -> str:
    hostname = urlparse(format_url(url)).hostname or ""
    return hostname.removeprefix("www.")


def favicon_url(url: str, size: int = 64) -> str:
    domain = domain_from_url(url)
    return f"{FAVICON_PROVIDER}?domain={quote(domain)}&sz={size}"
