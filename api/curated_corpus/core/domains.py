import ipaddress
import re
from urllib.parse import urlparse

import idna
import tldextract

HOSTNAME_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_HTTP_SCHEMES = {"http", "https"}

# Bundled public suffix snapshot only; no network fetch at lookup time.
_SUFFIX_EXTRACTOR = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=())


class InvalidHostnameError(ValueError):
    """Raised when a hostname cannot be used as a domain policy key."""


class InvalidUrlError(ValueError):
    """Raised when a content URL is not an absolute http(s) URL."""


def _strip_www(hostname: str) -> str:
    if hostname.startswith("www."):
        return hostname[4:]
    return hostname


def _to_ascii(hostname: str) -> str:
    try:
        return idna.encode(hostname, uts46=True).decode("ascii")
    except idna.IDNAError as exc:
        raise InvalidHostnameError(f'"{hostname}" is not a valid hostname: {exc}') from exc


def _is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return True


def get_domain_name(url: str) -> str:
    """Domain of a content URL: lower-cased, ``www.`` stripped, IDN converted to ASCII."""
    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in _HTTP_SCHEMES:
        raise InvalidUrlError(f'"{url}" must be an absolute http(s) URL')

    hostname = parsed.hostname
    if not hostname:
        raise InvalidUrlError(f'"{url}" does not contain a domain name')

    hostname = _strip_www(hostname.rstrip("."))
    if _is_ip_address(hostname):
        return hostname
    return _to_ascii(hostname)


def normalize_hostname(raw: str) -> str:
    """Sanitize and validate a bare hostname used as a domain policy key.

    Full URLs, wildcards, IP addresses, ``localhost`` and public suffixes such as
    ``co.uk`` are rejected with :class:`InvalidHostnameError`.
    """
    candidate = raw.strip() if isinstance(raw, str) else ""
    if not candidate:
        raise InvalidHostnameError("domain name must be a non-empty hostname")

    if _SCHEME_RE.match(candidate) or "/" in candidate:
        raise InvalidHostnameError("domain name must be a hostname, not a full URL")

    candidate = _strip_www(candidate.lower().rstrip("."))
    if "*" in candidate:
        raise InvalidHostnameError(f'"{candidate}" is a wildcard; only exact hostnames are allowed')
    if _is_ip_address(candidate):
        raise InvalidHostnameError(f'"{candidate}" is an IP address; a hostname is required')
    if candidate == "localhost" or candidate.endswith(".localhost"):
        raise InvalidHostnameError(f'"{candidate}" is not a public hostname')

    hostname = _to_ascii(candidate)
    if not HOSTNAME_RE.match(hostname):
        raise InvalidHostnameError(f'"{hostname}" is not a valid hostname')
    if is_public_suffix(hostname):
        raise InvalidHostnameError(f'"{hostname}" is a public suffix, not a registrable domain')
    return hostname


def is_public_suffix(hostname: str) -> bool:
    extracted = _SUFFIX_EXTRACTOR(hostname)
    return not extracted.domain and bool(extracted.suffix)


def get_registrable_domain(hostname: str) -> str | None:
    """eTLD+1 for a hostname, e.g. ``news.example.co.uk`` -> ``example.co.uk``."""
    extracted = _SUFFIX_EXTRACTOR(hostname)
    if not extracted.domain or not extracted.suffix:
        return None
    return f"{extracted.domain}.{extracted.suffix}"
