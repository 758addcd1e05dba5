"""
Relay Proxy - URL Codec and Helpers
"""

import base64
import binascii
from urllib.parse import urljoin, urlparse
from typing import Optional

from .errors import MalformedTarget


PROXY_SCHEMES = ('http', 'https')

# References that never point at a fetchable resource
SKIP_PREFIXES = (
    '#',
    'data:',
    'javascript:',
    'mailto:',
    'blob:',
)


def encode_url(url: str) -> str:
    """
    Encode URL using URL-safe base64.

    Args:
        url: The absolute URL to encode

    Returns:
        Base64 encoded string (URL-safe, unpadded)
    """
    encoded = base64.urlsafe_b64encode(url.encode('utf-8')).decode('ascii')
    # Remove padding for cleaner URLs
    return encoded.rstrip('=')


def decode_url(encoded: str) -> str:
    """
    Decode a token produced by encode_url back into the target URL.

    Standard base64 tokens are accepted as well, padded or not. A '+' that
    was turned into a space by query-string decoding is restored first.

    Raises:
        MalformedTarget: if the token is not base64 or does not decode to
            an absolute http(s) URL.
    """
    if not encoded or not encoded.strip():
        raise MalformedTarget('Missing target URL')

    token = encoded.strip().replace(' ', '+').replace('+', '-').replace('/', '_').rstrip('=')
    if len(token) % 4 == 1:
        raise MalformedTarget('Invalid target encoding')
    token += '=' * (-len(token) % 4)

    try:
        url = base64.b64decode(token.encode('ascii'), altchars=b'-_', validate=True).decode('utf-8')
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedTarget(f'Invalid target encoding: {e}') from e

    if not is_valid_url(url):
        raise MalformedTarget(f'Target is not an absolute http(s) URL: {url!r}')
    return url


def is_valid_url(url: str) -> bool:
    """
    Check if a URL is an absolute http(s) URL with a host.

    Args:
        url: URL to validate

    Returns:
        True if valid, False otherwise
    """
    try:
        result = urlparse(url)
        return all([result.scheme in PROXY_SCHEMES, result.netloc])
    except ValueError:
        return False


def make_absolute_url(url: str, base_url: str) -> str:
    """
    Convert a relative URL to absolute.

    Args:
        url: Potentially relative URL
        base_url: Base URL for resolution

    Returns:
        Absolute URL

    Raises:
        ValueError: if either URL cannot be parsed.
    """
    url = url.strip()

    # Scheme-relative: inherit the base scheme
    if url.startswith('//'):
        parsed_base = urlparse(base_url)
        return f"{parsed_base.scheme}:{url}"

    return urljoin(base_url, url)


def should_skip_url(url: str) -> bool:
    """
    Check if a URL should be left as is (not rewritten).

    Args:
        url: URL to check

    Returns:
        True if should skip, False otherwise
    """
    if not url or not url.strip():
        return True
    return url.strip().lower().startswith(SKIP_PREFIXES)


def proxy_url(absolute_url: str, proxy_base_url: str) -> str:
    """Build the /go reference for an absolute URL."""
    return f"{proxy_base_url.rstrip('/')}/go?url={encode_url(absolute_url)}"


def get_content_type(headers) -> Optional[str]:
    """
    Extract the bare media type from headers.

    Args:
        headers: Response headers mapping

    Returns:
        Lower-cased content type without parameters, or None
    """
    content_type = headers.get('Content-Type') or headers.get('content-type') or ''
    if ';' in content_type:
        content_type = content_type.split(';')[0]
    content_type = content_type.strip()
    return content_type.lower() if content_type else None


def get_charset(headers) -> Optional[str]:
    """Return the charset parameter of the Content-Type header, if any."""
    content_type = headers.get('Content-Type') or headers.get('content-type') or ''
    for param in content_type.split(';')[1:]:
        key, _, value = param.partition('=')
        if key.strip().lower() == 'charset' and value.strip():
            return value.strip().strip('"\'')
    return None


def is_html_content(content_type: Optional[str]) -> bool:
    """Check if content type is HTML or XHTML."""
    return content_type in ('text/html', 'application/xhtml+xml')


def is_media_content(content_type: Optional[str]) -> bool:
    """Check if content type is image, audio, video or font."""
    if not content_type:
        return False
    return content_type.split('/')[0] in ('image', 'audio', 'video', 'font')


def sanitize_headers(headers, allowed_headers: list) -> dict:
    """
    Filter headers to only include allowed ones.

    Args:
        headers: Original headers
        allowed_headers: List of allowed header names (lowercase)

    Returns:
        Filtered headers dictionary
    """
    return {
        k: v for k, v in headers.items()
        if k.lower() in allowed_headers
    }
