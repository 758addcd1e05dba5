"""
Relay Proxy - Error Types
"""


class ProxyError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class MalformedTarget(ProxyError):
    """The encoded target is missing, undecodable or not an http(s) URL."""

    status_code = 400


class UpstreamUnavailable(ProxyError):
    """The origin could not be reached after all retry attempts."""

    status_code = 502


class UpstreamError(ProxyError):
    """The origin answered with a non-2xx status."""

    def __init__(self, status: int, status_text: str = ''):
        super().__init__(f"Failed to fetch: {status_text or status}", status_code=status)
        self.status = status
        self.status_text = status_text
