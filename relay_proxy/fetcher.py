"""
Relay Proxy - Upstream Fetcher
Performs outbound requests with a bounded timeout and bounded retry.
"""

import logging
import time
from typing import Callable, Optional

import requests

from .errors import UpstreamError, UpstreamUnavailable


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'

# Transport failures worth another attempt. ConnectTimeout is both.
RETRYABLE_ERRORS = (requests.ConnectionError, requests.Timeout)


class UpstreamFetcher:
    """Fetches target URLs on behalf of proxy clients."""

    def __init__(self, timeout: float = 10, max_retries: int = 2, retry_delay: float = 1,
                 user_agent: str = DEFAULT_USER_AGENT,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep

        # Session for connection pooling across requests
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8',
            'Accept-Language': 'en-US,en;q=0.9',
            'Accept-Encoding': 'gzip, deflate, br',
            'Upgrade-Insecure-Requests': '1',
        })

    def fetch(self, url: str, method: str = 'GET', data=None,
              headers: Optional[dict] = None) -> requests.Response:
        """
        Fetch a URL, retrying connection-level failures.

        The returned response is streamed: the caller owns it and must either
        read it fully or close it.

        Args:
            url: Absolute target URL
            method: HTTP method
            data: Optional form body (mapping or list of pairs)
            headers: Extra request headers; a User-Agent here overrides the default

        Returns:
            The upstream response (2xx only)

        Raises:
            UpstreamUnavailable: on timeout or transport failure after all attempts
            UpstreamError: when the origin answers with a non-2xx status
        """
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    data=data,
                    timeout=self.timeout,
                    allow_redirects=True,
                    stream=True,
                )
                break
            except RETRYABLE_ERRORS as e:
                if attempt == attempts:
                    logger.warning("Giving up on %s %s after %d attempts: %s", method, url, attempts, e)
                    raise UpstreamUnavailable(f"Upstream unavailable: {e}") from e
                logger.warning("Attempt %d/%d for %s %s failed: %s; retrying in %ss",
                               attempt, attempts, method, url, e, self.retry_delay)
                self.sleep(self.retry_delay)
            except requests.RequestException as e:
                # Redirect loops, invalid URLs and the like will not heal on retry
                logger.warning("Request to %s failed: %s", url, e)
                raise UpstreamUnavailable(f"Upstream request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            status, reason = response.status_code, response.reason or ''
            response.close()
            logger.warning("Upstream %s answered %s %s", url, status, reason)
            raise UpstreamError(status, reason)

        return response

    def close(self):
        self.session.close()
