"""
HTTP session for public lookup services (RDAP) with retry and rate-limit handling.
"""
import logging
import time
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import ProtocolError
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

RDAP_ACCEPT = "application/rdap+json, application/json;q=0.9"

# Longest Retry-After we are willing to honour inline (seconds)
MAX_RETRY_AFTER = 30


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After header. Only the delta-seconds form is supported."""
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class RobustHTTPSession:
    """requests.Session wrapper used by the lookup clients.

    Transient 5xx responses are retried by urllib3 on the mounted adapter.
    Connection resets are retried here with exponential backoff, and a 429
    carrying a short Retry-After is waited out once before giving up.
    """

    def __init__(self,
                 max_retries: int = 2,
                 backoff_factor: float = 0.5,
                 timeout: int = 10,
                 user_agent: str = "impostor-watch/1.0",
                 accept: str = RDAP_ACCEPT,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            max_retries: Adapter-level retries for 5xx responses
            backoff_factor: Base for the exponential backoff between attempts
            timeout: Default request timeout in seconds
            user_agent: User-Agent header sent with every request
            accept: Accept header sent with every request
            sleep: Sleep function (injectable for tests)
        """
        self.timeout = timeout
        self.backoff_factor = backoff_factor
        self.sleep = sleep

        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": accept})

        adapter = HTTPAdapter(
            max_retries=Retry(
                total=max_retries,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET", "HEAD"],
                backoff_factor=backoff_factor,
                raise_on_status=False,
            ),
            pool_connections=2,
            pool_maxsize=4,
        )
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _backoff(self, attempt: int) -> float:
        return self.backoff_factor * (2 ** (attempt - 1))

    def get(self, url: str, max_attempts: int = 2, **kwargs) -> Optional[requests.Response]:
        """GET with connection-error retries.

        Returns:
            The final response (any status), or None if every attempt hit a
            connection error

        Raises:
            requests.exceptions.Timeout: the last attempt timed out
            requests.exceptions.RequestException: non-recoverable request errors
        """
        kwargs.setdefault('timeout', self.timeout)
        rate_limited_once = False
        attempt = 0

        while attempt < max_attempts:
            attempt += 1
            try:
                response = self.session.get(url, **kwargs)
            except (ProtocolError, requests.exceptions.ConnectionError) as e:
                if attempt >= max_attempts:
                    logger.warning(f"GET {url} failed after {attempt} attempt(s): {e}")
                    return None
                delay = self._backoff(attempt)
                logger.info(f"Connection error on attempt {attempt}/{max_attempts} for {url}: {e}. "
                            f"Retrying in {delay:.1f}s")
                self.sleep(delay)
                continue
            except requests.exceptions.Timeout as e:
                if attempt >= max_attempts:
                    raise
                logger.info(f"Timeout on attempt {attempt}/{max_attempts} for {url}: {e}")
                self.sleep(self._backoff(attempt))
                continue

            if response.status_code == 429 and not rate_limited_once:
                wait = parse_retry_after(response.headers.get("Retry-After"))
                if wait is not None and wait <= MAX_RETRY_AFTER:
                    rate_limited_once = True
                    logger.info(f"Rate limited by {url}, waiting {wait:.0f}s")
                    self.sleep(wait)
                    # Waiting out the rate limit does not use up an attempt
                    attempt -= 1
                    continue
            return response

        return None

    def close(self):
        """Close the session."""
        self.session.close()
