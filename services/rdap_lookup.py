"""RDAP Registration Lookup.

Best-effort lookup of a domain's registration date over RDAP (the JSON
successor to WHOIS). The registration date is the ``eventDate`` of the
event whose ``eventAction`` is ``registration``. Any failure returns the
``UNKNOWN_REGISTRATION`` sentinel instead of raising.
"""

import logging
from typing import Any, Dict, Optional

import requests

from src.utils.http_utils import RobustHTTPSession

logger = logging.getLogger(__name__)

RDAP_BASE_URL = "https://rdap.org/domain/"
UNKNOWN_REGISTRATION = "unknown"


def extract_registration_date(payload: Dict[str, Any]) -> Optional[str]:
    """Return the registration event date from an RDAP domain response, if any."""
    if not isinstance(payload, dict):
        return None
    for event in payload.get("events") or []:
        if not isinstance(event, dict):
            continue
        if str(event.get("eventAction", "")).lower() == "registration" and event.get("eventDate"):
            return str(event["eventDate"])
    return None


class RegistrationLookup:
    """Client for the public RDAP bootstrap service."""

    def __init__(self, base_url: str = RDAP_BASE_URL, timeout: int = 10,
                 session: Optional[RobustHTTPSession] = None):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.session = session or RobustHTTPSession(timeout=timeout)

    def lookup(self, domain: str) -> str:
        """Look up when a domain was registered.

        Args:
            domain: Domain to look up (ASCII/punycode form)

        Returns:
            Registration date string as published by the registry, or "unknown"
        """
        url = f"{self.base_url}{domain}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.info(f"RDAP lookup failed for {domain}: {e}")
            return UNKNOWN_REGISTRATION

        if response is None:
            logger.info(f"RDAP lookup for {domain} got no response")
            return UNKNOWN_REGISTRATION

        if response.status_code != 200:
            logger.info(f"RDAP lookup for {domain} returned HTTP {response.status_code}")
            return UNKNOWN_REGISTRATION

        try:
            payload = response.json()
        except ValueError as e:
            logger.info(f"RDAP response for {domain} is not JSON: {e}")
            return UNKNOWN_REGISTRATION

        registered = extract_registration_date(payload)
        if not registered:
            logger.debug(f"RDAP response for {domain} has no registration event")
            return UNKNOWN_REGISTRATION

        logger.info(f"RDAP: {domain} registered {registered}")
        return registered
