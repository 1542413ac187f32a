"""DNS Resolution Probe.

Checks whether a candidate impostor domain is "live" by independently
querying its A, MX and TXT records with dnspython. Each record type is
isolated: NXDOMAIN, empty answers, timeouts and malformed responses all
degrade to "absent" for that record type only.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)

# TXT content that indicates the domain is configured to send mail
EMAIL_AUTH_MARKERS = ("v=spf1", "v=dmarc1")


@dataclass(frozen=True)
class Resolution:
    """Presence of address, mail-exchange and text records for a domain."""
    has_address: bool = False
    has_mail_exchange: bool = False
    has_text: bool = False

    @property
    def is_live(self) -> bool:
        return self.has_address or self.has_mail_exchange or self.has_text

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Resolution":
        data = data or {}
        return cls(
            has_address=bool(data.get("has_address")),
            has_mail_exchange=bool(data.get("has_mail_exchange")),
            has_text=bool(data.get("has_text")),
        )


def is_live(resolution) -> bool:
    """True iff at least one record type resolved. Accepts a Resolution or its dict form."""
    if isinstance(resolution, Resolution):
        return resolution.is_live
    return Resolution.from_dict(resolution).is_live


class ResolutionProbe:
    """Probes A, MX and TXT records for a domain."""

    def __init__(self, timeout: float = 3.0, strict_txt: bool = False,
                 resolver: Optional[dns.resolver.Resolver] = None):
        """
        Args:
            timeout: Per-query lifetime in seconds
            strict_txt: Only count TXT records carrying an SPF/DMARC marker
            resolver: Pre-configured resolver (defaults to the system resolver)
        """
        self.timeout = timeout
        self.strict_txt = strict_txt
        self.resolver = resolver or dns.resolver.Resolver()
        self.resolver.timeout = timeout
        self.resolver.lifetime = timeout

    def _query(self, domain: str, rdtype: str):
        """Resolve one record type, returning None when absent for any reason."""
        try:
            return self.resolver.resolve(domain, rdtype, lifetime=self.timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return None
        except dns.resolver.NoNameservers:
            logger.debug(f"No nameservers answered {rdtype} for {domain}")
            return None
        except dns.exception.Timeout:
            logger.debug(f"{rdtype} lookup timed out for {domain}")
            return None
        except dns.exception.DNSException as e:
            logger.debug(f"{rdtype} lookup failed for {domain}: {e}")
            return None
        except Exception as e:
            logger.warning(f"Unexpected error resolving {rdtype} for {domain}: {e}")
            return None

    def _has_text(self, answers) -> bool:
        records = list(answers) if answers is not None else []
        if not records:
            return False
        if not self.strict_txt:
            return True

        joined = "|".join(
            b"".join(getattr(r, "strings", ())).decode("utf-8", errors="ignore")
            for r in records
        ).lower()
        return any(marker in joined for marker in EMAIL_AUTH_MARKERS)

    def probe(self, domain: str) -> Resolution:
        """Probe a domain. Never raises.

        Args:
            domain: Domain to probe (ASCII/punycode form)

        Returns:
            Resolution with one flag per record type
        """
        a_answers = self._query(domain, "A")
        mx_answers = self._query(domain, "MX")
        txt_answers = self._query(domain, "TXT")

        resolution = Resolution(
            has_address=bool(a_answers is not None and len(list(a_answers)) > 0),
            has_mail_exchange=bool(mx_answers is not None and len(list(mx_answers)) > 0),
            has_text=self._has_text(txt_answers),
        )
        logger.debug(f"Probe {domain}: {resolution.to_dict()}")
        return resolution
