"""Document shapes for monitored domains and impostor records.

Documents are stored as plain dicts; these dataclasses give typed read
access. Writes go through field-merge upserts with only the fields being
changed, never the whole record.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from services.dns_probe import Resolution
from services.rdap_lookup import UNKNOWN_REGISTRATION

__all__ = [
    "MonitoredDomain",
    "ImpostorRecord",
    "Resolution",
    "UNKNOWN_REGISTRATION",
    "utc_now",
    "parse_timestamp",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a stored ISO-8601 timestamp. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class MonitoredDomain:
    domain: str
    watchers: Set[str] = field(default_factory=set)
    claimed: Optional[bool] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, key: str, doc: Dict[str, Any]) -> "MonitoredDomain":
        return cls(
            domain=doc.get("domain") or key,
            watchers=set(doc.get("watchers") or []),
            claimed=doc.get("claimed"),
            created_at=parse_timestamp(doc.get("created_at")),
        )


@dataclass
class ImpostorRecord:
    impostor_domain: str
    original_domain: Optional[str] = None
    confidence: int = 0
    resolution: Resolution = field(default_factory=Resolution)
    first_detected_at: Optional[datetime] = None
    last_scanned_at: Optional[datetime] = None
    next_scan_at: Optional[datetime] = None
    registered_at: Optional[str] = None
    needs_evidence: bool = False
    evidence_url: Optional[str] = None
    flagged_unsafe: bool = False
    manual_rescan_requested: bool = False
    evidence_claimed_at: Optional[datetime] = None
    evidence_attempted: bool = False

    @property
    def is_live(self) -> bool:
        return self.resolution.is_live

    @classmethod
    def from_doc(cls, key: str, doc: Dict[str, Any]) -> "ImpostorRecord":
        return cls(
            impostor_domain=doc.get("impostor_domain") or key,
            original_domain=doc.get("original_domain"),
            confidence=int(doc.get("confidence") or 0),
            resolution=Resolution.from_dict(doc.get("resolution")),
            first_detected_at=parse_timestamp(doc.get("first_detected_at")),
            last_scanned_at=parse_timestamp(doc.get("last_scanned_at")),
            next_scan_at=parse_timestamp(doc.get("next_scan_at")),
            registered_at=doc.get("registered_at"),
            needs_evidence=bool(doc.get("needs_evidence")),
            evidence_url=doc.get("evidence_url"),
            flagged_unsafe=bool(doc.get("flagged_unsafe")),
            manual_rescan_requested=bool(doc.get("manual_rescan_requested")),
            evidence_claimed_at=parse_timestamp(doc.get("evidence_claimed_at")),
            evidence_attempted=bool(doc.get("evidence_attempted")),
        )
