"""Screenshot evidence queue.

Captures a rendered screenshot for impostor records flagged with
``needs_evidence``. One record per tick, one capture in flight per process.

Capture protocol:
    1. Render with Safe Browsing on.
    2. If Safe Browsing blocks the page, mark the record ``flagged_unsafe`` and
       render again with it off so the evidence is still captured.
    3. Any other failure is logged and leaves ``evidence_url`` unset.
    4. On success the PNG is stored and its public URL written to ``evidence_url``.

Claims are leased: claiming writes ``evidence_claimed_at`` and a finished
capture clears it. ``requeue_expired_leases`` puts records back in the queue
when a capture died without finishing (e.g. the process was killed).
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from services.document_store import IMPOSTORS, DocumentStore, Filter
from services.object_storage import LocalObjectStorage, StorageError
from services.renderer import ChromeRenderer, NavigationBlockedError, RenderError

from .models import ImpostorRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_LEASE = timedelta(minutes=15)
SCREENSHOT_CONTENT_TYPE = "image/png"


def evidence_object_name(domain: str, when: datetime) -> str:
    return f"screenshots/{domain}-{int(when.timestamp() * 1000)}.png"


class ScreenshotQueueProcessor:
    """Single-consumer loop over records that need visual evidence."""

    def __init__(
        self,
        store: DocumentStore,
        renderer: ChromeRenderer,
        storage: LocalObjectStorage,
        lease: timedelta = DEFAULT_LEASE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.renderer = renderer
        self.storage = storage
        self.lease = lease
        self.clock = clock
        self._in_flight = threading.Lock()

    def tick(self) -> Optional[Dict[str, Any]]:
        """Process at most one queued record. No-op while another capture is running."""
        if not self._in_flight.acquire(blocking=False):
            logger.debug("Screenshot capture already in progress, skipping tick")
            return None
        try:
            queued = self.store.query(IMPOSTORS, [Filter("needs_evidence", "==", True)], limit=1)
            if not queued:
                return None
            domain, _ = queued[0]
            if not self.claim(domain):
                return None
            return self.capture(domain)
        finally:
            self._in_flight.release()

    def claim(self, domain: str) -> bool:
        """Take a record off the queue before working on it."""
        claimed = self.store.compare_and_set(IMPOSTORS, domain, "needs_evidence", True, {
            "needs_evidence": False,
            "evidence_claimed_at": self.clock(),
            "evidence_attempted": True,
        })
        if not claimed:
            logger.debug(f"{domain} was already claimed for capture")
        return claimed

    def capture(self, domain: str) -> Dict[str, Any]:
        """Run the two-pass capture for a claimed record and persist the outcome."""
        url = f"http://{domain}"
        result: Dict[str, Any] = {"domain": domain, "evidence_url": None, "flagged_unsafe": False}
        logger.info(f"[SCREENSHOT] Capturing {url}")

        try:
            try:
                png = self.renderer.render(url, safety_enabled=True)
            except NavigationBlockedError:
                logger.warning(f"[SCREENSHOT] Safe Browsing blocked {domain}, flagging as unsafe")
                result["flagged_unsafe"] = True
                self.store.upsert(IMPOSTORS, domain, {"flagged_unsafe": True})
                png = self.renderer.render(url, safety_enabled=False)

            object_name = evidence_object_name(domain, self.clock())
            result["evidence_url"] = self.storage.store(png, SCREENSHOT_CONTENT_TYPE, object_name)
        except (RenderError, StorageError) as e:
            logger.warning(f"[SCREENSHOT FAILED] Could not capture {domain}: {e}")
            self.store.upsert(IMPOSTORS, domain, {"evidence_claimed_at": None})
            return result

        self.store.upsert(IMPOSTORS, domain, {
            "evidence_url": result["evidence_url"],
            "evidence_claimed_at": None,
        })
        logger.info(f"[SCREENSHOT] Captured {domain}: {result['evidence_url']}")
        return result

    def requeue_expired_leases(self) -> int:
        """Return records whose capture lease expired without evidence to the queue."""
        cutoff = self.clock() - self.lease
        expired = self.store.query(IMPOSTORS, [Filter("evidence_claimed_at", "<=", cutoff)])
        requeued = 0
        for key, doc in expired:
            if ImpostorRecord.from_doc(key, doc).evidence_url:
                self.store.upsert(IMPOSTORS, key, {"evidence_claimed_at": None})
                continue
            self.store.upsert(IMPOSTORS, key, {"needs_evidence": True, "evidence_claimed_at": None})
            requeued += 1
        if requeued:
            logger.warning(f"Requeued {requeued} screenshot(s) whose capture lease expired")
        return requeued

    def requeue_missing_evidence(self) -> int:
        """Queue every live record that has no evidence and is not queued or leased."""
        candidates = self.store.query(IMPOSTORS, [Filter("needs_evidence", "!=", True)])
        requeued = 0
        for key, doc in candidates:
            record = ImpostorRecord.from_doc(key, doc)
            if not record.is_live or record.evidence_url or record.evidence_claimed_at:
                continue
            logger.info(f"[REQUEUE] {key} (resolving but missing screenshot)")
            self.store.upsert(IMPOSTORS, key, {"needs_evidence": True, "evidence_attempted": False})
            requeued += 1
        logger.info(f"Requeue complete: {len(candidates)} scanned, {requeued} flagged for capture")
        return requeued
