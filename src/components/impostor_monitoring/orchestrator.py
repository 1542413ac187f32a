"""Impostor scan orchestration.

Drives variant generation and DNS probing for monitored domains and keeps
every impostor record on a staggered rescan schedule.

Triggers:
    A/B  A monitored domain whose ``claimed`` flag is not true (new domain, or
         an operator reset it for regeneration). The domain is claimed first,
         then every generated candidate is probed and upserted.
    C    An impostor record with ``manual_rescan_requested`` set. The flag is
         cleared first, then the record is probed and rescheduled.
    D    Periodic sweep of records whose ``next_scan_at`` has passed, bounded
         to one page per run.

Probing is sequential with a fixed delay between candidates to keep the
query rate against DNS infrastructure bounded. A failure on one candidate is
logged and skipped; losing the document store aborts the whole run. An
aborted generation releases its claim so the next feed poll starts it over.
"""

import logging
import random
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from services.dns_probe import Resolution, ResolutionProbe
from services.document_store import (
    IMPOSTORS, MONITORED_DOMAINS, DocumentStore, Filter, StoreUnavailableError,
)
from services.rdap_lookup import RegistrationLookup

from .change_feed import ChangeFeed
from .models import MonitoredDomain, parse_timestamp, utc_now
from .variant_generator import ImpostorCandidate, generate_impostors, normalize_domain

logger = logging.getLogger(__name__)

DEFAULT_PROBE_DELAY = 0.2
DEFAULT_RESCAN_WINDOW = timedelta(days=7)
DEFAULT_SWEEP_PAGE_SIZE = 500

# next_scan_at is always at least this far ahead of the write
MIN_RESCAN_DELAY = timedelta(seconds=1)


class ScanOrchestrator:
    """Schedules, deduplicates and records impostor scans."""

    def __init__(
        self,
        store: DocumentStore,
        probe: ResolutionProbe,
        lookup: RegistrationLookup,
        probe_delay: float = DEFAULT_PROBE_DELAY,
        rescan_window: timedelta = DEFAULT_RESCAN_WINDOW,
        sweep_page_size: int = DEFAULT_SWEEP_PAGE_SIZE,
        generator: Callable[[str], list] = generate_impostors,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        on_detection: Optional[Callable[[Dict[str, Any]], Any]] = None,
    ):
        self.store = store
        self.probe = probe
        self.lookup = lookup
        self.probe_delay = probe_delay
        self.rescan_window = rescan_window
        self.sweep_page_size = sweep_page_size
        self.generator = generator
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.on_detection = on_detection

    # ------------------------------------------------------------------
    # Monitored domain management
    # ------------------------------------------------------------------

    def add_monitored_domain(self, domain: str, watcher: str) -> Dict[str, Any]:
        """Start monitoring a domain for a watcher, or add the watcher to an existing one.

        New domains are written with ``claimed = False`` so the change feed picks
        them up for generation. Existing domains keep their claim state.
        """
        normalized = normalize_domain(domain)
        if len(normalized.split('.')) < 2 or not all(normalized.split('.')):
            raise ValueError(f"Not a registrable domain: {domain!r}")
        domain = normalized
        if not watcher:
            raise ValueError("A watcher is required")

        existing = self.store.get(MONITORED_DOMAINS, domain)
        if existing is None:
            logger.info(f"Now monitoring {domain} for {watcher}")
            return self.store.upsert(MONITORED_DOMAINS, domain, {
                "domain": domain,
                "watchers": [watcher],
                "claimed": False,
                "created_at": self.clock(),
            })

        watchers = MonitoredDomain.from_doc(domain, existing).watchers
        if watcher in watchers:
            return existing
        watchers.add(watcher)
        logger.info(f"Added watcher {watcher} to {domain}")
        return self.store.upsert(MONITORED_DOMAINS, domain, {"watchers": sorted(watchers)})

    def remove_watcher(self, domain: str, watcher: str) -> bool:
        """Remove a watcher. The domain stops being monitored when nobody watches it.

        Impostor records already generated for the domain are kept.

        Returns:
            True if the monitored domain was deleted
        """
        domain = normalize_domain(domain)
        existing = self.store.get(MONITORED_DOMAINS, domain)
        if existing is None:
            return False

        watchers = MonitoredDomain.from_doc(domain, existing).watchers
        watchers.discard(watcher)
        if watchers:
            self.store.upsert(MONITORED_DOMAINS, domain, {"watchers": sorted(watchers)})
            return False

        self.store.delete(MONITORED_DOMAINS, domain)
        logger.info(f"Stopped monitoring {domain} (no watchers left)")
        return True

    def request_regeneration(self, domain: str) -> bool:
        """Reset the claim so generation and the initial scan run again (trigger B)."""
        domain = normalize_domain(domain)
        if self.store.get(MONITORED_DOMAINS, domain) is None:
            return False
        self.store.upsert(MONITORED_DOMAINS, domain, {"claimed": False})
        logger.info(f"Regeneration requested for {domain}")
        return True

    def request_rescan(self, impostor_domain: str) -> bool:
        """Flag one impostor record for an on-demand rescan (trigger C)."""
        impostor_domain = normalize_domain(impostor_domain)
        if self.store.get(IMPOSTORS, impostor_domain) is None:
            return False
        self.store.upsert(IMPOSTORS, impostor_domain, {"manual_rescan_requested": True})
        return True

    # ------------------------------------------------------------------
    # Change feed wiring
    # ------------------------------------------------------------------

    def register_subscriptions(self, feed: ChangeFeed) -> None:
        feed.subscribe(
            "monitored-domain-generation",
            MONITORED_DOMAINS,
            [Filter("claimed", "!=", True)],
            self.handle_monitored_domain,
        )
        feed.subscribe(
            "manual-rescan",
            IMPOSTORS,
            [Filter("manual_rescan_requested", "==", True)],
            self.handle_rescan_request,
        )

    # ------------------------------------------------------------------
    # Scheduling helpers
    # ------------------------------------------------------------------

    def next_scan_time(self, now: datetime) -> datetime:
        """Random point in ``[now, now + rescan_window)``, never closer than MIN_RESCAN_DELAY."""
        window = self.rescan_window.total_seconds()
        offset = self.rng.random() * window
        offset = max(offset, min(MIN_RESCAN_DELAY.total_seconds(), window / 2))
        return now + timedelta(seconds=offset)

    def _pause(self, index: int) -> None:
        if index > 0 and self.probe_delay > 0:
            self.sleep(self.probe_delay)

    # ------------------------------------------------------------------
    # Trigger A / B: generation and initial scan
    # ------------------------------------------------------------------

    def claim_domain(self, key: str, doc: Dict[str, Any]) -> bool:
        """Flip ``claimed`` to true if nobody else has. Returns True if we own the run."""
        current = doc.get("claimed")
        if current is True:
            return False
        return self.store.compare_and_set(
            MONITORED_DOMAINS, key, "claimed", current,
            {"claimed": True, "claimed_at": self.clock()},
        )

    def handle_monitored_domain(self, key: str, doc: Dict[str, Any]) -> Optional[Dict[str, int]]:
        """Change-feed handler for unclaimed monitored domains."""
        if not self.claim_domain(key, doc):
            logger.debug(f"{key} already claimed, skipping generation")
            return None
        try:
            return self.generate_and_scan(doc.get("domain") or key)
        except StoreUnavailableError:
            self.release_claim(key)
            raise

    def release_claim(self, key: str) -> bool:
        """Hand an aborted generation back to the change feed so it runs again from scratch."""
        try:
            released = self.store.compare_and_set(MONITORED_DOMAINS, key, "claimed", True, {"claimed": False})
        except StoreUnavailableError as e:
            logger.error(f"Could not release claim on {key}, use --regenerate once the store is back: {e}")
            return False
        if released:
            logger.warning(f"Generation for {key} aborted, claim released for retry")
        return released

    def generate_and_scan(self, domain: str) -> Dict[str, int]:
        """Generate every candidate for a domain and probe each one once.

        Raises:
            StoreUnavailableError: the store was lost mid-run
        """
        candidates = self.generator(domain)
        logger.info(f"Scanning {len(candidates)} impostor candidates for {domain}")
        summary = {"candidates": len(candidates), "live": 0, "newly_live": 0, "errors": 0}

        for index, candidate in enumerate(candidates):
            self._pause(index)
            try:
                resolution, newly_live = self._scan_candidate(domain, candidate)
            except StoreUnavailableError:
                raise
            except Exception as e:
                summary["errors"] += 1
                logger.error(f"Scan failed for {candidate.impostor}: {e}")
                continue
            if resolution.is_live:
                summary["live"] += 1
            if newly_live:
                summary["newly_live"] += 1

        logger.info(
            f"Generation for {domain} complete: {summary['candidates']} candidates, "
            f"{summary['live']} live ({summary['newly_live']} new), {summary['errors']} errors"
        )
        return summary

    def _scan_candidate(self, domain: str, candidate: ImpostorCandidate):
        existing = self.store.get(IMPOSTORS, candidate.impostor) or {}
        resolution = self.probe.probe(candidate.impostor)
        now = self.clock()

        fields: Dict[str, Any] = {
            "impostor_domain": candidate.impostor,
            "original_domain": domain,
            "confidence": candidate.confidence,
            "resolution": resolution.to_dict(),
            "last_scanned_at": now,
            "next_scan_at": self.next_scan_time(now),
        }
        newly_live = self._apply_first_detection(candidate.impostor, existing, resolution, now, fields)
        doc = self.store.upsert(IMPOSTORS, candidate.impostor, fields)
        if newly_live:
            self._notify_detection(doc)
        return resolution, newly_live

    def _apply_first_detection(self, impostor: str, existing: Dict[str, Any], resolution: Resolution,
                               now: datetime, fields: Dict[str, Any]) -> bool:
        """Add first-detection fields when a record is seen live for the first time."""
        if not resolution.is_live or parse_timestamp(existing.get("first_detected_at")):
            return False

        logger.warning(f"[ALERT] Resolving impostor found: {impostor} | records: {resolution.to_dict()}")
        fields["first_detected_at"] = now
        fields["needs_evidence"] = True
        if not existing.get("registered_at"):
            fields["registered_at"] = self.lookup.lookup(impostor)
        return True

    def _notify_detection(self, doc: Dict[str, Any]) -> None:
        if self.on_detection is not None:
            self.on_detection(doc)

    # ------------------------------------------------------------------
    # Trigger C / D: rescans
    # ------------------------------------------------------------------

    def rescan(self, key: str, doc: Dict[str, Any]) -> Resolution:
        """Probe an existing record once and reschedule it."""
        resolution = self.probe.probe(key)
        now = self.clock()
        fields: Dict[str, Any] = {
            "resolution": resolution.to_dict(),
            "last_scanned_at": now,
            "next_scan_at": self.next_scan_time(now),
        }
        if not doc.get("impostor_domain"):
            fields["impostor_domain"] = key
        newly_live = self._apply_first_detection(key, doc, resolution, now, fields)
        updated = self.store.upsert(IMPOSTORS, key, fields)
        if newly_live:
            self._notify_detection(updated)
        return resolution

    def handle_rescan_request(self, key: str, doc: Dict[str, Any]) -> Optional[Resolution]:
        """Change-feed handler for ``manual_rescan_requested`` records."""
        cleared = self.store.compare_and_set(
            IMPOSTORS, key, "manual_rescan_requested", True, {"manual_rescan_requested": False},
        )
        if not cleared:
            logger.debug(f"Rescan request for {key} already taken")
            return None
        logger.info(f"On-demand rescan of {key}")
        return self.rescan(key, doc)

    def run_due_sweep(self) -> Dict[str, int]:
        """Rescan records whose ``next_scan_at`` has passed, at most one page per call.

        Raises:
            StoreUnavailableError: the store could not be queried or written
        """
        now = self.clock()
        due = self.store.query(
            IMPOSTORS,
            [Filter("next_scan_at", "<=", now)],
            limit=self.sweep_page_size,
            order_by="next_scan_at",
        )
        logger.info(f"Due-rescan sweep: {len(due)} record(s) due (page size {self.sweep_page_size})")
        summary = {"due": len(due), "scanned": 0, "live": 0, "errors": 0}

        for index, (key, doc) in enumerate(due):
            self._pause(index)
            try:
                resolution = self.rescan(key, doc)
            except StoreUnavailableError:
                raise
            except Exception as e:
                summary["errors"] += 1
                logger.error(f"Rescan failed for {key}: {e}")
                continue
            summary["scanned"] += 1
            if resolution.is_live:
                summary["live"] += 1

        logger.info(
            f"Due-rescan sweep complete: {summary['scanned']}/{summary['due']} scanned, "
            f"{summary['live']} live, {summary['errors']} errors"
        )
        return summary
