"""Configuration and collaborator construction for impostor monitoring.

Builds the store, probe, lookup, renderer and storage objects from
``my_config`` and injects them into the orchestrator and screenshot queue.
"""

import logging
from datetime import timedelta
from pathlib import Path

from my_config import Config, get_config
from services.dns_probe import ResolutionProbe
from services.document_store import JsonDocumentStore
from services.object_storage import LocalObjectStorage
from services.rdap_lookup import RegistrationLookup
from services.renderer import ChromeRenderer
from src.utils.logging_utils import DetectionLog

from .change_feed import ChangeFeed
from .orchestrator import ScanOrchestrator
from .screenshot_queue import ScreenshotQueueProcessor

logger = logging.getLogger(__name__)

# Name of the collection holding per-job run status for the health endpoint
JOB_STATUS_COLLECTION = "job_status"


def evidence_dir(config: Config) -> Path:
    return Path(config.data_dir) / "evidence"


def build_store(config: Config) -> JsonDocumentStore:
    return JsonDocumentStore(Path(config.data_dir) / "documents")


def build_orchestrator(config: Config, store: JsonDocumentStore) -> ScanOrchestrator:
    return ScanOrchestrator(
        store=store,
        probe=ResolutionProbe(timeout=config.dns_timeout, strict_txt=config.strict_txt_policy),
        lookup=RegistrationLookup(base_url=config.rdap_base_url, timeout=config.rdap_timeout),
        probe_delay=config.probe_delay_ms / 1000.0,
        rescan_window=timedelta(days=config.rescan_window_days),
        sweep_page_size=config.sweep_page_size,
        on_detection=DetectionLog(config.log_dir).record,
    )


def build_screenshot_queue(config: Config, store: JsonDocumentStore) -> ScreenshotQueueProcessor:
    return ScreenshotQueueProcessor(
        store=store,
        renderer=ChromeRenderer(page_load_timeout=config.render_timeout, chrome_binary=config.chrome_binary),
        storage=LocalObjectStorage(evidence_dir(config), config.evidence_base_url),
        lease=timedelta(minutes=config.screenshot_lease_minutes),
    )


class MonitoringContext:
    """Everything one monitoring process needs, wired together."""

    def __init__(self, config: Config = None):
        self.config = config or get_config()
        self.store = build_store(self.config)
        self.orchestrator = build_orchestrator(self.config, self.store)
        self.screenshots = build_screenshot_queue(self.config, self.store)
        self.feed = ChangeFeed(self.store)
        self.orchestrator.register_subscriptions(self.feed)
        logger.info(f"Impostor monitoring initialised (data dir: {self.config.data_dir})")
