import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env (project root). Variables already set in
# the process environment win over the file.
ROOT_DIR = Path(__file__).parent

env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file, override=False)


def _env_bool(name: str, default: str = "False") -> bool:
    return str(os.environ.get(name, default)).lower() == "true"


def get_config():
    return Config(
        data_dir=os.environ.get("IMPOSTOR_DATA_DIR", str(ROOT_DIR / "data" / "transient" / "impostor_monitoring")),
        probe_delay_ms=int(os.environ.get("IMPOSTOR_PROBE_DELAY_MS", "200")),
        rescan_window_days=int(os.environ.get("IMPOSTOR_RESCAN_WINDOW_DAYS", "7")),
        sweep_page_size=int(os.environ.get("IMPOSTOR_SWEEP_PAGE_SIZE", "500")),
        sweep_interval_minutes=int(os.environ.get("IMPOSTOR_SWEEP_INTERVAL_MINUTES", "60")),
        screenshot_interval_seconds=int(os.environ.get("IMPOSTOR_SCREENSHOT_INTERVAL_SECONDS", "60")),
        change_poll_seconds=int(os.environ.get("IMPOSTOR_CHANGE_POLL_SECONDS", "10")),
        screenshot_lease_minutes=int(os.environ.get("IMPOSTOR_SCREENSHOT_LEASE_MINUTES", "15")),
        dns_timeout=float(os.environ.get("IMPOSTOR_DNS_TIMEOUT", "3.0")),
        rdap_base_url=os.environ.get("IMPOSTOR_RDAP_BASE_URL", "https://rdap.org/domain/"),
        rdap_timeout=int(os.environ.get("IMPOSTOR_RDAP_TIMEOUT", "10")),
        render_timeout=int(os.environ.get("IMPOSTOR_RENDER_TIMEOUT", "15")),
        chrome_binary=os.environ.get("IMPOSTOR_CHROME_BINARY"),
        evidence_base_url=os.environ.get("IMPOSTOR_EVIDENCE_BASE_URL", "http://localhost:8080/evidence"),
        web_server_port=int(os.environ.get("WEB_SERVER_PORT", "8080")),
        web_server_debug_mode_on=_env_bool("WEB_SERVER_DEBUG_MODE_ON"),
        strict_txt_policy=_env_bool("IMPOSTOR_STRICT_TXT"),
        log_dir=os.environ.get("IMPOSTOR_LOG_DIR", "logs"),
    )


@dataclass
class Config:
    """Configuration settings for the impostor monitoring process."""
    data_dir: str = "data/transient/impostor_monitoring"
    probe_delay_ms: int = 200
    rescan_window_days: int = 7
    sweep_page_size: int = 500
    sweep_interval_minutes: int = 60
    screenshot_interval_seconds: int = 60
    change_poll_seconds: int = 10
    screenshot_lease_minutes: int = 15
    dns_timeout: float = 3.0
    rdap_base_url: str = "https://rdap.org/domain/"
    rdap_timeout: int = 10
    render_timeout: int = 15
    chrome_binary: Optional[str] = None
    evidence_base_url: str = "http://localhost:8080/evidence"
    web_server_port: int = 8080
    web_server_debug_mode_on: bool = False
    strict_txt_policy: bool = False
    log_dir: str = "logs"
