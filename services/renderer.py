"""Headless Chrome Renderer.

Navigates to a URL in headless Chrome through Selenium and returns a PNG
screenshot. Chrome can run with Safe Browsing on or off; when it is on and
Safe Browsing blocks the navigation, ``NavigationBlockedError`` is raised so
callers can flag the site and retry with protection disabled.
"""

import logging
from typing import Callable, Optional

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options

logger = logging.getLogger(__name__)

WINDOW_SIZE = "1280,800"

# Navigation error codes that mean the browser itself refused the page
BLOCKED_ERROR_CODES = ("ERR_BLOCKED_BY_CLIENT",)

# True only on Chrome's own Safe Browsing interstitial, which tags its body
# and carries the "proceed anyway" link. Page text is never inspected.
INTERSTITIAL_SCRIPT = (
    "return !!(document.body"
    " && document.body.classList.contains('safe-browsing')"
    " && document.getElementById('proceed-link'));"
)

UNSAFE_SWITCHES = (
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process,SafeBrowsing",
    "--safebrowsing-disable-auto-update",
    "--safebrowsing-disable-download-protection",
    "--disable-client-side-phishing-detection",
)


class RenderError(Exception):
    """Navigation or capture failed (timeout, DNS failure, crashed browser, ...)."""
    pass


class NavigationBlockedError(RenderError):
    """The browser's safety classifier blocked the navigation."""
    pass


def build_options(safety_enabled: bool, chrome_binary: Optional[str] = None) -> Options:
    """Chrome options for one capture pass."""
    options = Options()
    options.add_argument("--headless=new")
    options.add_argument(f"--window-size={WINDOW_SIZE}")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-setuid-sandbox")
    options.add_argument("--disable-gpu")
    options.add_argument("--disable-dev-shm-usage")
    options.add_experimental_option('excludeSwitches', ['enable-logging'])

    if safety_enabled:
        options.add_experimental_option("prefs", {"safebrowsing.enabled": True})
    else:
        for switch in UNSAFE_SWITCHES:
            options.add_argument(switch)
        options.add_experimental_option("prefs", {"safebrowsing.enabled": False})

    if chrome_binary:
        options.binary_location = chrome_binary
    return options


def _is_blocked_message(message: str) -> bool:
    return any(code in (message or "") for code in BLOCKED_ERROR_CODES)


def _interstitial_shown(driver) -> bool:
    try:
        return driver.execute_script(INTERSTITIAL_SCRIPT) is True
    except WebDriverException as e:
        logger.debug(f"Could not inspect page for a Safe Browsing interstitial: {e}")
        return False


class ChromeRenderer:
    """Renders pages with a fresh headless Chrome per capture pass."""

    def __init__(self, page_load_timeout: int = 15, chrome_binary: Optional[str] = None,
                 driver_factory: Optional[Callable[[Options], webdriver.Chrome]] = None):
        self.page_load_timeout = page_load_timeout
        self.chrome_binary = chrome_binary
        self.driver_factory = driver_factory or (lambda options: webdriver.Chrome(options=options))

    def render(self, url: str, safety_enabled: bool = True) -> bytes:
        """Navigate to ``url`` and return a PNG of the viewport.

        Raises:
            NavigationBlockedError: Safe Browsing blocked the page (only with safety enabled)
            RenderError: any other navigation or capture failure
        """
        options = build_options(safety_enabled, self.chrome_binary)
        try:
            driver = self.driver_factory(options)
        except WebDriverException as e:
            raise RenderError(f"Could not start Chrome: {e.msg or e}") from e

        try:
            driver.set_page_load_timeout(self.page_load_timeout)
            try:
                driver.get(url)
            except TimeoutException as e:
                raise RenderError(f"Timed out loading {url} after {self.page_load_timeout}s") from e
            except WebDriverException as e:
                message = e.msg or str(e)
                if safety_enabled and _is_blocked_message(message):
                    raise NavigationBlockedError(f"Safe Browsing blocked {url}") from e
                raise RenderError(f"Navigation to {url} failed: {message}") from e

            if safety_enabled and _interstitial_shown(driver):
                raise NavigationBlockedError(f"Safe Browsing interstitial shown for {url}")

            try:
                png = driver.get_screenshot_as_png()
            except WebDriverException as e:
                raise RenderError(f"Screenshot of {url} failed: {e.msg or e}") from e
            logger.debug(f"Rendered {url} ({len(png)} bytes, safety={'on' if safety_enabled else 'off'})")
            return png
        finally:
            try:
                driver.quit()
            except WebDriverException as e:
                logger.debug(f"Error closing Chrome: {e}")
