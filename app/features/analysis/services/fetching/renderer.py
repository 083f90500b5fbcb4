import logging
import time
from typing import Any, Dict, Optional

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from app.platform.config import settings
from app.platform.exceptions import AnalysisFailed, FetchNetworkError, FetchTimeout

logger = logging.getLogger(__name__)

# Navigation Timing Level 2 with a Level 1 fallback; all values in ms from navigation start
_TIMING_SCRIPT = """
const nav = performance.getEntriesByType('navigation')[0];
const res = performance.getEntriesByType('resource');
const t = performance.timing;
const rel = (v) => (v && t.navigationStart) ? v - t.navigationStart : null;
return {
  ttfbMs: nav ? nav.responseStart : rel(t.responseStart),
  domContentLoadedMs: nav ? nav.domContentLoadedEventEnd : rel(t.domContentLoadedEventEnd),
  loadTimeMs: nav ? nav.loadEventEnd : rel(t.loadEventEnd),
  resourceCount: res.length,
  transferBytes: res.reduce((sum, r) => sum + (r.transferSize || 0), nav ? (nav.transferSize || 0) : 0)
};
"""


class SeleniumRenderer:
    """Renders a page in a fresh headless Chrome session per call."""

    def __init__(self, user_agent: Optional[str] = None, settle_seconds: Optional[float] = None):
        self.user_agent = user_agent or settings.FETCH_USER_AGENT
        self.settle_seconds = settings.FETCH_SETTLE_SECONDS if settle_seconds is None else settle_seconds

    def build_driver(self) -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless=new')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument('--disable-gpu')
        chrome_options.add_argument('--window-size=1920,1080')
        # Each fetch gets its own throwaway profile
        chrome_options.add_argument('--incognito')
        chrome_options.add_argument(f'--user-agent={self.user_agent}')

        if settings.CHROMEDRIVER_PATH:
            driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
            driver = webdriver.Chrome(service=driver_service, options=chrome_options)
        else:
            driver = webdriver.Chrome(options=chrome_options)

        return driver

    def render(self, url: str, timeout: int) -> Dict[str, Any]:
        """
        Load ``url`` and capture DOM, screenshot and navigation timing.

        The driver is always closed before returning.

        Raises:
            FetchTimeout: navigation exceeded ``timeout`` seconds
            FetchNetworkError: the browser could not load the page
            AnalysisFailed: Chrome or chromedriver could not be started
        """
        try:
            driver = self.build_driver()
        except WebDriverException as e:
            # Local browser failure, not the target site's
            raise AnalysisFailed(f"Could not start headless Chrome: {e.msg or e}") from e

        try:
            driver.set_page_load_timeout(timeout)

            start_time = time.time()
            driver.get(url)
            wall_load_ms = (time.time() - start_time) * 1000

            if self.settle_seconds:
                # Give client-side rendering a moment to finish
                time.sleep(self.settle_seconds)

            timing = driver.execute_script(_TIMING_SCRIPT) or {}
            if not timing.get("loadTimeMs"):
                timing["loadTimeMs"] = wall_load_ms

            return {
                "html": driver.page_source,
                "final_url": driver.current_url,
                "title": driver.title or None,
                "screenshot": driver.get_screenshot_as_base64(),
                "timing": timing,
            }

        except TimeoutException as e:
            raise FetchTimeout(f"Timeout loading page after {timeout}s: {e.msg or e}")
        except WebDriverException as e:
            raise FetchNetworkError(f"WebDriver error: {e.msg or e}")
        finally:
            try:
                driver.quit()
            except WebDriverException as e:
                logger.warning(f"Failed to quit WebDriver cleanly: {e}")
