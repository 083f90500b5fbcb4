import logging
import time
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from app.features.analysis.schemas.pipeline import FetchArtifact, FetchTiming
from app.features.analysis.services.fetching.renderer import SeleniumRenderer
from app.platform.config import settings
from app.platform.exceptions import FetchHttpError, FetchNetworkError, FetchTimeout

logger = logging.getLogger(__name__)

KEPT_HEADERS = (
    "content-type",
    "content-encoding",
    "cache-control",
    "expires",
    "etag",
    "last-modified",
    "x-robots-tag",
)
MAX_META_FILE_BYTES = 100_000


class PageFetcher:
    """
    Produces the FetchArtifact for one URL.

    An HTTP request (httpx) establishes reachability, the response status and
    headers; the page is then rendered in a headless browser for the DOM,
    screenshot and timing. With ``FETCH_RENDERER=http`` the HTTP body is used
    as the DOM and no screenshot is taken.
    """

    def __init__(
        self,
        renderer: Optional[Any] = None,
        mode: Optional[str] = None,
        timeout: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.mode = mode or settings.FETCH_RENDERER
        self.timeout = timeout or settings.FETCH_TIMEOUT_SECONDS
        self.renderer = renderer or (SeleniumRenderer() if self.mode == "selenium" else None)
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": settings.FETCH_USER_AGENT},
            transport=self.transport,
        )

    def fetch(self, request_id: str, url: str) -> FetchArtifact:
        """
        Raises:
            FetchHttpError: the target answered 4xx/5xx (terminal)
            FetchTimeout / FetchNetworkError: transient, the caller may retry
        """
        with self._client() as client:
            response, elapsed_ms = self._get_document(client, url)

            if self.renderer is not None:
                rendered = self.renderer.render(str(response.url), self.timeout)
            else:
                rendered = self._from_response(response, elapsed_ms)

            robots_txt = self._get_meta_file(client, urljoin(str(response.url), "/robots.txt"))
            sitemap_xml = self._get_meta_file(client, urljoin(str(response.url), "/sitemap.xml"))

        headers = {name: response.headers[name] for name in KEPT_HEADERS if name in response.headers}

        return FetchArtifact(
            request_id=request_id,
            url=url,
            final_url=rendered.get("final_url") or str(response.url),
            status_code=response.status_code,
            title=rendered.get("title"),
            dom_snapshot=rendered.get("html") or "",
            screenshot=rendered.get("screenshot"),
            timing=FetchTiming.model_validate(rendered.get("timing") or {}),
            headers=headers,
            robots_txt=robots_txt,
            sitemap_xml=sitemap_xml,
            fetched_at=time.time(),
        )

    @staticmethod
    def _get_document(client: httpx.Client, url: str) -> Tuple[httpx.Response, float]:
        """The document response and the wall-clock milliseconds it took."""
        start = time.monotonic()
        try:
            response = client.get(url)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timeout fetching {url}: {e}")
        except httpx.TransportError as e:
            raise FetchNetworkError(f"Network error fetching {url}: {e}")

        if response.status_code >= 400:
            raise FetchHttpError(response.status_code)
        return response, (time.monotonic() - start) * 1000

    @staticmethod
    def _from_response(response: httpx.Response, elapsed_ms: float) -> Dict[str, Any]:
        soup = BeautifulSoup(response.text, "html.parser")
        return {
            "html": response.text,
            "final_url": str(response.url),
            "title": soup.title.get_text(strip=True) if soup.title else None,
            "screenshot": None,
            "timing": {
                "loadTimeMs": elapsed_ms,
                "transferBytes": len(response.content),
            },
        }

    @staticmethod
    def _get_meta_file(client: httpx.Client, url: str) -> Optional[str]:
        """robots.txt / sitemap.xml, best effort."""
        try:
            response = client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return None
        if response.status_code != 200:
            return None
        return response.text[:MAX_META_FILE_BYTES]
