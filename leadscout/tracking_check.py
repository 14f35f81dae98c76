# leadscout/tracking_check.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from leadscout.config import settings
from leadscout.errors import DetectionError
from leadscout.osm_search import BusinessRecord

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str, str], None]


@dataclass
class TrackingResult:
    has_analytics: bool = False
    has_pixel: bool = False
    error: Optional[str] = None


class TrackingChecker:
    """Detects analytics and pixel scripts on a business homepage.

    Matching is plain substring containment over the lowercased body, not an
    HTML parse. Short patterns such as "ga(" and "g-" match far more than real
    tags; that bias toward false positives is intended.
    """

    # Google Analytics / Tag Manager
    ANALYTICS_PATTERNS = (
        "google-analytics.com",
        "googletagmanager.com",
        "gtag(",
        "ga(",
        "_ga",
        "analytics.js",
        "gtm.js",
        "ua-",  # Universal Analytics ID prefix
        "g-",  # GA4 ID prefix
    )

    # Facebook / Meta Pixel
    PIXEL_PATTERNS = (
        "connect.facebook.net",
        "fbq(",
        "facebook pixel",
        "fb-pixel",
        "fbevents.js",
        "pixel/event",
    )

    def __init__(
        self,
        timeout: float = None,
        delay: float = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.detection.page_timeout
        self.delay = settings.search.detection_delay if delay is None else delay
        self._sleep = sleep
        self._transport = transport

    @classmethod
    def scan(cls, html: str) -> TrackingResult:
        """Test a page body against both pattern sets."""
        body = html.lower()
        return TrackingResult(
            has_analytics=any(p in body for p in cls.ANALYTICS_PATTERNS),
            has_pixel=any(p in body for p in cls.PIXEL_PATTERNS),
        )

    async def _fetch_page(self, url: str) -> str:
        """GET the page body; any failure becomes DetectionError."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self._transport
            ) as client:
                response = await client.get(
                    url,
                    headers={"User-Agent": settings.user_agent, "Accept": "text/html,*/*"},
                )
        except httpx.TimeoutException as e:
            raise DetectionError("Request timeout") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DetectionError(str(e) or type(e).__name__) from e

        if response.status_code != 200:
            raise DetectionError(f"HTTP {response.status_code}")
        return response.text

    async def detect(self, url: str) -> TrackingResult:
        """Check one website. Never raises."""
        if not url or not url.strip():
            return TrackingResult(error="No URL")

        url = url.strip()
        if not url.startswith(("http://", "https://")):
            url = f"https://{url}"

        try:
            html = await self._fetch_page(url)
        except DetectionError as e:
            return TrackingResult(error=str(e))
        except Exception as e:
            # Malformed input can fail inside URL parsing before httpx wraps it
            return TrackingResult(error=f"{type(e).__name__}: {e}")

        return self.scan(html)

    async def detect_all(
        self,
        records: list[BusinessRecord],
        on_progress: Optional[ProgressCallback] = None,
        delay: Optional[float] = None,
    ) -> list[BusinessRecord]:
        """Check records one at a time, sleeping `delay` before every fetch.

        Records without a website are marked and skipped without a fetch or a
        delay. `on_progress(done, total, name, status)` fires once per record.
        """
        delay = self.delay if delay is None else delay
        total = len(records)
        for done, record in enumerate(records, 1):
            if not record.website:
                record.tracking = TrackingResult(error="No website")
                status = "skipped (no website)"
            else:
                await self._sleep(delay)
                record.tracking = await self.detect(record.website)
                if record.tracking.error:
                    logger.debug("Check failed for %s: %s", record.website, record.tracking.error)
                    status = f"error: {record.tracking.error}"
                else:
                    status = (
                        f"GA: {'YES' if record.tracking.has_analytics else 'no'}, "
                        f"FB: {'YES' if record.tracking.has_pixel else 'no'}"
                    )

            if on_progress:
                on_progress(done, total, record.name, status)

        return records
