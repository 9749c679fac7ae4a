"""
Feed Fetcher

Downloads external iCal feeds concurrently and parses them into
reservations. A failing source (network error, HTTP error, timeout,
redirect loop, garbage body) is recorded in the FetchSummary and never
aborts the other sources.
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import httpx

from ..config import settings
from ..utils.dates import DateWindow, calendar_day, today
from .ical_parser import FeedParseError, Reservation, parse

logger = logging.getLogger(__name__)

SORT_KEYS = ("start", "end")


@dataclass(frozen=True)
class FeedTarget:
    """What the fetcher needs to know about one feed"""
    property_name: str
    url: str

    @classmethod
    def from_source(cls, source) -> "FeedTarget":
        return cls(property_name=source.property_name, url=source.source_key)


@dataclass
class FetchResult:
    """Outcome of fetching one feed"""
    target: FeedTarget
    success: bool
    reservations: List[Reservation] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class FetchSummary:
    """Aggregated outcome of one fetch over many feeds"""
    total_urls: int = 0
    successful_urls: int = 0
    failed_urls: int = 0
    total_reservations: int = 0
    filtered_reservations: int = 0
    errors: List[str] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)

    def record(self, result: FetchResult):
        if result.success:
            self.successful_urls += 1
            self.total_reservations += len(result.reservations)
        else:
            self.failed_urls += 1
            self.failed_sources.append(result.target.url)
            self.errors.append(f"Error for {result.target.property_name}: {result.error}")

    def to_dict(self) -> Dict:
        return asdict(self)


def sort_reservations(reservations: List[Reservation], sort_by: str = "end") -> List[Reservation]:
    if sort_by not in SORT_KEYS:
        raise ValueError(f"sort_by must be one of {SORT_KEYS}")
    if sort_by == "start":
        return sorted(reservations, key=lambda r: (r.start, r.end))
    return sorted(reservations, key=lambda r: (r.end, r.start))


class FeedFetcher:
    """
    Concurrent iCal downloader.

    Usage:
        fetcher = FeedFetcher()
        reservations, summary = await fetcher.fetch_reservations(targets, days_ahead=35)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout or settings.feed_timeout_seconds
        self.max_redirects = max_redirects if max_redirects is not None else settings.feed_max_redirects
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=self.max_redirects,
            headers={"User-Agent": settings.feed_user_agent, "Accept": "text/calendar, */*"},
            transport=self.transport,
        )

    async def _fetch_one(self, client: httpx.AsyncClient, target: FeedTarget) -> FetchResult:
        try:
            response = await client.get(target.url)
            response.raise_for_status()
            reservations = parse(response.text, target.url, target.property_name)
        except httpx.TimeoutException:
            logger.warning(f"Feed timed out after {self.timeout}s: {target.url}")
            return FetchResult(target=target, success=False, error=f"timeout after {self.timeout}s")
        except httpx.TooManyRedirects:
            logger.warning(f"Feed exceeded {self.max_redirects} redirects: {target.url}")
            return FetchResult(target=target, success=False, error="too many redirects")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Feed returned HTTP {e.response.status_code}: {target.url}")
            return FetchResult(target=target, success=False, error=f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Feed request failed for {target.url}: {e}")
            return FetchResult(target=target, success=False, error=str(e) or e.__class__.__name__)
        except FeedParseError as e:
            logger.warning(str(e))
            return FetchResult(target=target, success=False, error=str(e))

        logger.debug(f"Fetched {len(reservations)} events from {target.property_name}")
        return FetchResult(target=target, success=True, reservations=reservations)

    async def fetch_all(self, targets: Iterable[FeedTarget]) -> Tuple[List[Reservation], FetchSummary]:
        """Fetch and parse every feed; no filtering or sorting"""
        targets = list(targets)
        summary = FetchSummary(total_urls=len(targets))
        if not targets:
            return [], summary

        async with self._client() as client:
            results = await asyncio.gather(
                *(self._fetch_one(client, t) for t in targets),
                return_exceptions=True
            )

        reservations: List[Reservation] = []
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error fetching {target.url}: {result}")
                result = FetchResult(target=target, success=False, error=str(result))
            summary.record(result)
            reservations.extend(result.reservations)

        return reservations, summary

    async def fetch_reservations(
        self,
        targets: Iterable[FeedTarget],
        days_ahead: int,
        sort_by: str = "end",
        first_day: Optional[date] = None
    ) -> Tuple[List[Reservation], FetchSummary]:
        """Reservations whose checkout day falls in [today, today + days_ahead]"""
        first_day = first_day or today()
        last_day = first_day + timedelta(days=days_ahead)

        reservations, summary = await self.fetch_all(targets)
        filtered = [r for r in reservations if first_day <= calendar_day(r.end) <= last_day]
        summary.filtered_reservations = len(filtered)
        return sort_reservations(filtered, sort_by), summary

    async def fetch_reservations_in_range(
        self,
        targets: Iterable[FeedTarget],
        window: DateWindow,
        sort_by: str = "end"
    ) -> Tuple[List[Reservation], FetchSummary]:
        """Reservations overlapping the window (start <= to and end >= from)"""
        reservations, summary = await self.fetch_all(targets)
        filtered = [r for r in reservations if window.overlaps(r.start, r.end)]
        summary.filtered_reservations = len(filtered)
        return sort_reservations(filtered, sort_by), summary
