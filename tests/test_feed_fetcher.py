"""
Tests for the concurrent feed fetcher

HTTP is served by httpx.MockTransport, so no network is touched.
"""

import asyncio
import pytest
from datetime import date, datetime

import httpx

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import ics, all_day_event

from app.services.feed_fetcher import FeedFetcher, FeedTarget, sort_reservations
from app.services.ical_parser import Reservation
from app.utils.dates import DateWindow

GOOD = "https://feeds.example.com/good.ics"
BROKEN = "https://feeds.example.com/broken.ics"

GOOD_FEED = ics(
    all_day_event("a@x", "20300110", "20300115"),
    all_day_event("b@x", "20300101", "20300105"),
    all_day_event("c@x", "20300301", "20300303"),
)


def fetcher_for(routes):
    """Build a fetcher whose transport answers from a {url: handler} map"""
    def handler(request: httpx.Request) -> httpx.Response:
        route = routes[str(request.url)]
        if callable(route):
            return route(request)
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)
    return FeedFetcher(timeout=5, max_redirects=2, transport=httpx.MockTransport(handler))


class TestFetchAll:
    """Per-source isolation"""

    def test_successful_feed_parsed(self):
        fetcher = fetcher_for({GOOD: httpx.Response(200, text=GOOD_FEED)})
        reservations, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 1", GOOD)]))

        assert len(reservations) == 3
        assert all(r.property_name == "Apt 1" for r in reservations)
        assert summary.total_urls == 1
        assert summary.successful_urls == 1
        assert summary.failed_urls == 0
        assert summary.total_reservations == 3

    def test_http_error_recorded_and_other_feeds_survive(self):
        fetcher = fetcher_for({
            GOOD: httpx.Response(200, text=GOOD_FEED),
            BROKEN: httpx.Response(503, text="down"),
        })
        targets = [FeedTarget("Apt 1", GOOD), FeedTarget("Apt 2", BROKEN)]
        reservations, summary = asyncio.run(fetcher.fetch_all(targets))

        assert len(reservations) == 3
        assert summary.successful_urls == 1
        assert summary.failed_urls == 1
        assert summary.failed_sources == [BROKEN]
        assert summary.errors == ["Error for Apt 2: HTTP 503"]

    def test_timeout_recorded(self):
        def timeout(request):
            raise httpx.ReadTimeout("timed out", request=request)

        fetcher = fetcher_for({BROKEN: timeout})
        _, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 2", BROKEN)]))

        assert summary.failed_urls == 1
        assert "timeout" in summary.errors[0]

    def test_redirect_loop_recorded(self):
        fetcher = fetcher_for({BROKEN: httpx.Response(302, headers={"Location": BROKEN})})
        _, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 2", BROKEN)]))

        assert summary.failed_urls == 1
        assert summary.errors == ["Error for Apt 2: too many redirects"]

    def test_redirect_followed(self):
        fetcher = fetcher_for({
            BROKEN: httpx.Response(301, headers={"Location": GOOD}),
            GOOD: httpx.Response(200, text=GOOD_FEED),
        })
        reservations, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 1", BROKEN)]))

        assert summary.successful_urls == 1
        # The configured URL stays the source identity
        assert {r.source for r in reservations} == {BROKEN}

    def test_non_calendar_body_is_a_source_failure(self):
        fetcher = fetcher_for({BROKEN: httpx.Response(200, text="<html>login</html>")})
        reservations, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 2", BROKEN)]))

        assert reservations == []
        assert summary.failed_urls == 1

    def test_broken_event_does_not_fail_the_feed(self):
        body = ics(
            all_day_event("ok@x", "20300110", "20300112"),
            "UID:bad@x\nDTSTART:notadate",
            "UID:worse@x\nDTSTART:20300110T150000Z\nDTEND:garbage",
        )
        fetcher = fetcher_for({GOOD: httpx.Response(200, text=body)})
        reservations, summary = asyncio.run(fetcher.fetch_all([FeedTarget("Apt 1", GOOD)]))

        assert sorted(r.uid for r in reservations) == ["ok@x", "worse@x"]
        assert summary.successful_urls == 1
        assert summary.failed_urls == 0

    def test_no_targets(self):
        reservations, summary = asyncio.run(FeedFetcher().fetch_all([]))
        assert reservations == []
        assert summary.total_urls == 0


class TestFiltering:
    """Window filters and sorting"""

    def test_fetch_reservations_filters_by_checkout_day(self):
        fetcher = fetcher_for({GOOD: httpx.Response(200, text=GOOD_FEED)})
        reservations, summary = asyncio.run(fetcher.fetch_reservations(
            [FeedTarget("Apt 1", GOOD)], days_ahead=10, first_day=date(2030, 1, 5)
        ))

        # b ends Jan 5, a ends Jan 15, c ends in March
        assert [r.uid for r in reservations] == ["b@x", "a@x"]
        assert summary.filtered_reservations == 2

    def test_fetch_in_range_uses_overlap(self):
        fetcher = fetcher_for({GOOD: httpx.Response(200, text=GOOD_FEED)})
        window = DateWindow.from_days(date(2030, 1, 12), date(2030, 1, 13))
        reservations, _ = asyncio.run(fetcher.fetch_reservations_in_range([FeedTarget("Apt 1", GOOD)], window))

        assert [r.uid for r in reservations] == ["a@x"]

    def test_sort_by_start(self):
        items = [
            Reservation("x", "s", datetime(2030, 1, 5), datetime(2030, 1, 20)),
            Reservation("y", "s", datetime(2030, 1, 1), datetime(2030, 1, 30)),
        ]
        assert [r.uid for r in sort_reservations(items, "start")] == ["y", "x"]
        assert [r.uid for r in sort_reservations(items, "end")] == ["x", "y"]

    def test_sort_by_unknown_key_rejected(self):
        with pytest.raises(ValueError):
            sort_reservations([], "summary")
