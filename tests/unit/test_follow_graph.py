import asyncio

import httpx
import pytest

from core.errors import (
    ProviderError,
    ProviderThrottled,
    ProviderTimeout,
    ProviderUnavailable,
    ValidationError,
)
from helpers import follow_page
from ingestion.follow_graph import FollowGraphFetcher

URL = "https://follow-graph.test/v2/following"


def _fetcher(handler, sleep, **kwargs) -> FollowGraphFetcher:
    kwargs.setdefault("clock", lambda: 0.0)
    kwargs.setdefault("wall_clock", lambda: 1000.0)
    return FollowGraphFetcher(
        url=URL,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        **kwargs,
    )


def _paged_handler(pages, seen=None):
    """Serve pages[i] for cursor 'c{i}' (page 0 has no cursor)."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(dict(request.url.params))
        cursor = request.url.params.get("cursor")
        index = 0 if cursor is None else int(cursor[1:])
        return httpx.Response(200, json=pages[index])

    return handler


class TestPagination:
    def test_collects_every_page_in_order(self, sleep) -> None:
        pages = [
            follow_page(range(1, 101), cursor="c1"),
            follow_page(range(101, 201), cursor="c2"),
            follow_page(range(201, 301), cursor="c3"),
            follow_page([]),
        ]
        seen = []
        fetcher = _fetcher(_paged_handler(pages, seen), sleep)

        accounts = asyncio.run(fetcher.fetch_all_following(42))

        assert len(accounts) == 300
        assert [a.id for a in accounts] == list(range(1, 301))
        assert [p.get("cursor") for p in seen] == [None, "c1", "c2", "c3"]
        assert all(p["fid"] == "42" and p["limit"] == "100" for p in seen)

    def test_maps_user_fields(self, sleep) -> None:
        fetcher = _fetcher(_paged_handler([follow_page([7])]), sleep)

        account = asyncio.run(fetcher.fetch_all_following(1))[0]

        assert account.id == 7
        assert account.handle == "user7"
        assert account.display_name == "User Number 7"
        assert account.avatar_url == "https://img.example/7.png"
        assert account.bio == "bio of 7"

    def test_missing_user_fields_fall_back(self, sleep) -> None:
        page = {"result": {"users": [{"fid": 9}]}}
        fetcher = _fetcher(lambda request: httpx.Response(200, json=page), sleep)

        account = asyncio.run(fetcher.fetch_all_following(1))[0]

        assert account.handle == "fid:9"
        assert account.display_name == "User 9"
        assert account.avatar_url == ""
        assert account.bio == ""

    def test_user_without_fid_is_skipped(self, sleep) -> None:
        page = {"result": {"users": [{"fid": 1}, {"username": "ghost"}, {"fid": "x"}]}}
        fetcher = _fetcher(lambda request: httpx.Response(200, json=page), sleep)

        accounts = asyncio.run(fetcher.fetch_all_following(1))

        assert [a.id for a in accounts] == [1]

    def test_empty_first_page_means_no_following(self, sleep) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=follow_page([], cursor="c1"))

        fetcher = _fetcher(handler, sleep)

        assert asyncio.run(fetcher.fetch_all_following(5)) == []
        assert len(calls) == 1

    def test_empty_intermediate_page_does_not_stop(self, sleep) -> None:
        pages = [
            follow_page([1, 2], cursor="c1"),
            follow_page([], cursor="c2"),
            follow_page([3]),
        ]
        fetcher = _fetcher(_paged_handler(pages), sleep)

        accounts = asyncio.run(fetcher.fetch_all_following(5))

        assert [a.id for a in accounts] == [1, 2, 3]


class TestPacing:
    def test_minimum_spacing_between_requests(self, sleep) -> None:
        pages = [follow_page([1], cursor="c1"), follow_page([2], cursor="c2"), follow_page([3])]
        fetcher = _fetcher(_paged_handler(pages), sleep)

        asyncio.run(fetcher.fetch_all_following(5))

        # first request goes out immediately, the other two wait out the interval
        assert sleep.calls == [0.2, 0.2]

    def test_no_spacing_wait_when_interval_already_elapsed(self, sleep) -> None:
        ticks = iter(range(0, 100))
        pages = [follow_page([1], cursor="c1"), follow_page([2])]
        fetcher = _fetcher(_paged_handler(pages), sleep, clock=lambda: float(next(ticks)))

        asyncio.run(fetcher.fetch_all_following(5))

        assert sleep.calls == []

    def test_courtesy_pause_every_five_pages(self, sleep) -> None:
        pages = [follow_page([i], cursor=f"c{i + 1}") for i in range(6)] + [follow_page([99])]
        fetcher = _fetcher(_paged_handler(pages), sleep)

        accounts = asyncio.run(fetcher.fetch_all_following(5))

        assert len(accounts) == 7
        assert sleep.calls.count(1.0) == 1
        assert sleep.calls.count(0.2) == 6


class TestRateLimits:
    def test_waits_until_reset_header_then_retries_same_page(self, sleep) -> None:
        responses = [
            httpx.Response(429, headers={"x-ratelimit-reset": "1030"}),
            httpx.Response(200, json=follow_page([1, 2])),
        ]
        cursors = []

        def handler(request: httpx.Request) -> httpx.Response:
            cursors.append(request.url.params.get("cursor"))
            return responses.pop(0)

        fetcher = _fetcher(handler, sleep)

        accounts = asyncio.run(fetcher.fetch_all_following(5))

        assert len(accounts) == 2
        assert 30.0 in sleep.calls
        assert cursors == [None, None]

    def test_reset_header_in_milliseconds(self, sleep) -> None:
        responses = [
            httpx.Response(429, headers={"x-ratelimit-reset": "1700000012000"}),
            httpx.Response(200, json=follow_page([1])),
        ]
        fetcher = _fetcher(lambda request: responses.pop(0), sleep, wall_clock=lambda: 1_700_000_000.0)

        asyncio.run(fetcher.fetch_all_following(5))

        assert 12.0 in sleep.calls

    def test_falls_back_to_fixed_wait_without_header(self, sleep) -> None:
        responses = [httpx.Response(429), httpx.Response(200, json=follow_page([1]))]
        fetcher = _fetcher(lambda request: responses.pop(0), sleep)

        asyncio.run(fetcher.fetch_all_following(5))

        assert 60.0 in sleep.calls

    def test_gives_up_after_bounded_throttle_waits(self, sleep) -> None:
        fetcher = _fetcher(lambda request: httpx.Response(429), sleep, max_throttle_waits=3)

        with pytest.raises(ProviderThrottled):
            asyncio.run(fetcher.fetch_all_following(5))

        assert sleep.calls.count(60.0) == 3

    def test_caller_timeout_bounds_the_fetch(self) -> None:
        fetcher = FollowGraphFetcher(
            url=URL,
            transport=httpx.MockTransport(lambda request: httpx.Response(429)),
            rate_limit_fallback_seconds=0.05,
            max_throttle_waits=10_000,
            min_request_interval=0.0,
        )

        with pytest.raises(ProviderTimeout):
            asyncio.run(fetcher.fetch_all_following(5, timeout=0.3))


class TestFailures:
    @pytest.mark.parametrize("identity_id", [0, -3, "42", 4.2, True, None])
    def test_rejects_invalid_identity(self, sleep, identity_id) -> None:
        fetcher = _fetcher(lambda request: pytest.fail("no request expected"), sleep)

        with pytest.raises(ValidationError):
            asyncio.run(fetcher.fetch_all_following(identity_id))

    def test_validation_error_is_a_provider_error(self) -> None:
        assert issubclass(ValidationError, ProviderError)

    def test_client_error_aborts_immediately(self, sleep) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        fetcher = _fetcher(handler, sleep)

        with pytest.raises(ProviderUnavailable):
            asyncio.run(fetcher.fetch_all_following(5))
        assert len(calls) == 1

    def test_server_error_is_retried_then_raised(self, sleep) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        fetcher = _fetcher(handler, sleep, max_page_attempts=3, retry_delay=2.0)

        with pytest.raises(ProviderUnavailable):
            asyncio.run(fetcher.fetch_all_following(5))
        assert len(calls) == 3
        assert sleep.calls.count(2.0) == 2

    def test_transient_server_error_recovers(self, sleep) -> None:
        responses = [httpx.Response(502), httpx.Response(200, json=follow_page([1]))]
        fetcher = _fetcher(lambda request: responses.pop(0), sleep)

        assert len(asyncio.run(fetcher.fetch_all_following(5))) == 1

    def test_malformed_response_raises_provider_error(self, sleep) -> None:
        fetcher = _fetcher(
            lambda request: httpx.Response(200, json={"unexpected": True}),
            sleep,
            max_page_attempts=2,
        )

        with pytest.raises(ProviderError, match="Unexpected follow-graph response shape"):
            asyncio.run(fetcher.fetch_all_following(5))

    def test_transport_error_is_retried_then_raised(self, sleep) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        fetcher = _fetcher(handler, sleep, max_page_attempts=2)

        with pytest.raises(ProviderUnavailable, match="connection refused"):
            asyncio.run(fetcher.fetch_all_following(5))

    def test_sends_api_key_when_configured(self, sleep) -> None:
        headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            headers.append(request.headers.get("x-api-key"))
            return httpx.Response(200, json=follow_page([1]))

        fetcher = _fetcher(handler, sleep, api_key="secret")
        asyncio.run(fetcher.fetch_all_following(5))

        assert headers == ["secret"]
