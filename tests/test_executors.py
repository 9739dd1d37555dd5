import pytest

from catalog_adapter.client import PreparedRequest
from catalog_adapter.errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    UpstreamError,
)
from catalog_adapter.executors import (
    ResilientExecutor,
    detect_pagination_param,
    extract_items,
    extract_pagination_meta,
)
from catalog_adapter.models import OperationDefinition, ParameterDefinition
from catalog_adapter.retry import RateLimiter

from conftest import FakeClient, ok


def _executor(client, max_retries=3):
    return ResilientExecutor(client, RateLimiter(max_tokens=100, refill_rate=100.0), max_retries, 100)


def _list_operation():
    return OperationDefinition(
        operation_id="listPets",
        tool_name="api_pets_listPets",
        method="GET",
        path="/pets",
        product="pets",
        version="v1",
        spec_file="openapi.json",
        query_parameters=[
            ParameterDefinition("limit", "query", False, {"type": "integer"}),
            ParameterDefinition("cursor", "query", False, {"type": "string"}),
        ],
        supports_pagination=True,
    )


@pytest.mark.asyncio
async def test_execute_returns_body_and_rate_limit(no_sleep):
    client = FakeClient([ok({"id": 1}, headers={"x-request-id": "r1", "x-ratelimit-remaining": "7"})])

    result = await _executor(client).execute(PreparedRequest("GET", "/pets/1"), "getPet")

    assert result.status == 200
    assert result.body == {"id": 1}
    assert result.request_id == "r1"
    assert result.rate_limit.remaining == 7


@pytest.mark.asyncio
async def test_retryable_statuses_are_retried(no_sleep):
    client = FakeClient(
        [UpstreamError("busy", status=503), UpstreamError("busy", status=503), ok({"id": 1})]
    )

    result = await _executor(client).execute(PreparedRequest("GET", "/pets/1"), "getPet")

    assert result.body == {"id": 1}
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_terminal_status_is_classified_without_retry(no_sleep):
    client = FakeClient([UpstreamError("denied", status=403)])

    with pytest.raises(AuthenticationError):
        await _executor(client).execute(PreparedRequest("GET", "/pets/1"), "getPet")

    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_exhausted_retries_keep_kind(no_sleep):
    client = FakeClient([UpstreamError("reset", code="ECONNRESET")] * 3)

    with pytest.raises(NetworkError):
        await _executor(client, max_retries=2).execute(PreparedRequest("GET", "/pets"), "listPets")

    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_rate_limit_exhaustion(no_sleep):
    client = FakeClient([UpstreamError("slow", status=429, headers={"retry-after": "5"})] * 2)

    with pytest.raises(RateLimitError) as excinfo:
        await _executor(client, max_retries=1).execute(PreparedRequest("GET", "/pets"), "listPets")

    assert excinfo.value.retry_after == 5


@pytest.mark.asyncio
async def test_http_version_not_supported_is_terminal(no_sleep):
    client = FakeClient([UpstreamError("nope", status=505)])

    with pytest.raises(ApiError):
        await _executor(client).execute(PreparedRequest("GET", "/pets"), "listPets")

    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_every_attempt_acquires_the_limiter(no_sleep):
    limiter = RateLimiter(max_tokens=5, refill_rate=1.0)
    client = FakeClient([UpstreamError("busy", status=502), ok({})])
    executor = ResilientExecutor(client, limiter, 3, 100)

    await executor.execute(PreparedRequest("GET", "/pets"), "listPets")

    assert limiter.tokens == pytest.approx(3.0, abs=0.1)


@pytest.mark.asyncio
async def test_collect_pages_follows_cursor(no_sleep):
    client = FakeClient(
        [
            ok({"items": [1, 2], "hasMore": True, "nextCursor": "c2", "totalCount": 5}),
            ok({"items": [3, 4], "hasMore": True, "nextCursor": "c3", "totalCount": 5}),
            ok({"items": [5], "hasMore": False, "totalCount": 5}),
        ]
    )
    request = PreparedRequest("GET", "/pets", {"limit": "2"})

    result = await _executor(client).collect_pages(_list_operation(), request)

    assert result.paginated is True
    assert result.body == [1, 2, 3, 4, 5]
    assert result.page_count == 3
    assert result.total_items == 5
    # The first pagination parameter found receives the next value.
    assert [r.query for r in client.requests] == [
        {"limit": "2"},
        {"limit": "c2"},
        {"limit": "c3"},
    ]


@pytest.mark.asyncio
async def test_collect_pages_respects_max_pages(no_sleep):
    pages = [ok({"results": [i], "hasMore": True, "nextCursor": f"c{i}"}) for i in range(5)]
    client = FakeClient(pages)

    result = await _executor(client).collect_pages(_list_operation(), PreparedRequest("GET", "/pets"), max_pages=2)

    assert result.body == [0, 1]
    assert result.page_count == 2


def test_detect_pagination_param_prefers_first_match():
    assert detect_pagination_param(_list_operation()) == "limit"


def test_extract_items_variants():
    assert extract_items([1, 2]) == [1, 2]
    assert extract_items({"data": [1]}) == [1]
    assert extract_items({"meta": {}, "pets": [3]}) == [3]
    assert extract_items({"count": 1}) == []
    assert extract_items("text") == []


def test_extract_pagination_meta():
    assert extract_pagination_meta({"hasNextPage": True, "nextPage": 3}).next_cursor == 3
    assert extract_pagination_meta({"nextPage": "/pets?page=2"}).has_more is True
    assert extract_pagination_meta({"items": []}).has_more is False
    assert extract_pagination_meta({"totalItems": 9}).total_items == 9
    assert extract_pagination_meta(None).has_more is False
