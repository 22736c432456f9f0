# tests/engine/fetch/test_proxy_fetcher.py

import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import pytest

from gadgetserver.engine.fetch.base import AuthzType, FetchRequest
from gadgetserver.engine.fetch.main import ProxyFetcher
from gadgetserver.engine.oauth.signer import OAuthSigner
from gadgetserver.engine.oauth.store import OAuthConsumerStore
from gadgetserver.services.exceptions import (
    BatchFetchError,
    ConfigurationError,
    FetchError,
    ValidationError,
)
from tests.helpers import UPSTREAM

pytestmark = pytest.mark.asyncio


@pytest.fixture
def fetcher(http_client, memory_cache, rsa_private_key) -> ProxyFetcher:
    store = OAuthConsumerStore.from_dict({
        "http://x/g.xml": {"photos": {"consumer_key": "ck", "consumer_secret": "cs"}}
    })
    return ProxyFetcher(
        http_client,
        cache=memory_cache,
        signer=OAuthSigner(private_key=rsa_private_key, key_name="public.crt"),
        consumer_store=store,
        timeout=2.0,
        max_concurrency=4,
    )

# ==============================================================================
# 1. Single fetch
# ==============================================================================

async def test_fetch_one_returns_status_headers_body(fetcher):
    response = await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/hello"))

    assert response.status == 200
    assert response.body == "hello world"
    assert response.headers["x-upstream"] == "1"
    assert response.url == f"{UPSTREAM}/hello"


async def test_non_2xx_is_data_not_error(fetcher):
    response = await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/missing"))
    assert response.status == 404
    assert response.body == "not here"
    assert not response.ok


async def test_connect_failure_raises_fetch_error(fetcher):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_one(FetchRequest(url="http://down.test/x"))
    assert exc_info.value.reason == FetchError.CONNECT
    assert exc_info.value.url == "http://down.test/x"


async def test_per_request_timeout_budget(fetcher):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/slow", timeout=0.05))
    assert exc_info.value.reason == FetchError.TIMEOUT


async def test_transport_timeout_is_timeout(fetcher):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/read-timeout"))
    assert exc_info.value.reason == FetchError.TIMEOUT


async def test_malformed_url_is_validation_error(fetcher, upstream):
    with pytest.raises(ValidationError):
        await fetcher.fetch_one(FetchRequest(url="javascript:alert(1)"))
    assert upstream.requests == []

# ==============================================================================
# 2. Caching
# ==============================================================================

async def test_successful_get_is_cached(fetcher, upstream):
    request = FetchRequest(url=f"{UPSTREAM}/hello")
    first = await fetcher.fetch_one(request)
    second = await fetcher.fetch_one(request)

    assert first == second
    assert upstream.count("/hello") == 1


async def test_no_cache_and_errors_always_hit_network(fetcher, upstream):
    await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/hello", no_cache=True))
    await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/hello", no_cache=True))
    await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/missing"))
    await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/missing"))

    assert upstream.count("/hello") == 2
    assert upstream.count("/missing") == 2


async def test_binary_content_survives_cache(fetcher):
    request = FetchRequest(url=f"{UPSTREAM}/image.png")
    await fetcher.fetch_one(request)
    cached = await fetcher.fetch_one(request)
    assert cached.content == b"\x89PNG\r\n\x1a\n\x00\xff"


async def test_concurrent_identical_fetches_share_one_call(fetcher, upstream):
    request = FetchRequest(url=f"{UPSTREAM}/hello")
    results = await asyncio.gather(*(fetcher.fetch_one(request) for _ in range(5)))

    assert {r.body for r in results} == {"hello world"}
    assert upstream.count("/hello") == 1


async def test_cache_key_depends_on_signing_identity(security_token):
    request = FetchRequest(url=f"{UPSTREAM}/echo", authz=AuthzType.SIGNED)
    other_viewer = security_token.model_copy(update={"viewer_id": "someone-else"})

    assert ProxyFetcher.cache_key(request, security_token) != ProxyFetcher.cache_key(request, other_viewer)
    unsigned = FetchRequest(url=f"{UPSTREAM}/echo")
    assert ProxyFetcher.cache_key(unsigned, security_token) == ProxyFetcher.cache_key(unsigned, other_viewer)

# ==============================================================================
# 3. Signing
# ==============================================================================

async def test_signed_fetch_sends_opensocial_params(fetcher, security_token):
    response = await fetcher.fetch_one(
        FetchRequest(url=f"{UPSTREAM}/echo?q=1", authz=AuthzType.SIGNED), security_token
    )
    echoed = json.loads(response.body)
    query = parse_qs(urlsplit(echoed["url"]).query)

    assert query["opensocial_owner_id"] == ["u1"]
    assert query["oauth_signature_method"] == ["RSA-SHA1"]
    # the caller's URL is reported, not the signed one
    assert response.url == f"{UPSTREAM}/echo?q=1"


async def test_oauth_fetch_uses_registered_consumer(fetcher, security_token):
    response = await fetcher.fetch_one(
        FetchRequest(url=f"{UPSTREAM}/echo", authz=AuthzType.OAUTH, oauth_service_name="photos", oauth_token="tok"),
        security_token,
    )
    query = parse_qs(urlsplit(json.loads(response.body)["url"]).query)

    assert query["oauth_consumer_key"] == ["ck"]
    assert query["oauth_token"] == ["tok"]
    assert query["oauth_signature_method"] == ["HMAC-SHA1"]


async def test_signed_fetch_without_signer_is_configuration_error(http_client, security_token):
    fetcher = ProxyFetcher(http_client)
    with pytest.raises(ConfigurationError):
        await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/echo", authz=AuthzType.SIGNED), security_token)

# ==============================================================================
# 4. Batches
# ==============================================================================

async def test_empty_batch_yields_to_the_event_loop(fetcher):
    ran = []

    async def other():
        ran.append(True)

    # scheduled but not started; it only runs if fetch_batch suspends
    task = asyncio.ensure_future(other())

    assert await fetcher.fetch_batch([]) == {}
    assert ran == [True]
    await task


async def test_batch_with_failure_and_success(fetcher):
    requests = [
        FetchRequest(id="bad", url="http://down.test/x"),
        FetchRequest(id="good", url=f"{UPSTREAM}/hello"),
    ]

    results = await fetcher.fetch_batch(requests)

    assert list(results) == ["bad", "good"]
    assert not results["bad"].succeeded
    assert results["bad"].error.reason == FetchError.CONNECT
    assert results["good"].succeeded
    assert results["good"].response.body == "hello world"


async def test_batch_mixes_signed_and_unsigned_in_request_order(fetcher, security_token):
    requests = [
        FetchRequest(url=f"{UPSTREAM}/echo?n=1", authz=AuthzType.SIGNED),
        FetchRequest(url=f"{UPSTREAM}/hello"),
        FetchRequest(url=f"{UPSTREAM}/missing"),
        FetchRequest(url=f"{UPSTREAM}/echo?n=2", authz=AuthzType.SIGNED, no_cache=True),
    ]

    results = await fetcher.fetch_batch(requests, security_token)

    assert list(results) == [r.url for r in requests]
    assert all(o.succeeded for o in results.values())
    assert results[f"{UPSTREAM}/missing"].response.status == 404


async def test_batch_member_timeout_does_not_block_others(fetcher):
    requests = [
        FetchRequest(id="slow", url=f"{UPSTREAM}/slow", timeout=0.05),
        FetchRequest(id="fast", url=f"{UPSTREAM}/hello"),
    ]

    results = await asyncio.wait_for(fetcher.fetch_batch(requests), timeout=0.9)

    assert results["slow"].error.reason == FetchError.TIMEOUT
    assert results["fast"].response.body == "hello world"


async def test_batch_invalid_member_is_data(fetcher):
    results = await fetcher.fetch_batch([
        FetchRequest(id="bad", url="ftp://example.com/file"),
        FetchRequest(id="ok", url=f"{UPSTREAM}/hello"),
    ])
    assert results["bad"].error.reason == FetchError.INVALID
    assert results["ok"].succeeded


async def test_unsendable_member_does_not_break_the_batch(fetcher, upstream):
    results = await fetcher.fetch_batch([
        FetchRequest(id="bad", url=f"{UPSTREAM}/echo", headers={"X-Name": "café中"}),
        FetchRequest(id="good", url=f"{UPSTREAM}/hello"),
    ])

    assert list(results) == ["bad", "good"]
    assert results["bad"].error.reason == FetchError.INVALID
    assert results["good"].response.body == "hello world"
    assert upstream.count("/echo") == 0


async def test_unsendable_single_fetch_is_invalid(fetcher):
    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch_one(FetchRequest(url=f"{UPSTREAM}/echo", headers={"X-Name": "café中"}))
    assert exc_info.value.reason == FetchError.INVALID


async def test_batch_where_nothing_connects_fails_as_a_whole(fetcher):
    with pytest.raises(BatchFetchError):
        await fetcher.fetch_batch([
            FetchRequest(id="a", url="http://down.test/a"),
            FetchRequest(id="b", url="http://down.test/b"),
        ])


async def test_single_member_connect_failure_is_still_data(fetcher):
    results = await fetcher.fetch_batch([FetchRequest(url="http://down.test/a")])
    assert results["http://down.test/a"].error.reason == FetchError.CONNECT


async def test_duplicate_ids_are_rejected(fetcher):
    with pytest.raises(ValidationError):
        await fetcher.fetch_batch([
            FetchRequest(url=f"{UPSTREAM}/hello"),
            FetchRequest(url=f"{UPSTREAM}/hello"),
        ])


async def test_batch_respects_concurrency_limit(http_client):
    fetcher = ProxyFetcher(http_client, max_concurrency=2)
    active = 0
    peak = 0
    original = fetcher.fetch_one

    async def tracking_fetch_one(request, token=None):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        try:
            await asyncio.sleep(0.01)
            return await original(request, token)
        finally:
            active -= 1

    fetcher.fetch_one = tracking_fetch_one
    results = await fetcher.fetch_batch([FetchRequest(id=str(i), url=f"{UPSTREAM}/hello") for i in range(6)])

    assert len(results) == 6
    assert peak <= 2
