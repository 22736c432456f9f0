# src/gadgetserver/engine/fetch/main.py

import asyncio
import hashlib
import logging
from typing import Dict, List, Optional, Sequence

import httpx

from gadgetserver.core.cache.content_cache import ContentCache
from gadgetserver.core.security import SecurityToken
from gadgetserver.engine.oauth.base import SignedRequest, split_url
from gadgetserver.engine.oauth.signer import OAuthSigner
from gadgetserver.engine.oauth.store import OAuthConsumerStore
from gadgetserver.services.exceptions import (
    BatchFetchError,
    ConfigurationError,
    FetchError,
    ValidationError,
)
from .base import AuthzType, FetchOutcome, FetchRequest, FetchResponse

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "fetch:"


class ProxyFetcher:
    """
    Outbound HTTP for gadgets: single fetches, batches, optional OAuth signing.
    A non-2xx answer is a normal FetchResponse; only failures without any HTTP
    answer (timeouts, refused connections) become FetchError.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[ContentCache] = None,
        signer: Optional[OAuthSigner] = None,
        consumer_store: Optional[OAuthConsumerStore] = None,
        timeout: float = 20.0,
        max_concurrency: int = 8,
    ):
        self.client = client
        self.cache = cache
        self.signer = signer
        self.consumer_store = consumer_store or OAuthConsumerStore()
        self.timeout = timeout
        self.max_concurrency = max_concurrency

    # --- single ---

    async def fetch_one(self, request: FetchRequest, token: Optional[SecurityToken] = None) -> FetchResponse:
        split_url(request.url)
        self._check_signing_config(request)

        if self.cache is None or not self._is_cacheable(request):
            return await self._fetch_network(request, token)

        key = self.cache_key(request, token)

        async def producer() -> bytes:
            response = await self._fetch_network(request, token)
            return response.to_cache_bytes()

        data = await self.cache.get_or_compute(
            key, producer, should_store=lambda raw: FetchResponse.from_cache_bytes(raw).status == 200
        )
        return FetchResponse.from_cache_bytes(data)

    # --- batch ---

    async def fetch_batch(
        self, requests: Sequence[FetchRequest], token: Optional[SecurityToken] = None
    ) -> Dict[str, FetchOutcome]:
        """
        Runs all members concurrently and returns only when every one of them has
        finished. Results are keyed by request id, in request order. A failing
        member is reported in its own FetchOutcome and never affects the others.
        """
        if not requests:
            # always suspend once so callers get uniformly deferred results
            await asyncio.sleep(0)
            return {}

        ids = [r.request_id for r in requests]
        if len(set(ids)) != len(ids):
            raise ValidationError("Batch request ids must be unique.")
        for request in requests:
            self._check_signing_config(request)

        unsigned = [r for r in requests if not r.is_signed]
        signed = [r for r in requests if r.is_signed]
        semaphore = asyncio.Semaphore(self.max_concurrency)

        groups = await asyncio.gather(
            self._run_group(unsigned, token, semaphore),
            self._run_group(signed, token, semaphore),
        )
        by_id: Dict[str, FetchOutcome] = {}
        for group in groups:
            for outcome in group:
                by_id[outcome.request.request_id] = outcome

        results = {request_id: by_id[request_id] for request_id in ids}

        if len(results) > 1 and all(
            o.error is not None and o.error.reason == FetchError.CONNECT for o in results.values()
        ):
            raise BatchFetchError(f"None of the {len(results)} batch requests could connect.")
        return results

    async def _run_group(
        self, requests: List[FetchRequest], token: Optional[SecurityToken], semaphore: asyncio.Semaphore
    ) -> List[FetchOutcome]:
        if not requests:
            return []
        return list(await asyncio.gather(*(self._run_member(r, token, semaphore) for r in requests)))

    async def _run_member(
        self, request: FetchRequest, token: Optional[SecurityToken], semaphore: asyncio.Semaphore
    ) -> FetchOutcome:
        async with semaphore:
            try:
                response = await self.fetch_one(request, token)
            except FetchError as e:
                logger.info(f"Batch member {request.request_id} failed: {e.message}")
                return FetchOutcome(request=request, error=e)
            except ValidationError as e:
                return FetchOutcome(
                    request=request, error=FetchError(request.url, FetchError.INVALID, e.message)
                )
        return FetchOutcome(request=request, response=response)

    # --- internals ---

    @staticmethod
    def _is_cacheable(request: FetchRequest) -> bool:
        return request.method.upper() == "GET" and not request.no_cache

    @staticmethod
    def cache_key(request: FetchRequest, token: Optional[SecurityToken]) -> str:
        """Signed responses depend on who signed them, so the identity is part of the key."""
        parts = [request.method.upper(), request.url, request.authz.value]
        if request.authz != AuthzType.NONE and token is not None:
            parts += [
                token.owner_id if request.sign_owner else "",
                token.viewer_id if request.sign_viewer else "",
                token.app_url,
            ]
        if request.authz == AuthzType.OAUTH:
            parts += [request.oauth_service_name or "", request.oauth_token or ""]
        return CACHE_KEY_PREFIX + hashlib.md5("\x00".join(parts).encode("utf-8")).hexdigest()

    def _check_signing_config(self, request: FetchRequest) -> None:
        if request.is_signed and self.signer is None:
            raise ConfigurationError("Signed fetch requested but no OAuth signer is configured.")

    def _sign(self, request: FetchRequest, token: Optional[SecurityToken]) -> SignedRequest:
        if request.authz == AuthzType.NONE:
            return SignedRequest(
                method=request.method.upper(),
                url=request.url,
                headers=dict(request.headers),
                body=request.body,
            )
        if token is None:
            raise ValidationError("Signed fetches need a security token.")
        if request.authz == AuthzType.SIGNED:
            return self.signer.sign_for_gadget(request, token)

        consumer = self.consumer_store.get(token.app_url, request.oauth_service_name)
        return self.signer.sign(
            request,
            consumer_key=consumer.consumer_key,
            consumer_secret=consumer.consumer_secret,
            token=request.oauth_token,
            token_secret=request.oauth_token_secret or "",
            signature_method=consumer.key_type,
            extra_params=OAuthSigner.opensocial_params(request, token),
        )

    async def _fetch_network(self, request: FetchRequest, token: Optional[SecurityToken]) -> FetchResponse:
        signed = self._sign(request, token)
        budget = request.timeout or self.timeout
        try:
            response = await asyncio.wait_for(
                self.client.request(
                    signed.method,
                    signed.url,
                    headers=signed.headers,
                    content=signed.body.encode("utf-8") if signed.body is not None else None,
                    timeout=budget,
                ),
                timeout=budget,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise FetchError(request.url, FetchError.TIMEOUT, f"Fetching {request.url} timed out after {budget}s")
        except httpx.ConnectError as e:
            raise FetchError(request.url, FetchError.CONNECT, f"Cannot connect to {request.url}: {e}")
        except httpx.RequestError as e:
            raise FetchError(request.url, FetchError.NETWORK, f"Fetching {request.url} failed: {e}")
        except (httpx.InvalidURL, ValueError) as e:
            # httpx rejects the request before sending it, e.g. a non-ASCII header value
            raise FetchError(request.url, FetchError.INVALID, f"Cannot send request to {request.url}: {e}")

        logger.debug(f"{signed.method} {request.url} -> {response.status_code}")
        return FetchResponse(
            status=response.status_code,
            headers=dict(response.headers),
            content=response.content,
            encoding=response.encoding,
            url=request.url,
        )
