# src/gadgetserver/services/proxy_service.py

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Dict, List, Optional

from gadgetserver.core.context import AppContext
from gadgetserver.engine.fetch.base import FetchOutcome, FetchRequest
from gadgetserver.schemas.gadgets import MakeRequestParams, ProxiedContent
from gadgetserver.services.exceptions import FetchError

logger = logging.getLogger(__name__)

# Prepended to every JSON answer for the gadget, so a hijacking <script> include can't read it
UNPARSEABLE_CRUFT = "throw 1; < don't be evil' >"

# 上游响应中不透传给客户端的头（逐跳头 / 缓存头由我们自己生成）
DISALLOWED_RESPONSE_HEADERS = {
    "transfer-encoding",
    "cache-control",
    "expires",
    "content-length",
    "content-encoding",
    "etag",
    "connection",
    "keep-alive",
    "set-cookie",
}


def status_for_error(error: FetchError) -> int:
    if error.reason == FetchError.TIMEOUT:
        return 504
    if error.reason == FetchError.INVALID:
        return 400
    return 502


def caching_headers(refresh: int, now: Optional[float] = None) -> Dict[str, str]:
    if refresh <= 0:
        return {"Cache-Control": "no-cache", "Pragma": "no-cache", "Expires": formatdate(0, usegmt=True)}
    now = time.time() if now is None else now
    return {
        "Cache-Control": f"public,max-age={refresh}",
        "Expires": formatdate(now + refresh, usegmt=True),
    }


@dataclass
class ProxyResult:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""


class ProxyService:
    def __init__(self, context: AppContext):
        self.context = context
        self.fetcher = context.fetcher
        self.settings = context.settings

    # --- makeRequest ---

    @staticmethod
    def wrap_json(payload: Dict) -> str:
        return UNPARSEABLE_CRUFT + json.dumps(payload, ensure_ascii=False)

    @staticmethod
    def outcome_to_content(outcome: FetchOutcome) -> ProxiedContent:
        if outcome.error is not None:
            return ProxiedContent(rc=status_for_error(outcome.error), body="", error=outcome.error.message)
        return ProxiedContent(rc=outcome.response.status, body=outcome.response.body)

    async def make_request(self, params: MakeRequestParams) -> str:
        """Single fetch for gadgets.io.makeRequest. Keyed by the URL the gadget asked for."""
        request = params.to_fetch_request()
        response = await self.fetcher.fetch_one(request, self.context.security_token)
        content = ProxiedContent(rc=response.status, body=response.body)
        return self.wrap_json({params.url: content.model_dump(exclude_none=True)})

    async def make_batch_request(self, requests: List[FetchRequest]) -> str:
        outcomes = await self.fetcher.fetch_batch(requests, self.context.security_token)
        return self.wrap_json({
            request_id: self.outcome_to_content(outcome).model_dump(exclude_none=True)
            for request_id, outcome in outcomes.items()
        })

    # --- raw proxy ---

    async def proxy(
        self,
        url: str,
        refresh: Optional[int] = None,
        if_none_match: Optional[str] = None,
        no_cache: bool = False,
    ) -> ProxyResult:
        """
        Raw content proxy (images, css, ...). Upstream errors are hidden behind a 404
        so the proxy can't be used to probe other hosts.
        """
        response = await self.fetcher.fetch_one(
            FetchRequest(url=url, no_cache=no_cache), self.context.security_token
        )
        if response.status != 200:
            logger.info(f"Proxy upstream {url} answered {response.status}, returning 404")
            return ProxyResult(status=404)

        etag = f'"{hashlib.md5(response.content).hexdigest()}"'
        refresh = self.settings.DEFAULT_REFRESH_INTERVAL if refresh is None else refresh
        headers = {
            name: value
            for name, value in response.headers.items()
            if name.lower() not in DISALLOWED_RESPONSE_HEADERS
        }
        headers.update(caching_headers(0 if no_cache else refresh))
        headers["ETag"] = etag

        if if_none_match and if_none_match.strip() == etag:
            return ProxyResult(status=304, headers={"ETag": etag, **caching_headers(0 if no_cache else refresh)})
        return ProxyResult(status=200, headers=headers, content=response.content)
