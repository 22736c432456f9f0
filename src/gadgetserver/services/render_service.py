# src/gadgetserver/services/render_service.py

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from gadgetserver.core.context import AppContext
from gadgetserver.engine.features.base import LibraryContext, ResolvedFeatureSet
from gadgetserver.schemas.gadgets import RenderBundle, RenderRequest
from gadgetserver.services.exceptions import TokenInvalidError, ValidationError
from gadgetserver.services.proxy_service import ProxyService, caching_headers

logger = logging.getLogger(__name__)

# versioned JS URLs never change content, so they can be cached for a year
VERSIONED_JS_MAX_AGE = 365 * 24 * 60 * 60
UNVERSIONED_JS_MAX_AGE = 60 * 60


@dataclass
class JsResult:
    content: str
    headers: Dict[str, str] = field(default_factory=dict)


class RenderService:
    def __init__(self, context: AppContext):
        self.context = context
        self.catalog = context.catalog
        self.resolver = context.resolver
        self.loader = context.content_loader
        self.settings = context.settings

    def resolve(self, requested: List[str]) -> ResolvedFeatureSet:
        """Adds the forced libraries; a gadget that declares nothing still gets the core features."""
        names = list(requested) or self.catalog.core_features()
        names += [name for name in self.settings.forced_js_libs if name not in names]
        return self.resolver.resolve(names, self.catalog)

    async def render(self, data: RenderRequest) -> RenderBundle:
        token = self.context.security_token
        if self.settings.RENDER_TOKEN_REQUIRED and (token is None or token.is_anonymous):
            raise TokenInvalidError()

        resolved = self.resolve(data.features)
        lib_context = LibraryContext.CONTAINER if data.container_mode else LibraryContext.GADGET
        js = await self.loader.get_content(resolved, lib_context)
        js_url = await self.loader.js_url(resolved.names)

        preloads = {}
        if data.preloads:
            outcomes = await self.context.fetcher.fetch_batch(data.preloads, token)
            preloads = {
                request_id: ProxyService.outcome_to_content(outcome)
                for request_id, outcome in outcomes.items()
            }

        logger.info(f"Rendered bundle with features {resolved.names} and {len(preloads)} preloads")
        return RenderBundle(
            features=resolved.names,
            js=js,
            js_url=js_url,
            config=data.config,
            preloads=preloads,
        )

    async def get_js(self, features: str, version: Optional[str] = None, container: bool = False) -> JsResult:
        """Serves /gadgets/js/a:b:c.js"""
        names = [name for name in features.split(":") if name.strip()]
        if not names:
            raise ValidationError("No features requested.")
        resolved = self.resolver.resolve(names, self.catalog)
        lib_context = LibraryContext.CONTAINER if container else LibraryContext.GADGET
        content = await self.loader.get_content(resolved, lib_context)

        if version and version == await self.loader.get_aggregate_hash():
            headers = caching_headers(VERSIONED_JS_MAX_AGE)
        else:
            headers = caching_headers(UNVERSIONED_JS_MAX_AGE)
        return JsResult(content=content, headers=headers)
