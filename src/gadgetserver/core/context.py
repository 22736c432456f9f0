# src/gadgetserver/core/context.py

from pydantic import BaseModel, ConfigDict
from typing import Optional

from gadgetserver.core.cache.content_cache import ContentCache
from gadgetserver.core.config import Settings
from gadgetserver.core.security import SecurityToken, SecurityTokenService
from gadgetserver.engine.features.catalog import FeatureCatalog
from gadgetserver.engine.features.content import FeatureContentLoader
from gadgetserver.engine.features.resolver import DependencyResolver
from gadgetserver.engine.fetch.main import ProxyFetcher

class AppContext(BaseModel):
    """
    Typed bundle of what a service needs for one request.
    Built from app.state by the dependency functions in api/dependencies.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: Settings

    # 进程级共享对象，启动时创建，之后只读
    catalog: FeatureCatalog
    resolver: DependencyResolver
    content_loader: FeatureContentLoader
    cache: ContentCache
    fetcher: ProxyFetcher
    token_service: SecurityTokenService

    # 当前请求解码后的安全令牌；公共路由上可能为 None
    security_token: Optional[SecurityToken] = None
