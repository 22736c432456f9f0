# src/gadgetserver/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from gadgetserver.core.config import Settings, settings
from gadgetserver.core.cache.content_cache import ContentCache
from gadgetserver.core.cache.factory import create_cache_backend
from gadgetserver.core.security import SecurityTokenService, create_token_codec
from gadgetserver.engine.features.catalog import FeatureCatalog
from gadgetserver.engine.features.content import FeatureContentLoader
from gadgetserver.engine.features.resolver import DependencyResolver
from gadgetserver.engine.fetch.main import ProxyFetcher
from gadgetserver.engine.oauth.signer import OAuthSigner
from gadgetserver.engine.oauth.store import OAuthConsumerStore
from gadgetserver.api.router import router, public_router
from gadgetserver.middleware import SecurityTokenMiddleware
from gadgetserver.schemas.common import JsonFaildResponse
from gadgetserver.services.exceptions import (
    BatchFetchError,
    ConfigurationError,
    FeatureResolutionError,
    FetchError,
    ServiceException,
    TokenError,
    ValidationError,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


async def init_app_state(app: FastAPI, config: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
    """Builds every process wide object once. Any ConfigurationError here stops startup."""
    app.state.settings = config

    # --- Features ---
    catalog = FeatureCatalog.load(config.FEATURES_PATH)
    missing_forced = [name for name in config.forced_js_libs if name not in catalog]
    if missing_forced:
        raise ConfigurationError(f"FORCED_JS_LIBS names unknown features: {missing_forced}")
    app.state.catalog = catalog
    app.state.resolver = DependencyResolver()

    # --- Content cache ---
    app.state.cache_backend = create_cache_backend(config)
    app.state.cache = ContentCache(app.state.cache_backend)

    # --- Security tokens ---
    app.state.token_service = SecurityTokenService(
        create_token_codec(config),
        allow_anonymous=config.ALLOW_ANONYMOUS_TOKEN,
    )

    # --- Signing & fetching ---
    app.state.http_client = client or httpx.AsyncClient(follow_redirects=True, timeout=config.FETCH_TIMEOUT_SECONDS)
    app.state.fetcher = ProxyFetcher(
        client=app.state.http_client,
        cache=app.state.cache,
        signer=OAuthSigner.from_settings(config),
        consumer_store=OAuthConsumerStore.load(config.OAUTH_CONSUMERS_FILE),
        timeout=config.FETCH_TIMEOUT_SECONDS,
        max_concurrency=config.FETCH_MAX_CONCURRENCY,
    )
    app.state.content_loader = FeatureContentLoader(
        catalog,
        app.state.cache,
        fetcher=app.state.fetcher,
        resources_path=config.RESOURCES_PATH,
        js_prefix=config.JS_PREFIX,
    )

    app.state.public_cert = None
    if config.OAUTH_PUBLIC_CERT_FILE:
        try:
            with open(config.OAUTH_PUBLIC_CERT_FILE, "r", encoding="utf-8") as f:
                app.state.public_cert = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read OAUTH_PUBLIC_CERT_FILE: {e}")


async def close_app_state(app: FastAPI) -> None:
    await app.state.http_client.aclose()
    await app.state.cache_backend.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting gadget server ({settings.APP_ENV})...")
    await init_app_state(app, settings)
    yield
    # --- 清理 ---
    logger.info("Closing HTTP client and cache backend...")
    await close_app_state(app)

app = FastAPI(
    title="Gadget Server",
    host=settings.APP_HOST,
    port=settings.APP_PORT,
    lifespan=lifespan
)

app.add_middleware(SecurityTokenMiddleware)

# gadgets are served from other origins
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"])

app.include_router(router)
app.include_router(public_router)


def _error_response(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=JsonFaildResponse(status=status_code, msg=msg).model_dump(),
    )

@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error while serving {request.url.path}: {exc.message}")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message)

@app.exception_handler(TokenError)
async def token_exception_handler(request: Request, exc: TokenError):
    # 统一的消息，不泄露令牌被拒绝的具体原因
    return _error_response(status.HTTP_401_UNAUTHORIZED, exc.message)

@app.exception_handler(FeatureResolutionError)
async def feature_resolution_exception_handler(request: Request, exc: FeatureResolutionError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message)

@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message)

@app.exception_handler(FetchError)
async def fetch_exception_handler(request: Request, exc: FetchError):
    if exc.reason == FetchError.TIMEOUT:
        return _error_response(status.HTTP_504_GATEWAY_TIMEOUT, exc.message)
    if exc.reason == FetchError.INVALID:
        return _error_response(status.HTTP_400_BAD_REQUEST, exc.message)
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc.message)

@app.exception_handler(BatchFetchError)
async def batch_fetch_exception_handler(request: Request, exc: BatchFetchError):
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc.message)

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    # 其余可预期的业务错误
    return _error_response(status.HTTP_400_BAD_REQUEST, exc.message)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 重写 FastAPI 默认的 HTTPException 处理器，以匹配我们的响应格式
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status_code, "msg": exc.detail, "data": None},
        headers=exc.headers,
    )

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # 只处理真正未预料到的服务器内部错误
    logger.exception(f"Unhandled error while serving {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"status": 500, "msg": "Internal Server Error", "data": None},
    )
