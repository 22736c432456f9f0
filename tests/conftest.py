# tests/conftest.py

import json
import pathlib
from typing import AsyncGenerator, Dict

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from gadgetserver.core.config import Settings
from gadgetserver.core.cache.content_cache import ContentCache
from gadgetserver.core.cache.memory_cache import MemoryCacheBackend
from gadgetserver.core.crypto import BlobCrypter
from gadgetserver.core.security import SecurityToken
from gadgetserver.main import app, init_app_state, close_app_state
from tests.helpers import (
    SAMPLE_FEATURES,
    SAMPLE_RESOURCES,
    TEST_CIPHER_KEY,
    TEST_HMAC_KEY,
    TEST_ISSUER_SECRET,
    Upstream,
    write_feature,
)

# ==============================================================================
# 1. Feature tree
# ==============================================================================

@pytest.fixture
def features_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """core <- caja, core <- views; each feature's script is `/* <name> */`."""
    root = tmp_path / "features"
    write_feature(root, "core", gadget_js="/* core */")
    write_feature(root, "caja", ["core"], gadget_js="/* caja */")
    write_feature(root, "views", ["core"], gadget_js="/* views */")
    return root

# ==============================================================================
# 2. Cache & crypto fixtures
# ==============================================================================

@pytest.fixture
def memory_cache() -> ContentCache:
    return ContentCache(MemoryCacheBackend(lock_ttl=1.0), poll_interval=0.01)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_pem(rsa_private_key) -> bytes:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture
def security_token() -> SecurityToken:
    return SecurityToken(
        owner_id="u1",
        viewer_id="u2",
        app_id="42",
        domain="example.com",
        app_url="http://x/g.xml",
        module_id="0",
        container="default",
    )

# ==============================================================================
# 3. Upstream mock
# ==============================================================================

@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest.fixture
async def http_client(upstream: Upstream) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)) as client:
        yield client

# ==============================================================================
# 4. Application fixtures
# ==============================================================================

@pytest.fixture
def app_settings(tmp_path: pathlib.Path, rsa_private_pem: bytes) -> Settings:
    key_file = tmp_path / "oauth.pem"
    key_file.write_bytes(rsa_private_pem)
    cert_file = tmp_path / "public.crt"
    cert_file.write_text("-----BEGIN CERTIFICATE-----\nTEST\n-----END CERTIFICATE-----\n", encoding="utf-8")
    consumers_file = tmp_path / "consumers.json"
    consumers_file.write_text(json.dumps({
        "http://x/g.xml": {
            "photos": {"consumer_key": "dpf43f3p2l4k3l03", "consumer_secret": "kd94hf93k423kf44"}
        }
    }), encoding="utf-8")
    return Settings(
        APP_ENV="test",
        FEATURES_PATH=[str(SAMPLE_FEATURES)],
        RESOURCES_PATH=str(SAMPLE_RESOURCES),
        CACHE_BACKEND="memory",
        TOKEN_CIPHER_KEY=TEST_CIPHER_KEY,
        TOKEN_HMAC_KEY=TEST_HMAC_KEY,
        TOKEN_ISSUER_SECRET=TEST_ISSUER_SECRET,
        OAUTH_PRIVATE_KEY_FILE=str(key_file),
        OAUTH_PUBLIC_CERT_FILE=str(cert_file),
        OAUTH_KEY_NAME="public.crt",
        OAUTH_CONSUMERS_FILE=str(consumers_file),
        FETCH_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
async def client(app_settings: Settings, http_client: httpx.AsyncClient) -> AsyncGenerator[AsyncClient, None]:
    """API client; app state is built directly because ASGITransport skips the lifespan."""
    await init_app_state(app, app_settings, client=http_client)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        await close_app_state(app)


@pytest.fixture
def wrap_token():
    """Wraps a SecurityToken with the same keys as `app_settings`."""
    crypter = BlobCrypter(TEST_CIPHER_KEY, TEST_HMAC_KEY)
    return lambda token: crypter.wrap(token.to_map())


@pytest.fixture
def token_headers(wrap_token, security_token: SecurityToken) -> Dict[str, str]:
    return {"X-Security-Token": wrap_token(security_token)}
