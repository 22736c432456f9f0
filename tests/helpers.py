# tests/helpers.py

import asyncio
import pathlib
from typing import List, Optional

import httpx

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
SAMPLE_FEATURES = PROJECT_ROOT / "features"
SAMPLE_RESOURCES = PROJECT_ROOT / "resources"

TEST_CIPHER_KEY = "test-cipher-secret-0123456789"
TEST_HMAC_KEY = "test-hmac-secret-9876543210"
TEST_ISSUER_SECRET = "test-container-issuer-secret"

UPSTREAM = "http://upstream.test"


def write_feature(
    root: pathlib.Path,
    name: str,
    dependencies: Optional[List[str]] = None,
    gadget_js: Optional[str] = None,
    container_js: Optional[str] = None,
    directory: Optional[str] = None,
) -> pathlib.Path:
    """Writes <root>/<directory or name>/feature.xml (+ the JS file) and returns the directory."""
    feature_dir = root / (directory or name)
    feature_dir.mkdir(parents=True, exist_ok=True)
    deps = "".join(f"<dependency>{d}</dependency>" for d in dependencies or [])
    gadget = ""
    if gadget_js is not None:
        (feature_dir / f"{name}.js").write_text(gadget_js, encoding="utf-8")
        gadget = f'<gadget><script src="{name}.js"/></gadget>'
    container = ""
    if container_js is not None:
        container = f"<container><script>{container_js}</script></container>"
    (feature_dir / "feature.xml").write_text(
        f"<feature><name>{name}</name>{deps}{gadget}{container}</feature>", encoding="utf-8"
    )
    return feature_dir


class Upstream:
    """Fake remote origin behind httpx.MockTransport; records every request it sees."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        # hosts that refuse connections; tests may add or remove entries
        self.down_hosts = {"down.test"}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.down_hosts:
            raise httpx.ConnectError("Connection refused", request=request)
        path = request.url.path
        if path == "/hello":
            return httpx.Response(200, text="hello world", headers={"Content-Type": "text/plain", "X-Upstream": "1"})
        if path == "/lib.js":
            return httpx.Response(200, text="/* lib */", headers={"Content-Type": "application/javascript"})
        if path == "/image.png":
            return httpx.Response(200, content=b"\x89PNG\r\n\x1a\n\x00\xff", headers={"Content-Type": "image/png", "Cache-Control": "private"})
        if path == "/missing":
            return httpx.Response(404, text="not here")
        if path == "/echo":
            return httpx.Response(200, json={
                "method": request.method,
                "url": str(request.url),
                "authorization": request.headers.get("Authorization"),
                "body": request.content.decode("utf-8"),
            })
        if path == "/slow":
            await asyncio.sleep(1)
            return httpx.Response(200, text="too late")
        if path == "/read-timeout":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(404)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

