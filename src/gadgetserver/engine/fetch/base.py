# src/gadgetserver/engine/fetch/base.py

import base64
import json
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from gadgetserver.services.exceptions import FetchError


class AuthzType(str, Enum):
    NONE = "NONE"
    SIGNED = "SIGNED"
    OAUTH = "OAUTH"


class FetchRequest(BaseModel):
    """One outbound request as the gadget asked for it (before any signing)."""
    id: Optional[str] = Field(None, description="Caller's identifier for batch results; defaults to the URL.")
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    authz: AuthzType = AuthzType.NONE
    sign_owner: bool = True
    sign_viewer: bool = True
    no_cache: bool = False
    timeout: Optional[float] = Field(None, gt=0, description="Overrides the default per-request budget (seconds).")
    # OAUTH authz
    oauth_service_name: Optional[str] = None
    oauth_token: Optional[str] = None
    oauth_token_secret: Optional[str] = None

    @property
    def request_id(self) -> str:
        return self.id or self.url

    @property
    def is_signed(self) -> bool:
        return self.authz != AuthzType.NONE


class FetchResponse(BaseModel):
    status: int
    headers: Dict[str, str] = Field(default_factory=dict)
    content: bytes = b""
    encoding: Optional[str] = None
    # The URL the gadget asked for, not the signed one
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def body(self) -> str:
        return self.content.decode(self.encoding or "utf-8", errors="replace")

    # content may be binary (images through the raw proxy), so it travels base64 encoded
    def to_cache_bytes(self) -> bytes:
        return json.dumps({
            "status": self.status,
            "headers": self.headers,
            "content": base64.b64encode(self.content).decode("ascii"),
            "encoding": self.encoding,
            "url": self.url,
        }).encode("utf-8")

    @classmethod
    def from_cache_bytes(cls, data: bytes) -> "FetchResponse":
        raw = json.loads(data.decode("utf-8"))
        raw["content"] = base64.b64decode(raw["content"])
        return cls(**raw)


class FetchOutcome(BaseModel):
    """Result of one batch member: a response or the error it failed with."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: FetchRequest
    response: Optional[FetchResponse] = None
    error: Optional[FetchError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.response is not None
