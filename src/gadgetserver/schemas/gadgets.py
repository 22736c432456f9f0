# src/gadgetserver/schemas/gadgets.py

from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gadgetserver.engine.fetch.base import AuthzType, FetchRequest

# ==============================================================================
# makeRequest
# ==============================================================================

class MakeRequestParams(BaseModel):
    """
    Parameters of /gadgets/makeRequest as the gadget JS sends them
    (query string for GET, form fields for POST).
    """
    model_config = ConfigDict(populate_by_name=True)

    url: str
    http_method: str = Field("GET", alias="httpMethod")
    # url-encoded header list, e.g. "Content-Type=application%2Fjson&X-A=1"
    headers: str = ""
    post_data: Optional[str] = Field(None, alias="postData")
    authz: AuthzType = AuthzType.NONE
    sign_owner: bool = Field(True, alias="signOwner")
    sign_viewer: bool = Field(True, alias="signViewer")
    no_cache: bool = Field(False, alias="nocache")
    oauth_service_name: Optional[str] = Field(None, alias="OAUTH_SERVICE_NAME")
    oauth_token: Optional[str] = Field(None, alias="OAUTH_TOKEN")
    oauth_token_secret: Optional[str] = Field(None, alias="OAUTH_TOKEN_SECRET")

    @field_validator("authz", mode="before")
    @classmethod
    def _upper_authz(cls, value):
        # gadgets.io sends "signed" / "oauth" / "none"
        return value.upper() if isinstance(value, str) else value

    def to_fetch_request(self) -> FetchRequest:
        return FetchRequest(
            url=self.url,
            method=self.http_method.upper(),
            headers=dict(parse_qsl(self.headers, keep_blank_values=True)) if self.headers else {},
            body=self.post_data,
            authz=self.authz,
            sign_owner=self.sign_owner,
            sign_viewer=self.sign_viewer,
            no_cache=self.no_cache,
            oauth_service_name=self.oauth_service_name,
            oauth_token=self.oauth_token,
            oauth_token_secret=self.oauth_token_secret,
        )


class BatchMakeRequest(BaseModel):
    requests: List[FetchRequest] = Field(default_factory=list)


class ProxiedContent(BaseModel):
    """One entry of the makeRequest envelope."""
    body: str = ""
    rc: int
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None

# ==============================================================================
# Render
# ==============================================================================

class RenderRequest(BaseModel):
    features: List[str] = Field(default_factory=list, description="Features the gadget declares; empty means the core features.")
    preloads: List[FetchRequest] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict, description="Per-gadget configuration passed through untouched.")
    # container side libraries instead of the iframe ones
    container_mode: bool = False


class RenderBundle(BaseModel):
    """Everything the page renderer needs; producing the HTML itself happens elsewhere."""
    features: List[str]
    js: str
    js_url: str
    config: Dict[str, Any] = Field(default_factory=dict)
    preloads: Dict[str, ProxiedContent] = Field(default_factory=dict)

# ==============================================================================
# Token
# ==============================================================================

class TokenIssueRequest(BaseModel):
    owner_id: str
    viewer_id: str
    app_id: str
    domain: str
    app_url: str
    module_id: str = "0"
    container: str = "default"


class TokenIssueResponse(BaseModel):
    token: str
