# src/gadgetserver/engine/oauth/base.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from gadgetserver.services.exceptions import ValidationError

OAUTH_VERSION = "1.0"

OAUTH_CONSUMER_KEY = "oauth_consumer_key"
OAUTH_TOKEN = "oauth_token"
OAUTH_SIGNATURE_METHOD = "oauth_signature_method"
OAUTH_SIGNATURE = "oauth_signature"
OAUTH_TIMESTAMP = "oauth_timestamp"
OAUTH_NONCE = "oauth_nonce"
OAUTH_VERSION_PARAM = "oauth_version"
XOAUTH_PUBLIC_KEY = "xoauth_signature_publickey"

OPENSOCIAL_OWNER_ID = "opensocial_owner_id"
OPENSOCIAL_VIEWER_ID = "opensocial_viewer_id"
OPENSOCIAL_APP_ID = "opensocial_app_id"
OPENSOCIAL_APP_URL = "opensocial_app_url"


class SignatureMethod(str, Enum):
    HMAC_SHA1 = "HMAC-SHA1"
    RSA_SHA1 = "RSA-SHA1"


class ParamsLocation(str, Enum):
    QUERY = "query"
    HEADER = "header"


@dataclass
class SignedRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    oauth_params: Dict[str, str] = field(default_factory=dict)

    @property
    def signature(self) -> Optional[str]:
        return self.oauth_params.get(OAUTH_SIGNATURE)


# --- RFC 5849 helpers ---

def percent_encode(value: str) -> str:
    """RFC 3986 encoding: only unreserved characters stay as-is."""
    return quote(str(value), safe="~")


def split_url(url: str) -> Tuple[str, str, str, str]:
    """Returns (scheme, netloc, path, query) or raises ValidationError."""
    try:
        parts = urlsplit(url)
        # accessing port validates it
        _ = parts.port
    except ValueError:
        raise ValidationError(f"Malformed URL: {url}")
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValidationError(f"Malformed URL: {url}")
    return parts.scheme, parts.netloc, parts.path, parts.query


def normalize_url(url: str) -> str:
    """Base string URI: lower-case scheme and host, default ports dropped, no query or fragment."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    return urlunsplit((scheme, host, parts.path or "/", "", ""))


def normalize_parameters(params: List[Tuple[str, str]]) -> str:
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in params)
    return "&".join(f"{k}={v}" for k, v in encoded)


def signature_base_string(method: str, url: str, params: List[Tuple[str, str]]) -> str:
    return "&".join([
        percent_encode(method.upper()),
        percent_encode(normalize_url(url)),
        percent_encode(normalize_parameters(params)),
    ])
