# src/gadgetserver/engine/oauth/signer.py

import base64
import hmac
import logging
import re
import secrets
import time
from hashlib import sha1 as sha
from typing import Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode, urlunsplit

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from gadgetserver.core.security import SecurityToken
from gadgetserver.engine.fetch.base import FetchRequest
from gadgetserver.services.exceptions import ConfigurationError
from .base import (
    OAUTH_CONSUMER_KEY,
    OAUTH_NONCE,
    OAUTH_SIGNATURE,
    OAUTH_SIGNATURE_METHOD,
    OAUTH_TIMESTAMP,
    OAUTH_TOKEN,
    OAUTH_VERSION,
    OAUTH_VERSION_PARAM,
    OPENSOCIAL_APP_ID,
    OPENSOCIAL_APP_URL,
    OPENSOCIAL_OWNER_ID,
    OPENSOCIAL_VIEWER_ID,
    XOAUTH_PUBLIC_KEY,
    ParamsLocation,
    SignatureMethod,
    SignedRequest,
    percent_encode,
    signature_base_string,
    split_url,
)

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

ALLOWED_PARAM_NAME = re.compile(r"^[-_0-9A-Za-z]+$")
# 这些参数只用于告诉代理如何工作，或将由签名过程重新添加，不能由客户端伪造
RESERVED_PARAM_NAMES = {
    "output", "httpmethod", "authz", "st", "headers", "url", "contenttype", "postdata",
    "numentries", "getsummaries", "signowner", "signviewer", "gadget", "bypassspeccache",
}
RESERVED_PARAM_PREFIXES = ("oauth", "xoauth", "opensocial")


def default_nonce() -> str:
    # time + random so that concurrent signings never collide
    return f"{time.time_ns()}{secrets.token_hex(8)}"


def load_private_key(pem: Union[str, bytes], passphrase: Optional[str] = None) -> RSAPrivateKey:
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(
            pem, password=passphrase.encode("utf-8") if passphrase else None
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Unable to load the OAuth signing key: {e}")
    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError("The OAuth signing key must be an RSA private key.")
    return key


def is_allowed_param(name: str) -> bool:
    canonical = name.lower()
    if canonical in RESERVED_PARAM_NAMES or canonical.startswith(RESERVED_PARAM_PREFIXES):
        return False
    return bool(ALLOWED_PARAM_NAME.match(canonical))


class OAuthSigner:
    """
    Signs outbound requests with OAuth 1.0 (RFC 5849), HMAC-SHA1 or RSA-SHA1.
    Certificates are never fetched here; the public half is published separately.
    """

    def __init__(
        self,
        private_key: Optional[RSAPrivateKey] = None,
        key_name: Optional[str] = None,
        params_location: ParamsLocation = ParamsLocation.QUERY,
        time_source: Callable[[], float] = time.time,
        nonce_source: Callable[[], str] = default_nonce,
    ):
        self.private_key = private_key
        self.key_name = key_name
        self.params_location = ParamsLocation(params_location)
        self.time_source = time_source
        self.nonce_source = nonce_source

    @classmethod
    def from_settings(cls, settings) -> "OAuthSigner":
        private_key = None
        if settings.OAUTH_PRIVATE_KEY_FILE:
            try:
                with open(settings.OAUTH_PRIVATE_KEY_FILE, "rb") as f:
                    pem = f.read()
            except OSError as e:
                raise ConfigurationError(f"Cannot read OAUTH_PRIVATE_KEY_FILE: {e}")
            private_key = load_private_key(pem, settings.OAUTH_PRIVATE_KEY_PASSPHRASE)
        else:
            logger.warning("No OAuth private key configured; RSA-SHA1 signed fetches will fail.")
        return cls(
            private_key=private_key,
            key_name=settings.OAUTH_KEY_NAME,
            params_location=settings.OAUTH_PARAMS_LOCATION,
        )

    # --- public API ---

    def sign(
        self,
        request: FetchRequest,
        consumer_key: str,
        consumer_secret: str = "",
        token: Optional[str] = None,
        token_secret: str = "",
        signature_method: SignatureMethod = SignatureMethod.HMAC_SHA1,
        extra_params: Optional[Dict[str, str]] = None,
        query_params: Optional[List[Tuple[str, str]]] = None,
    ) -> SignedRequest:
        """
        :param extra_params: non-oauth parameters that are signed and appended to the query.
        :param query_params: replaces the URL's own query (used after sanitizing).
        """
        signature_method = SignatureMethod(signature_method)
        if signature_method == SignatureMethod.RSA_SHA1 and self.private_key is None:
            raise ConfigurationError("RSA-SHA1 signing requested but no private key is configured.")

        scheme, netloc, path, query = split_url(request.url)
        method = request.method.upper()

        if query_params is None:
            query_params = parse_qsl(query, keep_blank_values=True)
        query_params = list(query_params) + list((extra_params or {}).items())
        body_params = self._form_body_params(request)

        oauth_params: Dict[str, str] = {
            OAUTH_CONSUMER_KEY: consumer_key,
            OAUTH_NONCE: self.nonce_source(),
            OAUTH_SIGNATURE_METHOD: signature_method.value,
            OAUTH_TIMESTAMP: str(int(self.time_source())),
            OAUTH_VERSION_PARAM: OAUTH_VERSION,
        }
        if token is not None:
            oauth_params[OAUTH_TOKEN] = token
        if signature_method == SignatureMethod.RSA_SHA1 and self.key_name:
            oauth_params[XOAUTH_PUBLIC_KEY] = self.key_name

        base_url = urlunsplit((scheme, netloc, path, "", ""))
        base_string = signature_base_string(
            method, base_url, query_params + body_params + list(oauth_params.items())
        )
        oauth_params[OAUTH_SIGNATURE] = self._signature(
            base_string, signature_method, consumer_secret, token_secret
        )

        headers = dict(request.headers)
        if self.params_location == ParamsLocation.HEADER:
            headers["Authorization"] = self._authorization_header(oauth_params)
            final_query = query_params
        else:
            final_query = query_params + list(oauth_params.items())

        signed_url = urlunsplit((scheme, netloc, path, urlencode(final_query, quote_via=_quote_via), ""))
        return SignedRequest(
            method=method,
            url=signed_url,
            headers=headers,
            body=request.body,
            oauth_params=oauth_params,
        )

    def sign_for_gadget(self, request: FetchRequest, security_token: SecurityToken) -> SignedRequest:
        """
        Signed fetch: the receiving site learns who is asking from opensocial_* params
        and verifies them with our public certificate. Client supplied oauth / opensocial
        params are dropped first so they cannot be spoofed.
        """
        _, _, _, query = split_url(request.url)
        sanitized = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if is_allowed_param(k)]
        return self.sign(
            request,
            consumer_key=security_token.domain,
            token="",
            signature_method=SignatureMethod.RSA_SHA1,
            extra_params=self.opensocial_params(request, security_token),
            query_params=sanitized,
        )

    @staticmethod
    def opensocial_params(request: FetchRequest, security_token: SecurityToken) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if request.sign_owner and security_token.owner_id:
            params[OPENSOCIAL_OWNER_ID] = security_token.owner_id
        if request.sign_viewer and security_token.viewer_id:
            params[OPENSOCIAL_VIEWER_ID] = security_token.viewer_id
        if security_token.app_id:
            params[OPENSOCIAL_APP_ID] = security_token.app_id
        if security_token.app_url:
            params[OPENSOCIAL_APP_URL] = security_token.app_url
        return params

    # --- internals ---

    @staticmethod
    def _form_body_params(request: FetchRequest) -> List[Tuple[str, str]]:
        if not request.body:
            return []
        content_type = ""
        for name, value in request.headers.items():
            if name.lower() == "content-type":
                content_type = value.split(";")[0].strip().lower()
        if content_type == FORM_CONTENT_TYPE or (not content_type and request.method.upper() == "POST"):
            return parse_qsl(request.body, keep_blank_values=True)
        return []

    def _signature(self, base_string: str, method: SignatureMethod, consumer_secret: str, token_secret: str) -> str:
        if method == SignatureMethod.HMAC_SHA1:
            key = f"{percent_encode(consumer_secret or '')}&{percent_encode(token_secret or '')}"
            h = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), sha)
            return base64.b64encode(h.digest()).decode("ascii")
        signature = self.private_key.sign(base_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA1())
        return base64.b64encode(signature).decode("ascii")

    @staticmethod
    def _authorization_header(oauth_params: Dict[str, str]) -> str:
        parts = [f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())]
        return 'OAuth realm="", ' + ", ".join(parts)


def _quote_via(value, safe="", encoding=None, errors=None):
    return percent_encode(value)
