# src/gadgetserver/core/security.py

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Dict, Optional
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict

from gadgetserver.core.crypto import BlobCrypter
from gadgetserver.services.exceptions import ConfigurationError, TokenInvalidError

logger = logging.getLogger(__name__)

ANONYMOUS_ID = "0"


class SecurityToken(BaseModel):
    """
    Identity of one gadget render session: who owns the page, who looks at it,
    and which gadget instance in which container is asking.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    viewer_id: str
    app_id: str
    domain: str
    app_url: str
    module_id: str
    container: str
    issued_at: Optional[int] = None

    # Compact keys used inside encrypted tokens
    KEY_MAP: ClassVar[Dict[str, str]] = {
        "owner_id": "o",
        "viewer_id": "v",
        "app_id": "i",
        "domain": "d",
        "app_url": "u",
        "module_id": "m",
        "container": "c",
    }

    @classmethod
    def anonymous(cls, container: str = "default") -> "SecurityToken":
        return cls(
            owner_id=ANONYMOUS_ID,
            viewer_id=ANONYMOUS_ID,
            app_id=ANONYMOUS_ID,
            domain=ANONYMOUS_ID,
            app_url=ANONYMOUS_ID,
            module_id=ANONYMOUS_ID,
            container=container,
        )

    @property
    def is_anonymous(self) -> bool:
        return self.owner_id == ANONYMOUS_ID and self.viewer_id == ANONYMOUS_ID

    def to_map(self) -> Dict[str, str]:
        return {short: getattr(self, attr) for attr, short in self.KEY_MAP.items()}

    @classmethod
    def from_map(cls, fields: Dict[str, str], issued_at: Optional[int] = None) -> "SecurityToken":
        values = {attr: fields.get(short, "") for attr, short in cls.KEY_MAP.items()}
        return cls(issued_at=issued_at, **values)


class SecurityTokenCodec(ABC):
    """Turns a SecurityToken into the string handed to the gadget iframe, and back."""

    @abstractmethod
    def encode(self, token: SecurityToken) -> str:
        raise NotImplementedError

    @abstractmethod
    def decode(self, raw: str) -> SecurityToken:
        raise NotImplementedError


class BlobCrypterTokenCodec(SecurityTokenCodec):
    def __init__(self, crypter: BlobCrypter, max_age: int):
        self.crypter = crypter
        self.max_age = max_age

    def encode(self, token: SecurityToken) -> str:
        return self.crypter.wrap(token.to_map())

    def decode(self, raw: str) -> SecurityToken:
        fields, issued_at = self.crypter.unwrap_with_timestamp(raw, self.max_age)
        return SecurityToken.from_map(fields, issued_at=issued_at)


class PlaintextTokenCodec(SecurityTokenCodec):
    """
    Development-only token format: owner:viewer:appId:domain:appUrl:moduleId:container

    The app URL may itself contain ':' (scheme, port). The four leading and two
    trailing positions are fixed, everything in between is the URL.
    """
    FIELD_COUNT = 7

    def encode(self, token: SecurityToken) -> str:
        return ":".join([
            token.owner_id, token.viewer_id, token.app_id, token.domain,
            token.app_url, token.module_id, token.container,
        ])

    def decode(self, raw: str) -> SecurityToken:
        if not raw:
            raise TokenInvalidError()
        parts = unquote(raw).split(":")
        if len(parts) < self.FIELD_COUNT:
            raise TokenInvalidError()
        owner_id, viewer_id, app_id, domain = parts[:4]
        module_id, container = parts[-2:]
        app_url = ":".join(parts[4:-2])
        return SecurityToken(
            owner_id=owner_id,
            viewer_id=viewer_id,
            app_id=app_id,
            domain=domain,
            app_url=app_url,
            module_id=module_id,
            container=container,
        )


def create_token_codec(settings) -> SecurityTokenCodec:
    """
    Chooses the codec once at startup.
    Configured cipher keys always win: plaintext tokens are then never accepted.
    """
    if settings.TOKEN_CIPHER_KEY:
        crypter = BlobCrypter(
            settings.TOKEN_CIPHER_KEY,
            settings.TOKEN_HMAC_KEY,
            clock_skew=settings.TOKEN_CLOCK_SKEW_SECONDS,
        )
        return BlobCrypterTokenCodec(crypter, settings.TOKEN_MAX_AGE_SECONDS)
    if settings.ALLOW_PLAINTEXT_TOKEN:
        logger.warning("Plaintext security tokens are enabled. Never use this mode in production.")
        return PlaintextTokenCodec()
    raise ConfigurationError(
        "TOKEN_CIPHER_KEY is not set. Configure token keys or explicitly enable ALLOW_PLAINTEXT_TOKEN for development."
    )


class SecurityTokenService:
    """Decodes the raw `st` value of a request, falling back to the anonymous token."""

    def __init__(self, codec: SecurityTokenCodec, allow_anonymous: bool = True, default_container: str = "default"):
        self.codec = codec
        self.allow_anonymous = allow_anonymous
        self.default_container = default_container

    def issue(self, token: SecurityToken) -> str:
        return self.codec.encode(token)

    def extract(self, raw: Optional[str]) -> SecurityToken:
        if not raw:
            if self.allow_anonymous:
                return SecurityToken.anonymous(self.default_container)
            raise TokenInvalidError()
        return self.codec.decode(raw)
