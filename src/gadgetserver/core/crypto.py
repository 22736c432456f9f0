# src/gadgetserver/core/crypto.py

import base64
import binascii
import hashlib
import logging
import os
import time
from typing import Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlencode

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from gadgetserver.services.exceptions import (
    ConfigurationError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CIPHER_KEY_LABEL = 0
HMAC_KEY_LABEL = 1

CIPHER_KEY_LEN = 16
IV_LEN = 16
HMAC_SHA1_LEN = 20

TIMESTAMP_KEY = "t"
DEFAULT_CLOCK_SKEW = 180


def derive_key(label: int, master_key: bytes, length: int = CIPHER_KEY_LEN) -> bytes:
    """Derives a sub-key from a master secret; different labels give unrelated keys."""
    return hashlib.sha1(bytes([label]) + master_key).digest()[:length]


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


class BlobCrypter:
    """
    Encrypts and signs small string maps into opaque, URL-safe blobs.

    Layout of the decoded blob: IV (16) | AES-128-CBC ciphertext | HMAC-SHA1 (20).
    The MAC covers IV and ciphertext and is always checked before decryption.
    """

    def __init__(
        self,
        cipher_secret: Union[str, bytes],
        hmac_secret: Optional[Union[str, bytes]] = None,
        clock_skew: int = DEFAULT_CLOCK_SKEW,
        time_source: Callable[[], float] = time.time,
    ):
        if not cipher_secret:
            raise ConfigurationError("A token cipher key is required to build a BlobCrypter.")
        cipher_secret = _as_bytes(cipher_secret)
        hmac_secret = _as_bytes(hmac_secret) if hmac_secret else cipher_secret
        # 即使两个密钥相同，派生标签不同也保证 cipher/hmac 密钥分离
        self._cipher_key = derive_key(CIPHER_KEY_LABEL, cipher_secret)
        self._hmac_key = derive_key(HMAC_KEY_LABEL, hmac_secret)
        self.clock_skew = clock_skew
        self.time_source = time_source

    # --- wrap ---

    def wrap(self, fields: Mapping[str, str]) -> str:
        if TIMESTAMP_KEY in fields:
            raise ValidationError(f"Field name '{TIMESTAMP_KEY}' is reserved for the token timestamp.")
        pairs = [(str(k), "" if v is None else str(v)) for k, v in fields.items()]
        pairs.append((TIMESTAMP_KEY, str(int(self.time_source()))))
        plaintext = urlencode(pairs).encode("utf-8")

        iv = os.urandom(IV_LEN)
        cipher_text = self._encrypt(iv, plaintext)
        mac = self._mac(iv + cipher_text)
        return base64.urlsafe_b64encode(iv + cipher_text + mac).decode("ascii")

    # --- unwrap ---

    def unwrap(self, token: str, max_age: int) -> Dict[str, str]:
        fields, _ = self.unwrap_with_timestamp(token, max_age)
        return fields

    def unwrap_with_timestamp(self, token: str, max_age: int) -> Tuple[Dict[str, str], int]:
        blob = self._decode(token)
        if len(blob) < IV_LEN + algorithms.AES.block_size // 8 + HMAC_SHA1_LEN:
            raise TokenInvalidError()

        signed, mac = blob[:-HMAC_SHA1_LEN], blob[-HMAC_SHA1_LEN:]
        self._verify_mac(signed, mac)

        iv, cipher_text = signed[:IV_LEN], signed[IV_LEN:]
        fields = self._deserialize(self._decrypt(iv, cipher_text))

        raw_timestamp = fields.pop(TIMESTAMP_KEY, None)
        try:
            issued_at = int(raw_timestamp)
        except (TypeError, ValueError):
            raise TokenInvalidError()
        self._check_timestamp(issued_at, max_age)
        return fields, issued_at

    # --- internals ---

    def _encrypt(self, iv: bytes, plaintext: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt(self, iv: bytes, cipher_text: bytes) -> bytes:
        try:
            decryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(cipher_text) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise TokenInvalidError()

    def _mac(self, data: bytes) -> bytes:
        h = hmac.HMAC(self._hmac_key, hashes.SHA1())
        h.update(data)
        return h.finalize()

    def _verify_mac(self, data: bytes, mac: bytes) -> None:
        h = hmac.HMAC(self._hmac_key, hashes.SHA1())
        h.update(data)
        try:
            h.verify(mac)  # constant time
        except InvalidSignature:
            raise TokenInvalidError()

    @staticmethod
    def _decode(token: str) -> bytes:
        if not token or not isinstance(token, str):
            raise TokenInvalidError()
        token = token.strip()
        try:
            return base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        except (binascii.Error, ValueError):
            raise TokenInvalidError()

    @staticmethod
    def _deserialize(plaintext: bytes) -> Dict[str, str]:
        try:
            pairs = parse_qsl(plaintext.decode("utf-8"), keep_blank_values=True, strict_parsing=True)
        except (UnicodeDecodeError, ValueError):
            raise TokenInvalidError()
        return dict(pairs)

    def _check_timestamp(self, issued_at: int, max_age: int) -> None:
        now = int(self.time_source())
        min_allowed = now - max_age - self.clock_skew
        max_allowed = now + self.clock_skew
        if issued_at < min_allowed or issued_at > max_allowed:
            logger.info(f"Rejected security token issued at {issued_at} (now={now}, max_age={max_age})")
            raise TokenExpiredError()
