# tests/core/test_crypto.py

import base64

import pytest

from gadgetserver.core.crypto import BlobCrypter, derive_key, HMAC_SHA1_LEN, IV_LEN
from gadgetserver.services.exceptions import (
    ConfigurationError,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)

MAX_AGE = 3600
SKEW = 180
NOW = 1_700_000_000


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def crypter(clock) -> BlobCrypter:
    return BlobCrypter("cipher-secret", "hmac-secret", clock_skew=SKEW, time_source=clock)


def _flip_bit(token: str, index: int) -> str:
    raw = bytearray(base64.urlsafe_b64decode(token))
    raw[index] ^= 0x01
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii")

# ==============================================================================
# 1. Round trip
# ==============================================================================

async def test_wrap_unwrap_round_trip(crypter, clock):
    fields = {
        "o": "u1", "v": "u1", "i": "42", "d": "example.com",
        "u": "http://x/g.xml", "m": "0", "c": "default",
    }
    token = crypter.wrap(fields)

    clock.now += 1
    assert crypter.unwrap(token, MAX_AGE) == fields

    unwrapped, issued_at = crypter.unwrap_with_timestamp(token, MAX_AGE)
    assert unwrapped == fields
    assert issued_at == NOW


async def test_round_trip_keeps_special_characters(crypter):
    fields = {"u": "http://x/g.xml?a=1&b=2", "note": "é & = ;", "empty": ""}
    assert crypter.unwrap(crypter.wrap(fields), MAX_AGE) == fields


async def test_token_is_url_safe_and_random(crypter):
    fields = {"o": "u1"}
    first, second = crypter.wrap(fields), crypter.wrap(fields)
    assert first != second  # fresh IV per token
    for token in (first, second):
        assert "+" not in token and "/" not in token


async def test_timestamp_field_is_reserved(crypter):
    with pytest.raises(ValidationError):
        crypter.wrap({"t": "123"})

# ==============================================================================
# 2. Tampering
# ==============================================================================

@pytest.mark.parametrize("position", ["iv", "ciphertext", "mac"])
async def test_single_bit_flip_is_rejected(crypter, position):
    token = crypter.wrap({"o": "u1", "v": "u2"})
    size = len(base64.urlsafe_b64decode(token))
    index = {"iv": 0, "ciphertext": IV_LEN + 1, "mac": size - HMAC_SHA1_LEN + 3}[position]

    with pytest.raises(TokenInvalidError):
        crypter.unwrap(_flip_bit(token, index), MAX_AGE)


async def test_mac_is_checked_before_decrypting(crypter, mocker):
    token = crypter.wrap({"o": "u1"})
    decrypt = mocker.spy(crypter, "_decrypt")

    with pytest.raises(TokenInvalidError):
        crypter.unwrap(_flip_bit(token, IV_LEN + 2), MAX_AGE)
    decrypt.assert_not_called()


@pytest.mark.parametrize("token", ["", "not base64 at all!!", "AAAA", base64.urlsafe_b64encode(b"x" * 20).decode()])
async def test_garbage_tokens_share_one_message(crypter, token):
    with pytest.raises(TokenInvalidError) as exc_info:
        crypter.unwrap(token, MAX_AGE)
    assert exc_info.value.message == "Invalid security token"


async def test_other_keys_cannot_read_token(crypter, clock):
    token = crypter.wrap({"o": "u1"})
    other = BlobCrypter("another-secret", "hmac-secret", time_source=clock)
    with pytest.raises(TokenError):
        other.unwrap(token, MAX_AGE)

# ==============================================================================
# 3. Validity window
# ==============================================================================

async def test_token_expired_after_max_age_plus_skew(crypter, clock):
    token = crypter.wrap({"o": "u1"})

    clock.now = NOW + MAX_AGE + SKEW
    assert crypter.unwrap(token, MAX_AGE) == {"o": "u1"}

    clock.now = NOW + MAX_AGE + SKEW + 1
    with pytest.raises(TokenExpiredError):
        crypter.unwrap(token, MAX_AGE)


async def test_token_from_the_future_is_rejected(crypter, clock):
    clock.now = NOW + SKEW + 1
    token = crypter.wrap({"o": "u1"})

    clock.now = NOW
    with pytest.raises(TokenExpiredError):
        crypter.unwrap(token, MAX_AGE)

    clock.now = NOW + 1
    assert crypter.unwrap(token, MAX_AGE) == {"o": "u1"}

# ==============================================================================
# 4. Keys
# ==============================================================================

async def test_derived_keys_are_separated():
    master = b"one-secret-for-both"
    assert derive_key(0, master) != derive_key(1, master)
    assert len(derive_key(0, master)) == 16


async def test_single_secret_still_works(clock):
    crypter = BlobCrypter("only-one-secret", time_source=clock)
    assert crypter.unwrap(crypter.wrap({"a": "b"}), MAX_AGE) == {"a": "b"}


async def test_missing_cipher_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        BlobCrypter("")
