"""
AES-256-GCM encryption for sensitive credential fields.

The key is derived once per process from the operator's master secret with
PBKDF2-HMAC-SHA256 and held only in memory. Every encryption draws a fresh
12-byte nonce from ``secrets``; nothing about the nonce depends on the input.

At-rest format (a single string, safe for a JSONB value):

    enc:v<algorithm_version>:<nonce>:<ciphertext>:<auth_tag>

with each part URL-safe base64. ``decrypt`` dispatches on the version so older
envelopes stay readable after the algorithm changes. Values without the
``enc:`` prefix are treated as version 0, plaintext carried over from the
legacy store; writes always target ``CURRENT_VERSION``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vendorvault.errors import ConfigurationError, DecryptError

logger = logging.getLogger(__name__)

ENVELOPE_PREFIX = "enc"
CURRENT_VERSION = 1
LEGACY_PLAINTEXT_VERSION = 0

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


def _b64e(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _b64d(text: str) -> bytes:
    return base64.urlsafe_b64decode(text.encode("ascii"))


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Versioned, self-describing at-rest form of one encrypted value."""

    algorithm_version: int
    nonce: bytes
    ciphertext: bytes
    auth_tag: bytes

    def serialize(self) -> str:
        return ":".join(
            [
                ENVELOPE_PREFIX,
                f"v{self.algorithm_version}",
                _b64e(self.nonce),
                _b64e(self.ciphertext),
                _b64e(self.auth_tag),
            ]
        )

    @classmethod
    def parse(cls, stored: str) -> EncryptedEnvelope:
        """Parse a stored envelope string. Raises DecryptError if malformed."""
        parts = stored.split(":")
        if len(parts) != 5 or parts[0] != ENVELOPE_PREFIX or not parts[1].startswith("v"):
            raise DecryptError("Malformed credential envelope")
        try:
            version = int(parts[1][1:])
            return cls(
                algorithm_version=version,
                nonce=_b64d(parts[2]),
                ciphertext=_b64d(parts[3]),
                auth_tag=_b64d(parts[4]),
            )
        except (ValueError, binascii.Error) as e:
            raise DecryptError(f"Malformed credential envelope: {e}") from e


def is_envelope(value: str) -> bool:
    """True if a stored value carries the envelope prefix."""
    return value.startswith(f"{ENVELOPE_PREFIX}:")


def derive_key(master_secret: str, salt: str, iterations: int) -> bytes:
    """Derive the 32-byte data key from the operator secret."""
    if not master_secret:
        raise ConfigurationError(
            "VENDORVAULT_MASTER_SECRET is not set. Sensitive credential fields "
            "cannot be stored without it."
        )
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt.encode("utf-8"),
        iterations=iterations,
    )
    return kdf.derive(master_secret.encode("utf-8"))


class Cipher:
    """Authenticated encryption of credential values under one in-memory key."""

    def __init__(self, key: bytes):
        if len(key) != KEY_BYTES:
            raise ValueError(f"Cipher key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, master_secret: str, salt: str, iterations: int) -> Cipher:
        return cls(derive_key(master_secret, salt, iterations))

    def encrypt(self, plaintext: str) -> EncryptedEnvelope:
        nonce = secrets.token_bytes(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return EncryptedEnvelope(
            algorithm_version=CURRENT_VERSION,
            nonce=nonce,
            ciphertext=sealed[:-TAG_BYTES],
            auth_tag=sealed[-TAG_BYTES:],
        )

    def decrypt(self, envelope: EncryptedEnvelope) -> str:
        if envelope.algorithm_version == 1:
            return self._decrypt_v1(envelope)
        raise DecryptError(
            f"Unsupported credential envelope version: {envelope.algorithm_version}"
        )

    def _decrypt_v1(self, envelope: EncryptedEnvelope) -> str:
        if len(envelope.nonce) != NONCE_BYTES or len(envelope.auth_tag) != TAG_BYTES:
            raise DecryptError("Credential envelope has wrong nonce or tag length")
        try:
            plaintext = self._aead.decrypt(
                envelope.nonce, envelope.ciphertext + envelope.auth_tag, None
            )
        except InvalidTag as e:
            raise DecryptError("Credential envelope failed authentication") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError("Decrypted credential is not valid UTF-8") from e

    def seal(self, plaintext: str) -> str:
        """Encrypt and serialize for storage."""
        return self.encrypt(plaintext).serialize()

    def unseal(self, stored: str) -> str:
        """Decrypt a stored value, accepting legacy plaintext as version 0."""
        if not is_envelope(stored):
            logger.warning(
                "Reading legacy plaintext credential value (envelope version %d)",
                LEGACY_PLAINTEXT_VERSION,
            )
            return stored
        return self.decrypt(EncryptedEnvelope.parse(stored))


_cipher: Cipher | None = None


def get_cipher() -> Cipher:
    """Get the process-wide cipher, deriving the key on first use.

    Raises ConfigurationError when the master secret is absent.
    """
    global _cipher
    if _cipher is not None:
        return _cipher

    from vendorvault.config import get_config

    cfg = get_config().cipher
    _cipher = Cipher.from_secret(cfg.master_secret, cfg.salt, cfg.iterations)
    logger.info("Credential cipher initialized (envelope v%d)", CURRENT_VERSION)
    return _cipher


def reset_cipher() -> None:
    """Drop the cached cipher (for testing)."""
    global _cipher
    _cipher = None
