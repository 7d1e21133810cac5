"""Password hashing and at-rest field encryption.

Encrypted fields use a self-describing envelope::

    v1.<b64 nonce>.<b64 tag>.<b64 ciphertext>

Rows written before the version tag existed use ``<nonce>:<tag>:<ciphertext>``
and still decrypt. Values without either delimiter predate encryption entirely
and are returned unchanged; that passthrough is permanent.
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from passlib.context import CryptContext

from ..errors import ConfigError, DecryptionError

KEY_SIZE = 32
NONCE_SIZE = 12  # 96-bit nonce for GCM
TAG_SIZE = 16
ENVELOPE_VERSION = "v1"


@dataclass(frozen=True)
class EncryptionKey:
    raw: bytes

    def __repr__(self) -> str:
        return "EncryptionKey(<redacted>)"

    @classmethod
    def from_b64(cls, value: str | None) -> "EncryptionKey":
        key = (value or "").strip()
        # Be tolerant of accidentally quoted env values, e.g. "<key>".
        if len(key) >= 2 and key[0] == key[-1] and key[0] in {'"', "'"}:
            key = key[1:-1].strip()
        if not key:
            raise ConfigError("ENC_KEY_V1 is not set")
        try:
            raw = base64.b64decode(key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError("ENC_KEY_V1 must be base64-encoded") from e
        if len(raw) != KEY_SIZE:
            raise ConfigError(f"ENC_KEY_V1 must decode to exactly {KEY_SIZE} bytes (got {len(raw)})")
        return cls(raw)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(part: str, what: str) -> bytes:
    try:
        return base64.b64decode(part, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"invalid base64 in {what}") from e


class CryptoLayer:
    def __init__(self, key: EncryptionKey, *, password_rounds: int = 12):
        self._aead = AESGCM(key.raw)
        self._pwd = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__default_rounds=max(4, int(password_rounds)),
        )

    # --- passwords ---

    def hash_password(self, plain: str) -> str:
        return self._pwd.hash(plain)

    def verify_password(self, plain: str, hashed: str | None) -> bool:
        if not hashed:
            return False
        try:
            return bool(self._pwd.verify(plain, hashed))
        except (ValueError, TypeError):
            # unrecognized or corrupt hash
            return False

    def dummy_verify(self) -> None:
        """Spend one hash computation so unknown users cost the same as bad passwords."""
        self._pwd.dummy_verify()

    # --- field encryption ---

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return ".".join([ENVELOPE_VERSION, _b64(nonce), _b64(tag), _b64(ciphertext)])

    def decrypt(self, blob: str) -> str:
        if "." not in blob and ":" not in blob:
            return blob

        if "." in blob:
            parts = blob.split(".")
            if len(parts) != 4:
                raise DecryptionError("invalid envelope: expected 4 parts")
            if parts[0] != ENVELOPE_VERSION:
                raise DecryptionError(f"unsupported envelope version {parts[0][:8]!r}")
            nonce_b64, tag_b64, ct_b64 = parts[1:]
        else:
            parts = blob.split(":")
            if len(parts) != 3:
                raise DecryptionError("invalid legacy envelope: expected 3 parts")
            nonce_b64, tag_b64, ct_b64 = parts

        nonce = _unb64(nonce_b64, "nonce")
        tag = _unb64(tag_b64, "tag")
        ciphertext = _unb64(ct_b64, "ciphertext")
        if len(nonce) != NONCE_SIZE:
            raise DecryptionError("invalid nonce length")
        if len(tag) != TAG_SIZE:
            raise DecryptionError("invalid tag length")

        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("authentication tag mismatch") from e
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("decrypted value is not valid UTF-8") from e
