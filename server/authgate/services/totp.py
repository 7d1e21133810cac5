from __future__ import annotations

import base64
import hashlib
import secrets
from io import BytesIO
from typing import Iterable

import pyotp
import qrcode

RECOVERY_CODE_COUNT = 10
RECOVERY_CODE_BYTES = 16
TOTP_VALID_WINDOW = 2  # ±2 steps = ~60s of clock skew


def new_totp_secret() -> str:
    return pyotp.random_base32()


def otpauth_uri(label: str, secret_b32: str, issuer: str) -> str:
    return pyotp.TOTP(secret_b32).provisioning_uri(name=label, issuer_name=issuer)


def verify_totp(secret_b32: str, code: str, *, window: int = TOTP_VALID_WINDOW, for_time=None) -> bool:
    code = (code or "").strip().replace(" ", "")
    if not code.isdigit() or len(code) != 6:
        return False
    # Not a replay guard: a code stays acceptable for the whole window.
    return bool(pyotp.TOTP(secret_b32).verify(code, for_time=for_time, valid_window=window))


def qr_data_url(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def hash_recovery_code(code: str) -> str:
    return hashlib.sha256((code or "").strip().lower().encode("utf-8")).hexdigest()


def generate_recovery_codes(n: int = RECOVERY_CODE_COUNT) -> list[str]:
    return [secrets.token_hex(RECOVERY_CODE_BYTES) for _ in range(n)]


def hash_recovery_codes(codes: Iterable[str]) -> list[str]:
    return [hash_recovery_code(c) for c in codes]
