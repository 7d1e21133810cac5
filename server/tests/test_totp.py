import re

import pyotp

from authgate.services import totp

T0 = 1_700_000_010  # start of a 30s step
SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"


def _code_at(offset_seconds: int) -> str:
    return pyotp.TOTP(SECRET).at(T0 + offset_seconds)


def test_codes_within_two_steps_verify():
    for offset in (-60, -30, 0, 30, 60):
        assert totp.verify_totp(SECRET, _code_at(offset), for_time=T0), offset


def test_codes_three_steps_away_fail():
    current = {_code_at(o) for o in (-60, -30, 0, 30, 60)}
    for offset in (-90, 90, -300, 300):
        code = _code_at(offset)
        if code in current:
            continue  # 1-in-a-million collision with an in-window code
        assert not totp.verify_totp(SECRET, code, for_time=T0), offset


def test_malformed_codes_are_rejected():
    assert not totp.verify_totp(SECRET, "", for_time=T0)
    assert not totp.verify_totp(SECRET, "12345", for_time=T0)
    assert not totp.verify_totp(SECRET, "abcdef", for_time=T0)
    assert totp.verify_totp(SECRET, " " + _code_at(0)[:3] + " " + _code_at(0)[3:], for_time=T0)


def test_new_secret_and_provisioning_uri():
    secret = totp.new_totp_secret()
    assert re.fullmatch(r"[A-Z2-7]{32}", secret)
    uri = totp.otpauth_uri("alice@example.com", secret, "authgate")
    assert uri.startswith("otpauth://totp/")
    assert "issuer=authgate" in uri
    assert f"secret={secret}" in uri


def test_qr_data_url_is_png():
    url = totp.qr_data_url("otpauth://totp/authgate:alice?secret=JBSWY3DPEHPK3PXP&issuer=authgate")
    assert url.startswith("data:image/png;base64,")


def test_recovery_codes_are_ten_distinct_high_entropy_values():
    codes = totp.generate_recovery_codes()
    assert len(codes) == 10
    assert len(set(codes)) == 10
    assert all(re.fullmatch(r"[0-9a-f]{32}", c) for c in codes)

    hashes = totp.hash_recovery_codes(codes)
    assert len(set(hashes)) == 10
    assert all(len(h) == 64 for h in hashes)
    assert not set(codes) & set(hashes)
    assert totp.hash_recovery_code(codes[0].upper()) == hashes[0]
