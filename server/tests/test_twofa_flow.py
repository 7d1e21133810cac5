import time

import pyotp
from sqlalchemy import select

ALICE = {
    "first_name": "Alice",
    "email": "alice@example.com",
    "password": "Wonder1and!",
    "phone": "555-0100",
}


def _signup(client):
    r = client.post("/auth/signup", json=ALICE)
    assert r.status_code == 201, r.text


def _login(client):
    r = client.post("/auth/login", json={"email": ALICE["email"], "password": ALICE["password"]})
    assert r.status_code == 200, r.text
    return r.json()


def _state(client):
    return client.get("/auth/session").json()["state"]


def _session_row(client):
    from authgate.db import SessionLocal
    from authgate.deps import session_digest
    from authgate.models import AuthSession

    token = client.cookies.get("authgate_session")
    assert token
    with SessionLocal() as db:
        return db.execute(
            select(AuthSession).where(AuthSession.token_sha256 == session_digest(token))
        ).scalar_one_or_none()


def _user():
    from authgate.db import SessionLocal
    from authgate.models import User

    with SessionLocal() as db:
        return db.execute(select(User).where(User.email == ALICE["email"])).scalar_one()


def _recovery_hashes():
    from authgate.db import SessionLocal
    from authgate.models import RecoveryCode

    user_id = _user().id
    with SessionLocal() as db:
        return list(db.execute(select(RecoveryCode.code_hash).where(RecoveryCode.user_id == user_id)).scalars())


def _setup(client):
    r = client.get("/twofa/setup", params={"method": "app"})
    assert r.status_code == 200, r.text
    assert r.json()["qr"].startswith("data:image/png;base64,")


def _enroll(client):
    """Run setup + confirmation; return (secret, recovery codes)."""
    _setup(client)
    row = _session_row(client)
    assert row.enroll_secret_enc
    secret = client.app.state.crypto.decrypt(row.enroll_secret_enc)

    r = client.post("/twofa/verify", json={"method": "app", "token": pyotp.TOTP(secret).now()})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    return secret, body["recoveryCodes"]


def _code_outside_window(secret):
    now = time.time()
    near = {pyotp.TOTP(secret).at(now + k * 30) for k in range(-3, 4)}
    for d in range(10):
        candidate = str(d) * 6
        if candidate not in near:
            return candidate
    raise AssertionError("unreachable")


def test_enrollment_confirms_secret_and_issues_recovery_codes(client):
    _signup(client)
    secret, codes = _enroll(client)

    assert len(codes) == 10
    assert len(set(codes)) == 10

    user = _user()
    assert user.twofa_enabled is True
    assert user.twofa_enabled_at is not None
    assert user.totp_secret_enc.startswith("v1.")
    assert client.app.state.crypto.decrypt(user.totp_secret_enc) == secret

    hashes = _recovery_hashes()
    assert len(hashes) == 10
    assert len(set(hashes)) == 10
    assert not set(codes) & set(hashes)

    row = _session_row(client)
    assert row.state == "authenticated"
    assert row.enroll_secret_enc is None


def test_secret_is_not_persisted_before_confirmation(client):
    _signup(client)
    _setup(client)
    user = _user()
    assert user.totp_secret_enc is None
    assert user.twofa_enabled is False
    assert _session_row(client).enroll_secret_enc


def test_login_with_2fa_requires_code(client):
    _signup(client)
    secret, _ = _enroll(client)
    client.post("/auth/logout")

    body = _login(client)
    assert body == {"success": True, "twofa_required": True, "message": "2FA required"}
    assert _state(client) == "pending_second_factor"
    assert client.get("/auth/me").status_code == 401

    r = client.post("/twofa/verify", json={"method": "app", "token": _code_outside_window(secret)})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid code."
    assert _state(client) == "pending_second_factor"

    r = client.post("/twofa/verify", json={"method": "app", "token": pyotp.TOTP(secret).now()})
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True}
    assert _state(client) == "authenticated"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["is_2fa_enabled"] is True


def test_code_from_previous_step_is_accepted(client):
    _signup(client)
    secret, _ = _enroll(client)
    client.post("/auth/logout")
    _login(client)

    r = client.post("/twofa/verify", json={"method": "app", "token": pyotp.TOTP(secret).at(time.time() - 30)})
    assert r.status_code == 200, r.text


def test_setup_when_enabled_reuses_stored_secret(client):
    _signup(client)
    _enroll(client)
    before = _user().totp_secret_enc

    _setup(client)
    assert _user().totp_secret_enc == before
    row = _session_row(client)
    assert row.enroll_secret_enc is None
    assert row.state == "authenticated"


def test_setup_during_pending_login_does_not_change_session(client):
    _signup(client)
    _enroll(client)
    client.post("/auth/logout")
    _login(client)

    _setup(client)
    row = _session_row(client)
    assert row.state == "pending_second_factor"
    assert row.enroll_secret_enc is None


def test_disable_then_reenroll_issues_disjoint_codes(client):
    _signup(client)
    secret, first_codes = _enroll(client)

    r = client.post("/twofa/disable", json={"method": "app", "token": _code_outside_window(secret)})
    assert r.status_code == 401
    assert _user().twofa_enabled is True

    r = client.post("/twofa/disable", json={"method": "app", "token": pyotp.TOTP(secret).now()})
    assert r.status_code == 200, r.text
    user = _user()
    assert user.twofa_enabled is False
    assert user.totp_secret_enc is None
    assert _recovery_hashes() == []

    client.post("/auth/logout")
    assert "user" in _login(client)

    new_secret, second_codes = _enroll(client)
    assert new_secret != secret
    assert len(second_codes) == 10
    assert not set(first_codes) & set(second_codes)
    assert len(_recovery_hashes()) == 10


def test_disable_requires_authenticated_session(client):
    _signup(client)
    r = client.post("/twofa/disable", json={"method": "app", "token": "123456"})
    assert r.status_code == 401


def test_setup_rejects_unsupported_method(client):
    _signup(client)
    r = client.get("/twofa/setup", params={"method": "sms"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Only 'app' method supported."
    assert client.get("/twofa/setup").status_code == 400


def test_setup_requires_a_session(client):
    r = client.get("/twofa/setup", params={"method": "app"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Authenticate first."


def test_verify_rejects_bad_requests(client):
    _signup(client)
    r = client.post("/twofa/verify", json={"method": "sms", "token": "123456"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid request."

    r = client.post("/twofa/verify", json={"method": "app", "token": ""})
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid request."


def test_verify_without_setup(client):
    _signup(client)
    r = client.post("/twofa/verify", json={"method": "app", "token": "123456"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Setup not initiated."


def test_wrong_enrollment_code_keeps_pending_enrollment(client):
    _signup(client)
    _setup(client)
    secret = client.app.state.crypto.decrypt(_session_row(client).enroll_secret_enc)

    r = client.post("/twofa/verify", json={"method": "app", "token": _code_outside_window(secret)})
    assert r.status_code == 401
    assert _user().twofa_enabled is False
    row = _session_row(client)
    assert row.state == "registered"
    assert row.enroll_secret_enc


def test_verify_requires_a_session(client):
    r = client.post("/twofa/verify", json={"method": "app", "token": "123456"})
    assert r.status_code == 401


def test_corrupt_stored_secret_is_a_server_error(client):
    _signup(client)
    _enroll(client)
    client.post("/auth/logout")
    _login(client)

    from authgate.db import SessionLocal
    from authgate.models import User

    with SessionLocal() as db:
        user = db.execute(select(User)).scalar_one()
        user.totp_secret_enc = "v1.AAAAAAAAAAAAAAAA.AAAAAAAAAAAAAAAAAAAAAA==.AAAA"
        db.commit()

    r = client.post("/twofa/verify", json={"method": "app", "token": "123456"})
    assert r.status_code == 500
    assert r.json() == {"detail": "Internal server error"}
    assert _state(client) == "pending_second_factor"
