# tests/test_security.py
import pytest
from firebase_admin import exceptions as firebase_exceptions
from jose import jwt

from app.core import security
from app.core.errors import AuthProviderError
from app.core.security import (
    FirebaseTokenVerifier,
    InvalidToken,
    JwtTokenVerifier,
    build_token_verifier,
)

pytestmark = pytest.mark.asyncio

SECRET = "unit-test-secret-unit-test-secret-42"


async def test_jwt_issue_and_verify():
    v = JwtTokenVerifier(SECRET)
    token = v.issue("uid-1", email="a@example.com")
    verified = await v.verify(token)
    assert verified.subject == "uid-1"
    assert verified.email == "a@example.com"

    claims = jwt.get_unverified_claims(token)
    assert {"sub", "jti", "iat", "exp"} <= set(claims)


async def test_jwt_audience_and_issuer_checked():
    v = JwtTokenVerifier(SECRET, audience="labelspy", issuer="dev")
    assert (await v.verify(v.issue("uid-2"))).subject == "uid-2"

    other = JwtTokenVerifier(SECRET, audience="someone-else", issuer="dev")
    with pytest.raises(InvalidToken):
        await v.verify(other.issue("uid-2"))


async def test_jwt_without_subject_rejected():
    token = jwt.encode({"email": "x@example.com"}, SECRET, algorithm="HS256")
    with pytest.raises(InvalidToken, match="no subject"):
        await JwtTokenVerifier(SECRET).verify(token)


async def test_jwt_expired_rejected():
    v = JwtTokenVerifier(SECRET)
    with pytest.raises(InvalidToken):
        await v.verify(v.issue("uid-3", expires_minutes=-1))


async def test_firebase_verifier_maps_claims(monkeypatch):
    seen = {}

    def fake_verify(token, app=None, check_revoked=False):
        seen.update(token=token, app=app, check_revoked=check_revoked)
        return {"uid": "fb-uid", "email": "fb@example.com"}

    monkeypatch.setattr(security.firebase_auth, "verify_id_token", fake_verify)
    sentinel_app = object()
    verified = await FirebaseTokenVerifier(sentinel_app, check_revoked=True).verify("id-token")

    assert verified.subject == "fb-uid"
    assert verified.email == "fb@example.com"
    assert seen == {"token": "id-token", "app": sentinel_app, "check_revoked": True}


@pytest.mark.parametrize(
    "error",
    [
        ValueError("malformed"),
        firebase_exceptions.UnauthenticatedError("expired"),
        firebase_exceptions.UnavailableError("cannot fetch certs"),
    ],
)
async def test_firebase_verifier_errors_become_invalid_token(monkeypatch, error):
    def fake_verify(token, app=None, check_revoked=False):
        raise error

    monkeypatch.setattr(security.firebase_auth, "verify_id_token", fake_verify)
    with pytest.raises(InvalidToken):
        await FirebaseTokenVerifier(object()).verify("id-token")


async def test_certificate_fetch_failure_is_server_error(monkeypatch):
    def fake_verify(token, app=None, check_revoked=False):
        raise security.firebase_auth.CertificateFetchError("Failed to fetch public key certificates", None)

    monkeypatch.setattr(security.firebase_auth, "verify_id_token", fake_verify)
    with pytest.raises(AuthProviderError) as ei:
        await FirebaseTokenVerifier(object()).verify("id-token")
    assert ei.value.status_code == 500


async def test_firebase_verifier_requires_uid(monkeypatch):
    monkeypatch.setattr(security.firebase_auth, "verify_id_token", lambda token, **kw: {"email": "x@y"})
    with pytest.raises(InvalidToken):
        await FirebaseTokenVerifier(object()).verify("id-token")


async def test_build_token_verifier(test_settings):
    jwt_settings = test_settings.model_copy(update={"AUTH_PROVIDER": "jwt"})
    assert isinstance(build_token_verifier(jwt_settings), JwtTokenVerifier)

    fb_settings = test_settings.model_copy(update={"AUTH_PROVIDER": "firebase"})
    with pytest.raises(RuntimeError):
        build_token_verifier(fb_settings)
    assert isinstance(build_token_verifier(fb_settings, firebase_app=object()), FirebaseTokenVerifier)
