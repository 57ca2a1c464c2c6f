# tests/test_auth_header_parsing.py
import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_missing_authorization_header(client: AsyncClient, backend):
    r = await client.get("/api/user/profile")
    assert r.status_code == 401
    assert r.json() == {"error": "Missing or invalid Authorization header"}
    assert backend.touched == 0


async def test_malformed_bearer_header(client: AsyncClient, backend, verifier):
    # 缺少 'Bearer ' 前綴
    token = verifier.issue("user-1")
    for header in (token, f"bearer {token}", "Bearer ", "Basic abc"):
        r = await client.get("/api/user/profile", headers={"Authorization": header})
        assert r.status_code == 401, header
        assert "error" in r.json()
    assert backend.touched == 0


async def test_invalid_token_reports_reason(client: AsyncClient, backend):
    r = await client.get("/api/user/profile", headers={"Authorization": "Bearer not.a.jwt"})
    assert r.status_code == 401
    assert r.json()["error"].startswith("Invalid or expired token: ")
    assert backend.touched == 0


async def test_expired_token_rejected(client: AsyncClient, verifier):
    expired = verifier.issue("user-1", expires_minutes=-5)
    r = await client.get("/api/user/top-ingredients", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401


async def test_token_signed_with_other_secret_rejected(client: AsyncClient):
    from app.core.security import JwtTokenVerifier

    forged = JwtTokenVerifier("some-other-secret-some-other-secret").issue("user-1")
    r = await client.get("/api/user/scan-history", headers={"Authorization": f"Bearer {forged}"})
    assert r.status_code == 401
