# app/core/security.py
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions
from jose import JWTError, jwt
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings
from app.core.errors import AuthProviderError


class InvalidToken(Exception):
    """Token 無效 / 過期 / 被撤銷 / 格式錯誤。"""


@dataclass(frozen=True)
class VerifiedToken:
    subject: str
    email: Optional[str] = None


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> VerifiedToken:
        ...


# === Firebase ID Token ===
class FirebaseTokenVerifier:
    """
    交給 Firebase Admin SDK 驗證 ID token。
    verify_id_token 可能要抓 Google 公鑰（同步 I/O），所以丟到 threadpool 執行。
    不快取、不重試：驗證失敗就是失敗。
    """

    def __init__(self, app: firebase_admin.App, check_revoked: bool = False):
        self._app = app
        self._check_revoked = check_revoked

    async def verify(self, token: str) -> VerifiedToken:
        try:
            decoded = await run_in_threadpool(
                firebase_auth.verify_id_token,
                token,
                app=self._app,
                check_revoked=self._check_revoked,
            )
        except firebase_auth.CertificateFetchError as exc:
            raise AuthProviderError(f"Token verification unavailable: {exc}") from exc
        except (ValueError, firebase_exceptions.FirebaseError) as exc:
            raise InvalidToken(str(exc)) from exc

        uid = decoded.get("uid") or decoded.get("sub")
        if not uid:
            raise InvalidToken("Token has no subject")
        return VerifiedToken(subject=str(uid), email=decoded.get("email"))


# === 本機 / 測試用 HS256 JWT ===
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class JwtTokenVerifier:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience
        self._issuer = issuer

    def _decode(self, token: str) -> Dict[str, Any]:
        return jwt.decode(
            token,
            self._secret,
            algorithms=[self._algorithm],
            audience=self._audience,
            issuer=self._issuer,
        )

    async def verify(self, token: str) -> VerifiedToken:
        try:
            claims = self._decode(token)
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc

        sub = claims.get("sub")
        if not sub:
            raise InvalidToken("Token has no subject")
        return VerifiedToken(subject=str(sub), email=claims.get("email"))

    def issue(self, subject: str, email: Optional[str] = None, expires_minutes: int = 60) -> str:
        """
        簽發開發用 token（sub / email / jti / iat / exp）。
        expires_minutes 可給負數，方便測試過期分支。
        """
        claims: Dict[str, Any] = {
            "sub": subject,
            "jti": str(uuid4()),
            "iat": int(_now_utc().timestamp()),
            "exp": _now_utc() + timedelta(minutes=expires_minutes),
        }
        if email:
            claims["email"] = email
        if self._audience:
            claims["aud"] = self._audience
        if self._issuer:
            claims["iss"] = self._issuer
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)


def build_token_verifier(settings: Settings, firebase_app: Optional[firebase_admin.App] = None) -> TokenVerifier:
    if settings.AUTH_PROVIDER == "jwt":
        return JwtTokenVerifier(
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    if firebase_app is None:
        raise RuntimeError("AUTH_PROVIDER=firebase requires an initialized Firebase app")
    return FirebaseTokenVerifier(firebase_app, check_revoked=settings.FIREBASE_CHECK_REVOKED)
