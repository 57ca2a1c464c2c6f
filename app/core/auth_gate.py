# app/core/auth_gate.py
"""
API 前綴底下所有請求的 Bearer token 關卡（HTTP middleware）。

  - 健康檢查 / public 前綴：完全放行
  - /scan：SCAN_AUTH_MODE=optional 時「有帶就驗、驗不過當匿名」；required 時與其他路由相同
  - 其他：缺 header / 格式錯 → 401；驗證失敗 → 401 並附原因；成功 → 寫入 request.state
  - 驗證服務本身故障（抓不到公鑰）→ 500；/scan optional 模式則當匿名繼續
"""
import logging
from enum import Enum
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import Settings
from app.core.errors import AppError, error_body
from app.core.security import InvalidToken

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class PathAccess(str, Enum):
    OPEN = "open"
    OPTIONAL = "optional"
    PROTECTED = "protected"


class AuthGatePolicy:
    def __init__(self, api_prefix: str, health_path: str, public_prefix: str, scan_path: str, scan_mode: str):
        self.api_prefix = api_prefix.rstrip("/")
        self.health_path = health_path
        self.public_prefix = public_prefix
        self.scan_path = scan_path
        self.scan_mode = scan_mode

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthGatePolicy":
        return cls(
            api_prefix=settings.API_PREFIX,
            health_path=settings.health_path,
            public_prefix=settings.AUTH_PUBLIC_PREFIX,
            scan_path=settings.scan_path,
            scan_mode=settings.SCAN_AUTH_MODE,
        )

    def classify(self, path: str) -> PathAccess:
        if path != self.api_prefix and not path.startswith(self.api_prefix + "/"):
            return PathAccess.OPEN
        if path == self.health_path or path.startswith(self.public_prefix):
            return PathAccess.OPEN
        if path == self.scan_path and self.scan_mode == "optional":
            return PathAccess.OPTIONAL
        return PathAccess.PROTECTED


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(status_code=401, content=error_body(message))


def register_auth_gate(app: FastAPI, settings: Settings) -> None:
    policy = AuthGatePolicy.from_settings(settings)

    @app.middleware("http")
    async def auth_gate(request: Request, call_next):
        access = policy.classify(request.url.path)
        # CORS preflight 不帶 Authorization
        if access is PathAccess.OPEN or request.method == "OPTIONS":
            return await call_next(request)

        token = extract_bearer(request.headers.get("Authorization"))
        if token is None:
            if access is PathAccess.OPTIONAL:
                return await call_next(request)
            return _unauthorized("Missing or invalid Authorization header")

        services = getattr(request.app.state, "services", None)
        if services is None:
            return JSONResponse(status_code=503, content=error_body("Service is not ready"))

        try:
            verified = await services.token_verifier.verify(token)
        except InvalidToken as exc:
            if access is PathAccess.OPTIONAL:
                logger.warning("Ignoring invalid token on %s, continuing anonymously: %s", request.url.path, exc)
                return await call_next(request)
            logger.warning("Authentication failed: %s", exc)
            return _unauthorized(f"Invalid or expired token: {exc}")
        except AppError as exc:
            # 驗證服務本身失敗；middleware 丟出的例外不會經過 exception handler
            logger.error("Token verification unavailable on %s: %s", request.url.path, exc.message)
            if access is PathAccess.OPTIONAL:
                return await call_next(request)
            return JSONResponse(status_code=exc.status_code, content=error_body(exc.message), headers=exc.headers)

        request.state.user_id = verified.subject
        request.state.user_email = verified.email
        request.state.id_token = token
        logger.debug("Authenticated user: %s (%s)", verified.subject, verified.email)
        return await call_next(request)
