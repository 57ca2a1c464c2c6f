# app/core/errors.py
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException


class AppError(Exception):
    """所有對外錯誤的基底：對應一個 HTTP status，回應格式固定為 {"error": message}。"""

    status_code: int = 500

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.headers = headers


class AuthError(AppError):
    status_code = 401


class AuthProviderError(AppError):
    """驗證服務本身出問題（例如抓不到公鑰），不是 token 的錯。"""

    status_code = 500


class ValidationError(AppError):
    status_code = 400


class AnalysisError(AppError):
    status_code = 500


class StoreError(AppError):
    status_code = 500


class NotFound(StoreError):
    status_code = 404


class RateLimited(AppError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


def error_body(message: str) -> Dict[str, str]:
    return {"error": message}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.message),
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):
        # 統一輸出格式
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):
        # 客製化，但保持資訊節制
        return JSONResponse(
            status_code=422,
            content={"error": "Validation error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        # 小強化：避免洩露伺服器細節
        resp = await call_next(request)
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        return resp
