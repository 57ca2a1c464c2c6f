# app/main.py
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings, get_settings
from app.core.logging import setup_logging
from app.core.errors import register_error_handlers
from app.core.auth_gate import register_auth_gate
from app.api.router import api_router
from app.services.container import Services, lifespan

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging(get_settings().LOG_LEVEL)
log = logging.getLogger(__name__)


def _validate_secrets(settings: Settings) -> None:
    """
    部署前安全檢查：在 prod/staging/preview 等環境時，不允許缺金鑰或用開發用設定。
    """
    env = (settings.ENV or "").lower()
    if env in {"prod", "production", "staging", "preview"}:
        problems = []
        if not settings.GEMINI_API_KEY:
            problems.append("GEMINI_API_KEY")
        if settings.STORE_BACKEND == "memory":
            problems.append("STORE_BACKEND=memory")
        if settings.AUTH_PROVIDER == "jwt" and len(settings.JWT_SECRET_KEY or "") < 32:
            problems.append("JWT_SECRET_KEY")
        if problems:
            raise RuntimeError(
                f"Insecure config for {', '.join(problems)} in ENV={settings.ENV}. "
                "Please fix them via environment variables."
            )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or get_settings()
    # 基本安全檢查
    _validate_secrets(settings)

    # lifespan 負責建立 / 關閉 Firebase、Firestore、Gemini client 等
    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # Auth gate 要在 CORS 內層，preflight 與 401 回應才會帶 CORS header
    register_auth_gate(app, settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Authorization"],
        max_age=3600,
    )

    # ---- Sentry 初始化（未設定 SENTRY_DSN 就略過）----
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            environment=settings.SENTRY_ENV or settings.ENV,
        )

    # ---- Prometheus /metrics ----
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    # 統一錯誤處理
    register_error_handlers(app)

    # === API 路由（/api/...）===
    app.include_router(api_router, prefix=settings.API_PREFIX)

    # 健康檢查（root & ops）
    @app.get("/", summary="Root")
    async def root():
        return {"app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        return {"ready": app.state.services is not None}

    log.info("Application initialized (env=%s)", settings.ENV)
    return app


# Uvicorn 進入點
app = create_app()
