# app/services/container.py
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

import firebase_admin
from fastapi import FastAPI

from app.core.config import Settings
from app.core.firebase import firestore_client, init_firebase_app, shutdown_firebase_app
from app.core.security import TokenVerifier, build_token_verifier
from app.db.documents import FirestoreDocumentBackend, InMemoryDocumentBackend
from app.services.rate_limit import ScanRateLimiter
from app.services.user_store import UserStore
from app.services.vision import GeminiVisionClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """整個 process 共用的外部連線；由 lifespan 建立 / 關閉，測試可自行注入。"""

    token_verifier: TokenVerifier
    user_store: UserStore
    vision: Any  # 需提供 async analyze(image_bytes, mime_type) -> AnalysisResult
    rate_limiter: Optional[ScanRateLimiter] = None
    firebase_app: Optional[firebase_admin.App] = None

    async def aclose(self) -> None:
        """逐一關閉；某一步失敗只記 log，後面的照樣關。"""
        close = getattr(self.vision, "aclose", None)
        if close is not None:
            try:
                await close()
            except Exception as exc:
                logger.warning("Failed to close vision client: %s", exc)
        if self.rate_limiter is not None:
            try:
                await self.rate_limiter.aclose()
            except Exception as exc:
                logger.warning("Failed to close rate limiter: %s", exc)
        if self.firebase_app is not None:
            try:
                shutdown_firebase_app(self.firebase_app)
            except Exception as exc:
                logger.warning("Failed to delete Firebase app: %s", exc)


def build_services(settings: Settings) -> Services:
    firebase_app = None
    if settings.AUTH_PROVIDER == "firebase" or settings.STORE_BACKEND == "firestore":
        firebase_app = init_firebase_app(settings)

    if settings.STORE_BACKEND == "firestore":
        backend = FirestoreDocumentBackend(firestore_client(firebase_app), settings.FIRESTORE_USERS_COLLECTION)
    else:
        logger.warning("Using in-memory document store; data is lost on restart")
        backend = InMemoryDocumentBackend()

    return Services(
        token_verifier=build_token_verifier(settings, firebase_app),
        user_store=UserStore.from_settings(backend, settings),
        vision=GeminiVisionClient.from_settings(settings),
        rate_limiter=ScanRateLimiter.from_settings(settings) if settings.SCAN_RATE_LIMIT_ENABLED else None,
        firebase_app=firebase_app,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan：啟動時建 Services，關閉時釋放。
    若 create_app 時已注入 services（測試），就不重建也不負責關閉。
    """
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = build_services(app.state.settings)
        logger.info("Services started (auth=%s, store=%s)",
                    app.state.settings.AUTH_PROVIDER, app.state.settings.STORE_BACKEND)
    try:
        yield
    finally:
        if owned and app.state.services is not None:
            await app.state.services.aclose()
            app.state.services = None
            logger.info("Services shut down")
