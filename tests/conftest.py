# tests/conftest.py
import os
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# ---- 測試期環境變數（先於 app 載入）----
os.environ.setdefault("ENV", "test")
os.environ.setdefault("AUTH_PROVIDER", "jwt")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SCAN_RATE_LIMIT_ENABLED", "0")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-123")

from app.core.config import get_settings  # noqa: E402
from app.core.security import JwtTokenVerifier  # noqa: E402
from app.db.documents import InMemoryDocumentBackend  # noqa: E402
from app.main import create_app  # noqa: E402
from app.schemas.analysis import AnalysisResult  # noqa: E402
from app.services.container import Services  # noqa: E402
from app.services.user_store import UserStore  # noqa: E402

# 1x1 PNG 標頭就夠了，vision client 是假的
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def sample_result(*names: Optional[str], scan_id: str = "scan-1") -> AnalysisResult:
    return AnalysisResult.model_validate({
        "scanId": scan_id,
        "ingredients": [{"name": n, "category": "Additive"} for n in names],
        "summary": "test summary",
    })


class FakeVision:
    """記錄呼叫次數；可指定回傳結果或要丟的錯誤。"""

    def __init__(self, result: Optional[AnalysisResult] = None, error: Optional[Exception] = None):
        self.result = result or sample_result("Sugar", "Citric Acid", scan_id="fake-scan")
        self.error = error
        self.calls: List[Tuple[bytes, str]] = []

    async def analyze(self, image_bytes: bytes, mime_type: str) -> AnalysisResult:
        self.calls.append((image_bytes, mime_type))
        if self.error is not None:
            raise self.error
        return self.result


class SpyBackend(InMemoryDocumentBackend):
    """記錄是否被讀寫過，用來驗證「未授權時不碰 store」。"""

    def __init__(self) -> None:
        super().__init__()
        self.touched = 0

    async def get(self, doc_id):
        self.touched += 1
        return await super().get(doc_id)

    async def set(self, doc_id, data):
        self.touched += 1
        await super().set(doc_id, data)

    async def create_if_absent(self, doc_id, data):
        self.touched += 1
        return await super().create_if_absent(doc_id, data)


@pytest.fixture
def test_settings():
    return get_settings().model_copy(update={"METRICS_ENABLED": False})


@pytest.fixture
def verifier(test_settings):
    return JwtTokenVerifier(test_settings.JWT_SECRET_KEY, test_settings.JWT_ALGORITHM)


@pytest.fixture
def backend():
    return SpyBackend()


@pytest.fixture
def store(backend):
    return UserStore(backend, max_attempts=5, backoff_sec=0)


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def services(verifier, store, vision):
    return Services(token_verifier=verifier, user_store=store, vision=vision)


@pytest.fixture
def app(test_settings, services):
    return create_app(test_settings, services=services)


@pytest.fixture
def auth_headers(verifier):
    def _make(uid: str = "user-1", email: Optional[str] = "alice@example.com"):
        return {"Authorization": f"Bearer {verifier.issue(uid, email=email)}"}
    return _make


@pytest_asyncio.fixture
async def client(app):
    """使用 ASGITransport 直接掛載 app，不需啟動伺服器。"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

