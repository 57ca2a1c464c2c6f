# app/core/config.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    # === App Info ===
    APP_NAME: str = "LabelSpy API"
    API_PREFIX: str = "/api"
    ENV: str = os.getenv("ENV", "dev")
    DEBUG: bool = False
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # === CORS ===
    CORS_ORIGINS: Annotated[List[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: Any) -> List[str]:
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return [x.strip() for x in json.loads(s)]
            return [x.strip() for x in s.split(",") if x.strip()]
        return v

    # === Auth ===
    # firebase：正式環境用 Firebase ID token；jwt：本機開發 / 測試用 HS256
    AUTH_PROVIDER: str = os.getenv("AUTH_PROVIDER", "firebase")
    AUTH_PUBLIC_PREFIX: str = "/api/public"
    # optional：/scan 沒帶或帶錯 token 都視為匿名（沿用既有行為）；required：與其他路由一樣強制驗證
    SCAN_AUTH_MODE: str = os.getenv("SCAN_AUTH_MODE", "optional")

    FIREBASE_PROJECT_ID: Optional[str] = os.getenv("FIREBASE_PROJECT_ID")
    FIREBASE_CREDENTIALS_PATH: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_PATH")
    FIREBASE_CREDENTIALS_JSON: Optional[str] = os.getenv("FIREBASE_CREDENTIALS_JSON")
    FIREBASE_CHECK_REVOKED: bool = False

    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "change_this_to_a_long_random_string")
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: Optional[str] = None
    JWT_ISSUER: Optional[str] = None

    @field_validator("AUTH_PROVIDER")
    @classmethod
    def _check_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"firebase", "jwt"}:
            raise ValueError("AUTH_PROVIDER must be 'firebase' or 'jwt'")
        return v

    @field_validator("SCAN_AUTH_MODE")
    @classmethod
    def _check_scan_mode(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"optional", "required"}:
            raise ValueError("SCAN_AUTH_MODE must be 'optional' or 'required'")
        return v

    # === Document store ===
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "firestore")
    FIRESTORE_USERS_COLLECTION: str = "users"
    STORE_TXN_MAX_ATTEMPTS: int = int(os.getenv("STORE_TXN_MAX_ATTEMPTS", "5"))
    STORE_TXN_BACKOFF_SEC: float = float(os.getenv("STORE_TXN_BACKOFF_SEC", "0.05"))
    # None = 不設上限（既有行為）；設定後只保留最新 N 筆
    SCAN_HISTORY_MAX_ENTRIES: Optional[int] = None
    TOP_INGREDIENTS_DEFAULT_LIMIT: int = 10

    @field_validator("STORE_BACKEND")
    @classmethod
    def _check_store(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"firestore", "memory"}:
            raise ValueError("STORE_BACKEND must be 'firestore' or 'memory'")
        return v

    # === Gemini Vision ===
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    GEMINI_API_URL: str = (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
    )
    GEMINI_TIMEOUT_SEC: float = float(os.getenv("GEMINI_TIMEOUT_SEC", "60"))
    GEMINI_TEMPERATURE: float = 0.2
    GEMINI_MAX_OUTPUT_TOKENS: int = 10000
    GEMINI_SAFETY_THRESHOLD: str = "BLOCK_LOW_AND_ABOVE"

    # === Upload ===
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # === Scan rate limit / Redis ===
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    SCAN_RATE_LIMIT_ENABLED: bool = (
        (os.getenv("PYTEST_CURRENT_TEST") is None)
        and os.getenv("SCAN_RATE_LIMIT_ENABLED", "0").lower() in ("1", "true", "yes")
    )
    SCAN_RATE_LIMIT_WINDOW_SEC: int = int(os.getenv("SCAN_RATE_LIMIT_WINDOW_SEC", "60"))
    SCAN_RATE_LIMIT_MAX: int = int(os.getenv("SCAN_RATE_LIMIT_MAX", "10"))

    # === Observability（Sentry / Monitoring） ===
    SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN")
    SENTRY_ENV: str = os.getenv("SENTRY_ENV", "dev")
    SENTRY_TRACES_SAMPLE_RATE: float = 0.1
    METRICS_ENABLED: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def scan_path(self) -> str:
        return f"{self.API_PREFIX}/scan"

    @property
    def health_path(self) -> str:
        return f"{self.API_PREFIX}/health"


@lru_cache
def get_settings() -> Settings:
    """測試環境自動改用記憶體 store + 本機 JWT，並停用限流"""
    s = Settings()
    if s.ENV == "test":
        if "STORE_BACKEND" not in os.environ:
            s.STORE_BACKEND = "memory"
        if "AUTH_PROVIDER" not in os.environ:
            s.AUTH_PROVIDER = "jwt"
        s.SCAN_RATE_LIMIT_ENABLED = False
    return s
