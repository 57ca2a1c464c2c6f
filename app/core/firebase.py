# app/core/firebase.py
"""
Firebase Admin 啟動：只在 process 啟動時做一次，回傳 App handle 給 token 驗證與 Firestore 使用。

憑證來源順序：
  1. FIREBASE_CREDENTIALS_PATH（service account 檔案）
  2. FIREBASE_CREDENTIALS_JSON（整份 JSON 放在環境變數，雲端部署常用）
  3. app/resources/firebase-credentials.json（隨程式打包）
  4. Application Default Credentials（GCP 執行環境）
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict

import firebase_admin
from firebase_admin import credentials, firestore_async

from app.core.config import Settings

logger = logging.getLogger(__name__)

BUNDLED_CREDENTIALS = Path(__file__).resolve().parent.parent / "resources" / "firebase-credentials.json"


def load_credentials(settings: Settings) -> credentials.Base:
    if settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
        logger.info("Firebase credentials loaded from file: %s", settings.FIREBASE_CREDENTIALS_PATH)
        return cred

    if settings.FIREBASE_CREDENTIALS_JSON:
        info: Dict[str, Any] = json.loads(settings.FIREBASE_CREDENTIALS_JSON)
        cred = credentials.Certificate(info)
        logger.info("Firebase credentials loaded from FIREBASE_CREDENTIALS_JSON")
        return cred

    if BUNDLED_CREDENTIALS.is_file():
        cred = credentials.Certificate(str(BUNDLED_CREDENTIALS))
        logger.info("Firebase credentials loaded from bundled resource")
        return cred

    logger.info("Firebase using application default credentials")
    return credentials.ApplicationDefault()


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    """已初始化過就直接沿用（例如 uvicorn --reload 或測試重建 app）。"""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options: Dict[str, Any] = {}
    if settings.FIREBASE_PROJECT_ID:
        options["projectId"] = settings.FIREBASE_PROJECT_ID
    app = firebase_admin.initialize_app(load_credentials(settings), options or None)
    logger.info("Firebase app initialized (project=%s)", app.project_id)
    return app


def shutdown_firebase_app(app: firebase_admin.App) -> None:
    firebase_admin.delete_app(app)
    logger.info("Firebase app deleted")


def firestore_client(app: firebase_admin.App):
    """Firestore async client，與 Firebase app 共用憑證與 project。"""
    return firestore_async.client(app)
