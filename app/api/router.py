# app/api/router.py
from fastapi import APIRouter

from .endpoints import health, scan, users

# === API 主路由（掛在 settings.API_PREFIX 底下） ===
api_router = APIRouter()

# 健康檢查（不需 token）
api_router.include_router(health.router, tags=["health"])

# 成分標籤掃描（token 可有可無，見 SCAN_AUTH_MODE）
api_router.include_router(scan.router)

# 使用者檔案 / 統計 / 紀錄（需要 Bearer Token）
api_router.include_router(users.router, prefix="/user")
