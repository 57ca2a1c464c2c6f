# app/api/endpoints/users.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from app.core.config import Settings
from app.core.deps import Identity, get_current_identity, get_settings_dep, get_user_store
from app.core.errors import AppError, StoreError
from app.schemas.user import ProfileUpdate, ScanSummary, TopIngredient, UserDto

router = APIRouter(tags=["user"])
log = logging.getLogger(__name__)


def _boundary_error(action: str, exc: Exception) -> StoreError:
    """非預期錯誤在路由邊界包成 JSON error。"""
    log.exception("Failed to %s: %s", action, exc)
    return StoreError(f"Failed to {action}: {exc}")


# === 取得個人檔案（不存在就建立） ===
@router.get("/profile", response_model=UserDto, response_model_exclude_none=True)
async def get_user_profile(
    identity: Identity = Depends(get_current_identity),
    store=Depends(get_user_store),
):
    try:
        return await store.get_or_create(identity.user_id, identity.email)
    except AppError:
        raise
    except Exception as exc:
        raise _boundary_error("get user profile", exc) from exc


# === 更新個人檔案（僅 displayName） ===
@router.post("/profile", response_model=UserDto, response_model_exclude_none=True)
async def update_user_profile(
    payload: Optional[ProfileUpdate] = Body(None),
    identity: Identity = Depends(get_current_identity),
    store=Depends(get_user_store),
):
    """只改暱稱；既有的成分統計與掃描紀錄原封保留。"""
    try:
        display_name = payload.display_name if payload is not None else None
        return await store.update_profile(identity.user_id, identity.email, display_name)
    except AppError:
        raise
    except Exception as exc:
        raise _boundary_error("update user profile", exc) from exc


# === 刪除帳號資料 ===
@router.delete("/profile")
async def delete_user_profile(
    identity: Identity = Depends(get_current_identity),
    store=Depends(get_user_store),
):
    try:
        await store.delete(identity.user_id)
    except AppError:
        raise
    except Exception as exc:
        raise _boundary_error("delete user", exc) from exc
    return {"message": "User account deleted successfully"}


# === 最常出現的成分 ===
@router.get("/top-ingredients", response_model=List[TopIngredient])
async def get_top_ingredients(
    limit: Optional[int] = Query(None, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    store=Depends(get_user_store),
    settings: Settings = Depends(get_settings_dep),
):
    try:
        return await store.get_top_ingredients(identity.user_id, limit or settings.TOP_INGREDIENTS_DEFAULT_LIMIT)
    except AppError:
        raise
    except Exception as exc:
        raise _boundary_error("get top ingredients", exc) from exc


# === 掃描紀錄（沒有紀錄的使用者回空陣列） ===
@router.get("/scan-history", response_model=List[ScanSummary])
async def get_scan_history(
    identity: Identity = Depends(get_current_identity),
    store=Depends(get_user_store),
):
    try:
        return await store.get_scan_history(identity.user_id)
    except AppError:
        raise
    except Exception as exc:
        raise _boundary_error("get scan history", exc) from exc
