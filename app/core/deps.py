# app/core/deps.py
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from app.core.config import Settings
from app.core.errors import AuthError, StoreError


@dataclass(frozen=True)
class Identity:
    """auth gate 驗證通過後放進 request.state 的身分。"""

    user_id: str
    email: Optional[str]
    id_token: str


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise StoreError("Service is not ready")
    return services


def get_optional_identity(request: Request) -> Optional[Identity]:
    """
    不強制登入：
      - gate 驗證通過 -> 回傳 Identity
      - 沒帶 / 無效（只在 /scan optional 模式會走到）-> None
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        return None
    return Identity(
        user_id=user_id,
        email=getattr(request.state, "user_email", None),
        id_token=getattr(request.state, "id_token", ""),
    )


def get_current_identity(identity: Optional[Identity] = Depends(get_optional_identity)) -> Identity:
    # optional 路徑沒有身分時會走到這裡
    if identity is None:
        raise AuthError("Unauthorized")
    return identity


def get_user_store(services=Depends(get_services)):
    return services.user_store
