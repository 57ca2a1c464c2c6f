# app/schemas/user.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from app.schemas.analysis import CamelModel


class ScanSummary(CamelModel):
    scan_id: Optional[str] = None
    timestamp: datetime
    ingredient_names: List[str] = Field(default_factory=list)


class UserDto(CamelModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    ingredient_counts: Dict[str, int] = Field(default_factory=dict)
    scan_history: List[ScanSummary] = Field(default_factory=list)


class ProfileUpdate(CamelModel):
    # 只接受 displayName，其餘欄位（counts / history）一律忽略
    model_config = ConfigDict(extra="ignore")

    display_name: Optional[str] = None


class TopIngredient(CamelModel):
    ingredient_name: str
    count: int


def default_display_name(email: Optional[str]) -> Optional[str]:
    """沒有指定暱稱時，用 email 的 local-part。"""
    if not email:
        return None
    return email.split("@", 1)[0]
