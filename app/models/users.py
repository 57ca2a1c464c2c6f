# app/models/users.py
"""
Firestore `users/{uid}` 文件的儲存格式（含 schemaVersion）。

讀回來時一律經過 UserDocument.decode：型別不對就直接丟 StoreError，
不會默默略過非數字的計數。
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from app.core.errors import StoreError
from app.schemas.user import ScanSummary, UserDto

SCHEMA_VERSION = 1

COUNTS_FIELD = "ingredientCounts"
HISTORY_FIELD = "scanHistory"


def decode_count(name: str, value: Any) -> int:
    # bool 是 int 的子類，要先排除
    if isinstance(value, bool):
        raise ValueError(f"count for {name!r} is a boolean")
    if isinstance(value, int):
        count = value
    elif isinstance(value, float) and value.is_integer():
        count = int(value)
    else:
        raise ValueError(f"count for {name!r} is not an integer: {value!r}")
    if count < 0:
        raise ValueError(f"count for {name!r} is negative")
    return count


class StoredScan(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    scan_id: Optional[str] = None
    timestamp: datetime
    ingredient_names: List[str] = Field(default_factory=list)


class UserDocument(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    schema_version: int = SCHEMA_VERSION
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    ingredient_counts: Dict[str, int] = Field(default_factory=dict)
    scan_history: List[StoredScan] = Field(default_factory=list)

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, v: int) -> int:
        if v > SCHEMA_VERSION:
            raise ValueError(f"unsupported schemaVersion {v} (max {SCHEMA_VERSION})")
        return v

    @field_validator("ingredient_counts", mode="before")
    @classmethod
    def _decode_counts(cls, v: Any) -> Dict[str, int]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("ingredientCounts must be a map")
        return {str(k): decode_count(str(k), c) for k, c in v.items()}

    @field_validator("scan_history", mode="before")
    @classmethod
    def _null_history(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def decode(cls, uid: str, data: Dict[str, Any]) -> "UserDocument":
        try:
            return cls.model_validate({**data, "uid": uid})
        except ValidationError as exc:
            raise StoreError(f"Corrupt user document {uid}: {exc.error_count()} invalid field(s)") from exc

    def encode(self) -> Dict[str, Any]:
        """寫入 Firestore 用的 dict（timestamp 存 ISO-8601 字串）。"""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_dto(cls, user: UserDto) -> "UserDocument":
        return cls(
            uid=user.uid,
            email=user.email,
            display_name=user.display_name,
            ingredient_counts=dict(user.ingredient_counts),
            scan_history=[StoredScan(**s.model_dump()) for s in user.scan_history],
        )

    def to_dto(self) -> UserDto:
        return UserDto(
            uid=self.uid,
            email=self.email,
            display_name=self.display_name,
            ingredient_counts=dict(self.ingredient_counts),
            scan_history=[ScanSummary(**s.model_dump()) for s in self.scan_history],
        )


def encode_history(history: List[StoredScan]) -> List[Dict[str, Any]]:
    return [s.model_dump(by_alias=True, mode="json") for s in history]
