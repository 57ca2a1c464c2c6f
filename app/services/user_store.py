# app/services/user_store.py
"""
使用者紀錄（users/{uid}）的 CRUD 與兩個計數 / 歷史的 read-modify-write。

incrementIngredientCounts / addScanHistory / update_profile 都走 _optimistic_update：
  讀 snapshot(version) → 算出要改的欄位 → 條件寫入 → 衝突就退避後重試，最多 max_attempts 次。
每個操作只寫自己負責的欄位；首次建立用 create_if_absent，不會蓋掉別人剛建好的紀錄。

注意：scanHistory 每次都整包重寫，筆數無上限時寫入成本會隨歷史線性成長
（可用 SCAN_HISTORY_MAX_ENTRIES 截斷，預設不截斷）。
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from app.core.config import Settings
from app.core.errors import NotFound, StoreError
from app.db.documents import DocumentBackend, WriteConflict
from app.models.users import (
    COUNTS_FIELD,
    HISTORY_FIELD,
    StoredScan,
    UserDocument,
    encode_history,
)
from app.schemas.analysis import AnalysisResult
from app.schemas.user import ScanSummary, TopIngredient, UserDto, default_display_name

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserStore:
    def __init__(
        self,
        backend: DocumentBackend,
        *,
        max_attempts: int = 5,
        backoff_sec: float = 0.05,
        history_limit: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._backend = backend
        self.max_attempts = max_attempts
        self.backoff_sec = backoff_sec
        self.history_limit = history_limit
        self._clock = clock

    @classmethod
    def from_settings(cls, backend: DocumentBackend, settings: Settings) -> "UserStore":
        return cls(
            backend,
            max_attempts=settings.STORE_TXN_MAX_ATTEMPTS,
            backoff_sec=settings.STORE_TXN_BACKOFF_SEC,
            history_limit=settings.SCAN_HISTORY_MAX_ENTRIES,
        )

    # === 基本 CRUD ===
    async def _load(self, uid: str) -> Optional[UserDocument]:
        snap = await self._backend.get(uid)
        if not snap.exists:
            return None
        return UserDocument.decode(uid, snap.data)

    async def get_by_id(self, uid: str) -> Optional[UserDto]:
        doc = await self._load(uid)
        return doc.to_dto() if doc else None

    async def create_or_update(self, user: UserDto) -> UserDto:
        """整筆 upsert，寫完重新讀回。"""
        await self._backend.set(user.uid, UserDocument.from_dto(user).encode())
        logger.info("User created/updated: %s", user.uid)
        saved = await self.get_by_id(user.uid)
        if saved is None:
            raise StoreError(f"User {user.uid} vanished right after write")
        return saved

    async def delete(self, uid: str) -> None:
        await self._backend.delete(uid)
        logger.info("User deleted: %s", uid)

    async def _ensure_exists(self, uid: str, email: Optional[str]) -> None:
        doc = UserDocument(uid=uid, email=email, display_name=default_display_name(email))
        if await self._backend.create_if_absent(uid, doc.encode()):
            logger.info("User created: %s", uid)

    async def get_or_create(self, uid: str, email: Optional[str]) -> UserDto:
        """不存在就建立；兩個請求同時建立時，後到的那個直接讀回既有紀錄。"""
        user = await self.get_by_id(uid)
        if user is not None:
            return user
        await self._ensure_exists(uid, email)
        user = await self.get_by_id(uid)
        if user is None:
            raise StoreError(f"User {uid} vanished right after create")
        return user

    async def update_profile(self, uid: str, email: Optional[str], display_name: Optional[str]) -> UserDto:
        """
        只改 email / displayName；成分統計與掃描紀錄不動。
        display_name 為 None 時保留原暱稱，原本也沒有就用 email 的 local-part。
        """
        await self._ensure_exists(uid, email)

        def compute(doc: UserDocument) -> Dict[str, Any]:
            new_email = email or doc.email
            name = display_name if display_name is not None else doc.display_name
            return {
                "email": new_email,
                "displayName": name or default_display_name(new_email),
            }

        await self._optimistic_update(uid, "profile", compute)
        logger.info("Profile updated for user: %s", uid)
        user = await self.get_by_id(uid)
        if user is None:
            raise StoreError(f"User {uid} vanished right after write")
        return user

    # === 交易式更新 ===
    async def _optimistic_update(
        self,
        uid: str,
        what: str,
        compute: Callable[[UserDocument], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        compute(doc) 回傳 {欄位: 新值}（已是可寫入的型別）。
        同一使用者同時多個請求時，後寫者會撞到 WriteConflict 再重讀重算。
        """
        for attempt in range(1, self.max_attempts + 1):
            snap = await self._backend.get(uid)
            if not snap.exists:
                raise NotFound(f"User {uid} not found")
            doc = UserDocument.decode(uid, snap.data)
            fields = compute(doc)
            try:
                await self._backend.update_if_unchanged(uid, fields, snap.version)
                return fields
            except WriteConflict:
                logger.info("Write conflict on %s.%s (attempt %d/%d)", uid, what, attempt, self.max_attempts)
                if attempt < self.max_attempts and self.backoff_sec > 0:
                    await asyncio.sleep(self.backoff_sec * attempt)

        raise StoreError(f"Gave up updating {what} for user {uid} after {self.max_attempts} attempts")

    async def increment_ingredient_counts(self, uid: str, result: AnalysisResult) -> Dict[str, int]:
        """每個非空白成分名稱 +1（同一次掃描重複出現就各 +1）。"""

        def compute(doc: UserDocument) -> Dict[str, Any]:
            counts = dict(doc.ingredient_counts)
            for ingredient in result.ingredients:
                name = (ingredient.name or "").strip()
                if name:
                    counts[name] = counts.get(name, 0) + 1
            return {COUNTS_FIELD: counts}

        fields = await self._optimistic_update(uid, COUNTS_FIELD, compute)
        logger.info("Ingredient counts updated for user: %s", uid)
        return fields[COUNTS_FIELD]

    async def add_scan_history(self, uid: str, result: AnalysisResult) -> ScanSummary:
        entry = StoredScan(
            scan_id=result.scan_id,
            timestamp=self._clock(),
            ingredient_names=result.ingredient_names(),
        )

        def compute(doc: UserDocument) -> Dict[str, Any]:
            history = list(doc.scan_history) + [entry]
            if self.history_limit and len(history) > self.history_limit:
                history = history[-self.history_limit:]
            return {HISTORY_FIELD: encode_history(history)}

        await self._optimistic_update(uid, HISTORY_FIELD, compute)
        logger.info("Scan history added for user: %s", uid)
        return ScanSummary(**entry.model_dump())

    # === 查詢 ===
    async def get_top_ingredients(self, uid: str, limit: int = 10) -> List[TopIngredient]:
        """次數由大到小；同次數依名稱字母序，結果可重現。"""
        user = await self.get_by_id(uid)
        if user is None or not user.ingredient_counts or limit <= 0:
            return []
        ranked = sorted(user.ingredient_counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return [TopIngredient(ingredient_name=name, count=count) for name, count in ranked[:limit]]

    async def get_scan_history(self, uid: str) -> List[ScanSummary]:
        user = await self.get_by_id(uid)
        return user.scan_history if user else []
