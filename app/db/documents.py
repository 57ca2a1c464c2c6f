# app/db/documents.py
"""
文件資料庫存取層（單一 collection，以文件 ID 為 key）。

每次讀取都帶回 version，寫入時用 update_if_unchanged 做條件寫入：
version 變了就丟 WriteConflict，由上層決定要不要重試。
  - Firestore：version = update_time，條件寫入用 last_update_time write option
  - 記憶體：version = 遞增整數（本機開發 / 測試用）
"""
import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from google.api_core import exceptions as gexc

from app.core.errors import NotFound, StoreError

logger = logging.getLogger(__name__)


class WriteConflict(Exception):
    """條件寫入時文件已被別人改過。"""


@dataclass(frozen=True)
class Snapshot:
    data: Optional[Dict[str, Any]]
    version: Any = None

    @property
    def exists(self) -> bool:
        return self.data is not None


class DocumentBackend(Protocol):
    async def get(self, doc_id: str) -> Snapshot:
        ...

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    async def create_if_absent(self, doc_id: str, data: Dict[str, Any]) -> bool:
        """文件不存在才寫入；已存在回傳 False，不覆蓋。"""
        ...

    async def delete(self, doc_id: str) -> None:
        ...

    async def update_if_unchanged(self, doc_id: str, fields: Dict[str, Any], version: Any) -> None:
        ...


class InMemoryDocumentBackend:
    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._versions: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def get(self, doc_id: str) -> Snapshot:
        async with self._lock:
            if doc_id not in self._docs:
                return Snapshot(None)
            return Snapshot(copy.deepcopy(self._docs[doc_id]), self._versions[doc_id])

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        async with self._lock:
            self._docs[doc_id] = copy.deepcopy(data)
            self._versions[doc_id] = self._versions.get(doc_id, 0) + 1

    async def create_if_absent(self, doc_id: str, data: Dict[str, Any]) -> bool:
        async with self._lock:
            if doc_id in self._docs:
                return False
            self._docs[doc_id] = copy.deepcopy(data)
            self._versions[doc_id] = self._versions.get(doc_id, 0) + 1
            return True

    async def delete(self, doc_id: str) -> None:
        async with self._lock:
            self._docs.pop(doc_id, None)
            # version 不歸零，避免刪除後重建時舊 snapshot 仍能寫入
            if doc_id in self._versions:
                self._versions[doc_id] += 1

    async def update_if_unchanged(self, doc_id: str, fields: Dict[str, Any], version: Any) -> None:
        async with self._lock:
            if doc_id not in self._docs:
                raise NotFound(f"Document {doc_id} not found")
            if self._versions[doc_id] != version:
                raise WriteConflict(doc_id)
            self._docs[doc_id].update(copy.deepcopy(fields))
            self._versions[doc_id] += 1


class FirestoreDocumentBackend:
    def __init__(self, client, collection: str = "users"):
        self._client = client
        self._collection = collection

    def _ref(self, doc_id: str):
        return self._client.collection(self._collection).document(doc_id)

    async def get(self, doc_id: str) -> Snapshot:
        try:
            snap = await self._ref(doc_id).get()
        except gexc.GoogleAPICallError as exc:
            raise StoreError(f"Failed to read {self._collection}/{doc_id}: {exc.message}") from exc
        if not snap.exists:
            return Snapshot(None)
        return Snapshot(snap.to_dict() or {}, snap.update_time)

    async def set(self, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await self._ref(doc_id).set(data)
        except gexc.GoogleAPICallError as exc:
            raise StoreError(f"Failed to write {self._collection}/{doc_id}: {exc.message}") from exc

    async def create_if_absent(self, doc_id: str, data: Dict[str, Any]) -> bool:
        # create() 在文件已存在時由伺服器端回 ALREADY_EXISTS
        try:
            await self._ref(doc_id).create(data)
        except gexc.AlreadyExists:
            return False
        except gexc.GoogleAPICallError as exc:
            raise StoreError(f"Failed to create {self._collection}/{doc_id}: {exc.message}") from exc
        return True

    async def delete(self, doc_id: str) -> None:
        # Firestore 刪除不存在的文件不會報錯，天然 idempotent
        try:
            await self._ref(doc_id).delete()
        except gexc.GoogleAPICallError as exc:
            raise StoreError(f"Failed to delete {self._collection}/{doc_id}: {exc.message}") from exc

    async def update_if_unchanged(self, doc_id: str, fields: Dict[str, Any], version: Any) -> None:
        option = self._client.write_option(last_update_time=version)
        try:
            await self._ref(doc_id).update(fields, option=option)
        except gexc.FailedPrecondition as exc:
            raise WriteConflict(doc_id) from exc
        except gexc.NotFound as exc:
            raise NotFound(f"Document {doc_id} not found") from exc
        except gexc.GoogleAPICallError as exc:
            raise StoreError(f"Failed to update {self._collection}/{doc_id}: {exc.message}") from exc
