# app/services/rate_limit.py
from __future__ import annotations

import time
from typing import Optional, Tuple

from redis.asyncio import Redis

from app.core.config import Settings


def scan_key(user_id: Optional[str], ip: Optional[str]) -> str:
    """登入者以 uid 計；匿名則以來源 IP 計。"""
    if user_id:
        return f"rl:scan:uid:{user_id}"
    return f"rl:scan:ip:{ip or 'unknown'}"


class ScanRateLimiter:
    """
    /scan 的 Redis Sliding Window 限流（ZSET，score = epoch 秒）。
    每次掃描都會打一次付費的 Gemini API，所以可選擇性開啟；預設關閉。
    """

    def __init__(self, redis: Redis, window_sec: int = 60, max_hits: int = 10):
        self._redis = redis
        self.window_sec = window_sec
        self.max_hits = max_hits

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScanRateLimiter":
        redis = Redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,  # 用字串便於除錯
        )
        return cls(redis, settings.SCAN_RATE_LIMIT_WINDOW_SEC, settings.SCAN_RATE_LIMIT_MAX)

    async def _prune(self, key: str, now_s: float) -> None:
        """移除滑動視窗外的紀錄（score < now - window）。"""
        await self._redis.zremrangebyscore(key, "-inf", now_s - self.window_sec)

    async def _oldest_ts(self, key: str) -> Optional[float]:
        data = await self._redis.zrange(key, 0, 0, withscores=True)
        if data:
            # 形式 [(member, score)]
            return float(data[0][1])
        return None

    async def hit(self, key: str) -> Tuple[bool, int]:
        """
        檢查是否超出限流；允許時順便記一次。
        回傳：(allowed, retry_after_seconds)，retry_after = 最舊紀錄出窗的剩餘秒數（>=1）。
        """
        now_s = time.time()
        await self._prune(key, now_s)
        count = int(await self._redis.zcard(key))
        if count >= self.max_hits:
            oldest = await self._oldest_ts(key)
            retry_after = max(1, int(self.window_sec - (now_s - (oldest or now_s))))
            return False, retry_after

        member = f"{now_s:.6f}"
        await self._redis.zadd(key, {member: now_s})
        await self._redis.expire(key, self.window_sec)
        return True, 0

    async def aclose(self) -> None:
        await self._redis.aclose()
