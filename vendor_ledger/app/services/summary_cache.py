"""
Summary memoization in Redis.

Keys embed the vendor's ledger marker (entry count and highest id), so any
committed append makes the old key unreachable; entries are never edited,
so nothing else can stale a summary. The cache is an optimisation only: a
Redis failure falls back to recomputing.
"""

import hashlib
import json
import logging
from typing import Optional

from redis.exceptions import RedisError

from vendor_ledger.app.core.config import settings
from vendor_ledger.app.domain.ledger.balance import LedgerSummary

logger = logging.getLogger("vendor_ledger.cache")

KEY_PREFIX = "ledger:summary"


class SummaryCache:

    def __init__(self, redis, ttl_seconds: int = None, enabled: bool = None):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.summary_cache_ttl_seconds
        self.enabled = settings.summary_cache_enabled if enabled is None else enabled

    @staticmethod
    def key(vendor_id: int, marker: str, params: dict) -> str:
        digest = hashlib.sha256(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()[:16]
        return f"{KEY_PREFIX}:{vendor_id}:{marker}:{digest}"

    async def get(self, key: str) -> Optional[LedgerSummary]:
        if not self.enabled or self.redis is None:
            return None
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.warning("Summary cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        return LedgerSummary.from_dict(json.loads(raw))

    async def set(self, key: str, summary: LedgerSummary) -> None:
        if not self.enabled or self.redis is None:
            return
        try:
            await self.redis.set(key, json.dumps(summary.to_dict()), ex=self.ttl_seconds)
        except RedisError as e:
            logger.warning("Summary cache write failed for %s: %s", key, e)
