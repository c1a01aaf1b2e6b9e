"""
Redis-backed execution records for the workflow engine.
"""

import json
import os
import uuid
from typing import Any, Dict, Optional

import redis.asyncio as redis
from shared.constants import REDIS_KEY_TTL_SECONDS


class RedisExecutionStore:
    """One hash per execution, one JSON-encoded field per record attribute.

    Updates are field-level HSETs, so concurrent writers touching different
    fields never overwrite each other.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.client = client or redis.Redis.from_url(url, decode_responses=False)

    @staticmethod
    def _record_key(execution_id: str) -> str:
        return f"exec:{execution_id}:record"

    @staticmethod
    def _encode(patch: Dict[str, Any]) -> Dict[str, str]:
        return {field: json.dumps(value, default=str) for field, value in patch.items()}

    async def create_execution(self, meta: Dict[str, Any]) -> Optional[str]:
        execution_id = str(uuid.uuid4())
        key = self._record_key(execution_id)

        pipe = self.client.pipeline()
        pipe.hset(key, mapping=self._encode({**meta, "execution_id": execution_id}))
        pipe.expire(key, REDIS_KEY_TTL_SECONDS)
        await pipe.execute()

        return execution_id

    async def update_execution(self, execution_id: str, patch: Dict[str, Any]) -> None:
        if not patch:
            return
        key = self._record_key(execution_id)

        pipe = self.client.pipeline()
        pipe.hset(key, mapping=self._encode(patch))
        pipe.expire(key, REDIS_KEY_TTL_SECONDS)
        await pipe.execute()

    async def read_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        fields = await self.client.hgetall(self._record_key(execution_id))
        if not fields:
            return None
        return {
            k.decode('utf-8'): json.loads(v.decode('utf-8'))
            for k, v in fields.items()
        }

    async def close(self) -> None:
        await self.client.aclose()
