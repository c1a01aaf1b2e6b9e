"""
Redis store for registered workflow graphs.
"""

import redis
import json
from typing import Optional, Dict, Any
import os
from shared.constants import WORKFLOW_KEY_TTL_SECONDS


class WorkflowStore:
    """Redis client wrapper for workflow definitions"""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[redis.Redis] = None):
        url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.client = client or redis.Redis.from_url(url, decode_responses=False)

    def store_workflow(self, workflow_id: str, workflow: Dict[str, Any]) -> None:
        key = f"workflow:{workflow_id}"
        self.client.set(key, json.dumps(workflow))
        self.client.expire(key, WORKFLOW_KEY_TTL_SECONDS)

    def get_workflow(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        data = self.client.get(f"workflow:{workflow_id}")
        if data:
            return json.loads(data)
        return None
