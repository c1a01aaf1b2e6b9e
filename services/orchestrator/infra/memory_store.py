"""
In-process execution records, for tests and single-process deployments.
"""

import copy
import uuid
from typing import Any, Dict, Optional


class InMemoryExecutionStore:

    def __init__(self):
        self.records: Dict[str, Dict[str, Any]] = {}

    async def create_execution(self, meta: Dict[str, Any]) -> Optional[str]:
        execution_id = str(uuid.uuid4())
        self.records[execution_id] = {**copy.deepcopy(meta), "execution_id": execution_id}
        return execution_id

    async def update_execution(self, execution_id: str, patch: Dict[str, Any]) -> None:
        record = self.records.setdefault(execution_id, {"execution_id": execution_id})
        record.update(copy.deepcopy(patch))

    async def read_execution(self, execution_id: str) -> Optional[Dict[str, Any]]:
        record = self.records.get(execution_id)
        return copy.deepcopy(record) if record is not None else None
