"""In-process task dispatch: runs registered handlers in worker threads."""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from services.worker.handlers.registry import get_task_handler
from shared.settings import WorkerSettings

# Imported for their @register_task side effect
import services.worker.handlers.http_task  # noqa: F401
import services.worker.handlers.gpt_task  # noqa: F401


class LocalTaskDispatcher:

    def __init__(self, settings: Optional[WorkerSettings] = None):
        self.settings = settings or WorkerSettings.from_env()

    async def dispatch(self, task_type: str, config: Any, context: Mapping[str, Any]) -> Dict[str, Any]:
        handler = get_task_handler(task_type)
        logging.info("Starting task execution", extra={"task_type": task_type})

        # requests is blocking; keep it off the event loop
        result = await asyncio.to_thread(handler, config, dict(context), self.settings)

        logging.info("Task execution completed", extra={"task_type": task_type})
        return result
