"""Runs a single HTTP/GPT task with a per-type timeout and bounded retries."""

import asyncio
import logging
import time
from typing import Any, Mapping, Optional, Tuple

from services.orchestrator.engine.executor import NodeExecutor
from services.orchestrator.engine.template import TemplateResolver
from shared.settings import EngineSettings
from shared.types import Node, NodeType, TaskResult


class TaskRunner:
    """Resolves a task's config, runs it under a timeout and retries with backoff"""

    def __init__(
        self,
        executor: NodeExecutor,
        template_resolver: Optional[TemplateResolver] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.executor = executor
        self.template_resolver = template_resolver or TemplateResolver()
        self.settings = settings or EngineSettings()

    async def run(self, node: Node, context: Mapping[str, Any], task_type: Optional[NodeType] = None) -> TaskResult:
        """Never raises: exhausted retries come back as failed=True with the last error"""
        task_type = task_type or node.type
        timeout = self._timeout_for(task_type)
        started = time.monotonic()
        last_error, retry_after = f"{task_type.value} task failed", None

        for attempt in range(self.settings.max_retries + 1):
            if attempt:
                delay = self._calculate_backoff_delay(attempt, retry_after)
                logging.info("Task will be retried", extra={
                    "node_id": node.id,
                    "task_type": task_type.value,
                    "retry_attempt": attempt,
                    "delay_seconds": delay,
                })
                await asyncio.sleep(delay)

            try:
                result = await self._attempt(node, context, timeout)
            except asyncio.TimeoutError:
                last_error, retry_after = f"{task_type.value} task timed out after {timeout}s", None
                logging.warning("Task attempt timed out", extra={"node_id": node.id, "attempt": attempt + 1})
                continue
            except Exception as e:
                last_error, retry_after = str(e) or type(e).__name__, None
                logging.warning("Task attempt raised", extra={
                    "node_id": node.id,
                    "attempt": attempt + 1,
                    "error": last_error,
                })
                continue

            failure = self._failure_of(result)
            if failure is None:
                return TaskResult(
                    node_id=node.id,
                    node=node,
                    result=result,
                    task_type=task_type,
                    retry_count=attempt,
                    execution_time=time.monotonic() - started,
                )

            last_error, retryable, retry_after = failure
            logging.warning("Task attempt returned an error", extra={
                "node_id": node.id,
                "attempt": attempt + 1,
                "error": last_error,
                "is_retryable": retryable,
            })
            if not retryable:
                return self._failed(node, task_type, last_error, attempt, started)

        logging.error("Maximum retry attempts reached", extra={
            "node_id": node.id,
            "task_type": task_type.value,
            "max_attempts": self.settings.max_retries + 1,
        })
        return self._failed(node, task_type, last_error, self.settings.max_retries, started)

    async def _attempt(self, node: Node, context: Mapping[str, Any], timeout: float) -> Any:
        resolved = node.model_copy(update={"config": self.template_resolver.resolve(node.config, context)})
        return await asyncio.wait_for(self.executor.execute(resolved, context), timeout=timeout)

    def _timeout_for(self, task_type: NodeType) -> float:
        if task_type == NodeType.GPT_TASK:
            return self.settings.gpt_task_timeout
        return self.settings.http_task_timeout

    @staticmethod
    def _failure_of(result: Any) -> Optional[Tuple[str, bool, Optional[float]]]:
        if isinstance(result, Mapping) and result.get("error"):
            return str(result["error"]), result.get("retryable") is not False, result.get("retry_after")
        return None

    def _calculate_backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Exponential backoff with Retry-After support: 1s, 2s, 4s, ... capped"""
        if retry_after:
            return min(retry_after, self.settings.max_retry_delay)
        return min(
            self.settings.initial_retry_delay * (2 ** (attempt - 1)),
            self.settings.max_retry_delay,
        )

    @staticmethod
    def _failed(node: Node, task_type: NodeType, error: str, retry_count: int, started: float) -> TaskResult:
        return TaskResult(
            node_id=node.id,
            node=node,
            result={"error": error},
            failed=True,
            task_type=task_type,
            retry_count=retry_count,
            execution_time=time.monotonic() - started,
        )
