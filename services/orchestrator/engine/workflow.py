"""Workflow engine: runs a graph for one webhook call and builds its result."""

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError
from services.orchestrator.engine.aliases import batch_aliases, parallel_task_aliases, seed_context, store_result
from services.orchestrator.engine.executor import NodeExecutor
from services.orchestrator.engine.gating import (
    apply_completion_gate,
    check_failure_rate,
    evaluate_gpt_completion,
    partial_results_message,
    required_gpt_numbers,
)
from services.orchestrator.engine.graph import find_parallel_gpt_groups, find_parallel_http_groups
from services.orchestrator.engine.ports import ExecutionStore, TaskDispatcher
from services.orchestrator.engine.task_runner import TaskRunner
from services.orchestrator.engine.template import TemplateResolver
from shared.exceptions import (
    ConfigurationError,
    NodeExecutionError,
    WorkflowError,
    WorkflowTimeoutError,
)
from shared.logging_config import set_execution_id
from shared.schemas import WebhookResponseConfig, parse_config_mapping
from shared.settings import EngineSettings
from shared.types import (
    ErrorCategory,
    ErrorDetails,
    ExecutionStatus,
    Node,
    NodeType,
    ResponseSpec,
    TaskResult,
    WorkflowGraph,
    WorkflowResult,
)
from shared.utils import json_safe_copy, utc_now_iso

INCOMPLETE_MESSAGE = "Not all required GPT results were generated. Workflow blocked to prevent partial data."

FAILURE_SUGGESTIONS = {
    ErrorCategory.CONFIGURATION: "Check the node configuration and save the workflow again",
    ErrorCategory.NODE_FAILURE: "Check the failing node's configuration and the service it calls",
    ErrorCategory.INCOMPLETE_RESULTS: "Check GPT task configurations and retry the webhook",
    ErrorCategory.TIMEOUT: "Retry the webhook later or reduce the number of parallel tasks",
    ErrorCategory.MULTIPLE_FAILURES: "Check the external services used by the HTTP and GPT tasks",
}

RECORD_STATUS = {
    ErrorCategory.TIMEOUT: ExecutionStatus.TIMEOUT,
    ErrorCategory.INCOMPLETE_RESULTS: ExecutionStatus.INCOMPLETE,
}


@dataclass
class ExecutionRun:
    """Mutable state of one run; only the engine writes to it, between batches"""
    graph: WorkflowGraph
    context: Dict[str, Any]
    execution_id: Optional[str] = None
    executed_nodes: List[str] = field(default_factory=list)
    node_results: Dict[str, Any] = field(default_factory=dict)
    type_counts: Dict[NodeType, int] = field(default_factory=dict)
    webhook_response: Optional[ResponseSpec] = None

    def next_index(self, node_type: NodeType) -> int:
        self.type_counts[node_type] = self.type_counts.get(node_type, 0) + 1
        return self.type_counts[node_type]

    def count(self, node_type: NodeType) -> int:
        return self.type_counts.get(node_type, 0)


@dataclass
class NodeOutcome:
    node: Node
    result: Any = None
    error: Optional[Exception] = None


class WorkflowEngine:

    def __init__(
        self,
        dispatcher: TaskDispatcher,
        store: Optional[ExecutionStore] = None,
        settings: Optional[EngineSettings] = None,
        template_resolver: Optional[TemplateResolver] = None,
        executor: Optional[NodeExecutor] = None,
    ):
        self.store = store
        self.settings = settings or EngineSettings()
        self.template_resolver = template_resolver or TemplateResolver()
        self.executor = executor or NodeExecutor(dispatcher, self.template_resolver)
        self.task_runner = TaskRunner(self.executor, self.template_resolver, self.settings)

    async def run(
        self,
        graph: WorkflowGraph,
        trigger_input: Mapping[str, Any],
        workflow_id: Optional[str] = None,
        webhook_request_id: Optional[str] = None,
    ) -> WorkflowResult:
        """Executes the graph; failures are returned as results, never raised"""
        run = ExecutionRun(graph=graph, context=seed_context(trigger_input))
        run.execution_id = await self._create_record(workflow_id, webhook_request_id)
        set_execution_id(run.execution_id)

        try:
            self._check_response_config(graph)

            if graph.trigger_node is None:
                logging.info("No trigger node found, returning input data")
                await self._safe_update(run.execution_id, {
                    "status": ExecutionStatus.COMPLETED.value,
                    "completed_at": utc_now_iso(),
                })
                return WorkflowResult(message="No workflow trigger found", data=run.context, execution_id=run.execution_id)

            response_node = graph.response_node
            if response_node is not None:
                http_groups = find_parallel_http_groups(graph.nodes, graph.edges, response_node.id)
                gpt_groups = find_parallel_gpt_groups(graph.nodes, graph.edges, response_node.id)
                if http_groups or gpt_groups:
                    return await self._run_with_early_response(run, http_groups, gpt_groups)

            return await self._run_batches(run)

        except WorkflowError as e:
            return await self._fail(run, e)
        except Exception as e:
            logging.exception("Unexpected error during workflow execution")
            return await self._fail(run, e)
        finally:
            set_execution_id("")

    def _check_response_config(self, graph: WorkflowGraph) -> None:
        node = graph.response_node
        if node is None:
            return
        settings = parse_config_mapping(node.config)
        if not settings and isinstance(node.config, str) and "{{" in node.config:
            # Unquoted placeholders keep the raw text from parsing; checked again once resolved
            return
        try:
            config = WebhookResponseConfig.model_validate(settings)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid webhook response configuration: {e}", node_id=node.id)
        if not config.has_body:
            raise ConfigurationError(
                "Webhook response node has no response body configured",
                node_id=node.id,
                node_type=node.type.value,
            )

    def _resolve_node(self, node: Node, context: Mapping[str, Any]) -> Node:
        # The executor resolves webhookResponse configs itself, JSON-text configs in one pass
        if node.type == NodeType.WEBHOOK_RESPONSE:
            return node
        return node.model_copy(update={"config": self.template_resolver.resolve(node.config, context)})

    async def _execute_in_batch(self, node: Node, context: Mapping[str, Any]) -> NodeOutcome:
        logging.info("Starting node", extra={"node_id": node.id, "node_type": node.type.value})
        try:
            result = await self.executor.execute(self._resolve_node(node, context), context)
        except Exception as e:
            logging.error("Node failed", extra={"node_id": node.id, "node_type": node.type.value, "error": str(e)})
            return NodeOutcome(node, error=e)
        return NodeOutcome(node, result=result)

    async def _run_batches(self, run: ExecutionRun) -> WorkflowResult:
        graph = run.graph
        current = [graph.trigger_node.id]
        batch_index = 1

        while current:
            batch = [
                node for node in (graph.get_node(node_id) for node_id in current)
                if node is not None and node.id not in run.executed_nodes
            ]
            if not batch:
                break

            logging.info("Executing batch", extra={
                "batch_index": batch_index,
                "node_ids": [n.id for n in batch],
            })
            run.executed_nodes.extend(n.id for n in batch)
            await self._safe_update(run.execution_id, {
                "current_node_id": batch[0].id,
                "executed_nodes": list(run.executed_nodes),
            })

            # Every node in the batch sees the context as it was before the batch
            view = MappingProxyType(run.context)
            outcomes = await asyncio.gather(*(self._execute_in_batch(node, view) for node in batch))

            for outcome in outcomes:
                if outcome.error is not None:
                    raise self._node_failure(run, outcome.node, outcome.error)
                self._store_batch_result(run, outcome.node, outcome.result)

            await self._safe_update(run.execution_id, {
                "executed_nodes": list(run.executed_nodes),
                "result_data": {
                    "nodeCount": len(run.context),
                    "lastNodeType": batch[-1].type.value,
                    "lastNodeId": batch[-1].id,
                    "nodeResults": run.node_results,
                },
            })

            current = self._next_batch(run, batch)
            batch_index += 1

        logging.info("Workflow execution completed", extra={"executed_nodes": run.executed_nodes})
        await self._safe_update(run.execution_id, {
            "status": ExecutionStatus.COMPLETED.value,
            "completed_at": utc_now_iso(),
            "executed_nodes": list(run.executed_nodes),
            "result_data": {
                "totalNodes": len(run.context),
                "executedNodeCount": len(run.executed_nodes),
                "completedAt": utc_now_iso(),
                "status": ExecutionStatus.COMPLETED.value,
                "nodeResults": run.node_results,
                "workflowData": run.context,
            },
        })

        return WorkflowResult(
            message="Workflow executed successfully",
            data=run.context,
            status=ExecutionStatus.COMPLETED,
            executed_nodes=list(run.executed_nodes),
            node_count=len(run.executed_nodes),
            execution_id=run.execution_id,
            has_webhook_response=graph.response_node is not None,
            webhook_response=run.webhook_response,
        )

    def _node_failure(self, run: ExecutionRun, node: Node, error: Exception) -> WorkflowError:
        message = f"Node {node.id} ({node.type.value}) failed: {error}"
        if isinstance(error, ConfigurationError):
            return ConfigurationError(message, run.execution_id or "", node_id=node.id, node_type=node.type.value)
        return NodeExecutionError(message, node.id, node.type.value, run.execution_id or "")

    def _store_batch_result(self, run: ExecutionRun, node: Node, result: Any) -> None:
        if node.type == NodeType.WEBHOOK_RESPONSE and isinstance(result, Mapping) and result.get("webhook_response"):
            run.webhook_response = ResponseSpec.model_validate(result["webhook_response"])

        index = run.next_index(node.type)
        if not isinstance(result, Mapping):
            return

        safe_result = json_safe_copy(result)
        aliases = batch_aliases(node, index, run.graph.nodes)
        store_result(run.context, aliases, safe_result)
        run.node_results[node.id] = safe_result
        logging.debug("Stored node result", extra={"node_id": node.id, "keys": list(aliases.keys)})

    def _next_batch(self, run: ExecutionRun, batch: List[Node]) -> List[str]:
        """Not-yet-executed targets of the batch, in first-seen order"""
        next_ids: List[str] = []
        for node in batch:
            targets = [t for t in run.graph.outgoing_targets(node.id) if t not in run.executed_nodes]
            for target in targets:
                if target not in next_ids:
                    next_ids.append(target)
        return next_ids

    async def _run_with_early_response(
        self,
        run: ExecutionRun,
        http_groups: List[List[str]],
        gpt_groups: List[List[str]],
    ) -> WorkflowResult:
        graph = run.graph
        trigger = graph.trigger_node
        response_node = graph.response_node

        run.executed_nodes.append(trigger.id)
        trigger_result = await self.executor.execute(
            self._resolve_node(trigger, run.context),
            MappingProxyType(run.context),
        )
        if isinstance(trigger_result, Mapping):
            run.context.update(json_safe_copy(trigger_result))

        launches: List[Tuple[str, NodeType]] = [
            (node_id, NodeType.HTTP_TASK) for group in http_groups for node_id in group
        ] + [
            (node_id, NodeType.GPT_TASK) for group in gpt_groups for node_id in group
        ]
        results = await self._run_parallel_tasks(run, launches)

        failed_tasks: List[str] = []
        for task_result in results:
            if task_result.failed:
                failed_tasks.append(f"{task_result.task_type.value} {task_result.node_id}")
                logging.error("Parallel task failed, continuing with other tasks", extra={
                    "node_id": task_result.node_id,
                    "task_type": task_result.task_type.value,
                    "retry_count": task_result.retry_count,
                })
                await self._safe_update(run.execution_id, {
                    "error_details": {
                        "failed_node_id": task_result.node_id,
                        "error_message": (task_result.result or {}).get("error") or f"{task_result.task_type.value} task failed",
                    },
                })
                continue
            self._store_parallel_result(run, task_result)

        logging.info("Parallel tasks settled", extra={
            "successful_tasks": len(results) - len(failed_tasks),
            "failed_tasks": len(failed_tasks),
        })
        check_failure_rate(failed_tasks, len(results), self.settings.max_parallel_failure_rate, run.execution_id or "")

        gpt_nodes = [graph.get_node(node_id) for group in gpt_groups for node_id in group]
        outcome = evaluate_gpt_completion(run.context, required_gpt_numbers(gpt_nodes, graph.nodes))
        status = apply_completion_gate(outcome, self.settings.min_gpt_success_rate, run.execution_id or "")
        if status == ExecutionStatus.PARTIAL_SUCCESS:
            await self._safe_update(run.execution_id, {
                "status": status.value,
                "error_message": partial_results_message(outcome),
                "error_details": outcome.to_dict(),
            })

        run.executed_nodes.append(response_node.id)
        await self._safe_update(run.execution_id, {
            "current_node_id": response_node.id,
            "executed_nodes": list(run.executed_nodes),
        })
        response_result = await self.executor.execute(response_node, MappingProxyType(run.context))
        if isinstance(response_result, Mapping) and response_result.get("webhook_response"):
            run.webhook_response = ResponseSpec.model_validate(response_result["webhook_response"])
        run.node_results[response_node.id] = json_safe_copy(response_result)

        http_count = run.count(NodeType.HTTP_TASK)
        gpt_count = run.count(NodeType.GPT_TASK)
        await self._safe_update(run.execution_id, {
            "status": status.value,
            "completed_at": utc_now_iso(),
            "executed_nodes": list(run.executed_nodes),
            "result_data": {
                "optimizedParallelExecution": True,
                "httpTaskCount": http_count,
                "gptTaskCount": gpt_count,
                "totalParallelTasks": http_count + gpt_count,
                "completedAt": utc_now_iso(),
                "nodeResults": run.node_results,
                "workflowData": run.context,
            },
        })

        return WorkflowResult(
            message="Workflow completed with parallel HTTP and GPT optimization",
            data=run.context,
            status=status,
            executed_nodes=list(run.executed_nodes),
            node_count=len(run.executed_nodes),
            execution_id=run.execution_id,
            has_webhook_response=True,
            webhook_response=run.webhook_response,
            http_task_count=http_count,
            gpt_task_count=gpt_count,
            total_parallel_tasks=http_count + gpt_count,
            parallel_optimized=True,
        )

    async def _run_parallel_tasks(self, run: ExecutionRun, launches: List[Tuple[str, NodeType]]) -> List[TaskResult]:
        """Launches every task against one snapshot; results come back in launch order"""
        snapshot = MappingProxyType(dict(run.context))
        tasks = []
        for node_id, task_type in launches:
            node = run.graph.get_node(node_id)
            run.executed_nodes.append(node_id)
            tasks.append(asyncio.create_task(self.task_runner.run(node, snapshot, task_type)))

        logging.info("Waiting for parallel tasks", extra={"task_count": len(tasks)})
        timeout = self.settings.parallel_timeout
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise WorkflowTimeoutError(
                f"Parallel tasks timed out after {timeout}s",
                run.execution_id or "",
                pending_tasks=len(pending),
            )

        return [task.result() for task in tasks]

    def _store_parallel_result(self, run: ExecutionRun, task_result: TaskResult) -> None:
        index = run.next_index(task_result.task_type)
        if not isinstance(task_result.result, Mapping):
            return
        safe_result = json_safe_copy(task_result.result)
        aliases = parallel_task_aliases(task_result.node, index, run.graph.nodes)
        store_result(run.context, aliases, safe_result)
        run.node_results[task_result.node_id] = safe_result
        logging.debug("Stored parallel task result", extra={
            "node_id": task_result.node_id,
            "keys": list(aliases.keys),
        })

    async def _fail(self, run: ExecutionRun, error: Exception) -> WorkflowResult:
        category = error.category if isinstance(error, WorkflowError) else ErrorCategory.SYSTEM
        status = RECORD_STATUS.get(category, ExecutionStatus.FAILED)
        error_message = error.message if isinstance(error, WorkflowError) else str(error) or type(error).__name__
        error_context = error.context if isinstance(error, WorkflowError) else {}

        logging.error("Workflow execution failed", extra={
            "error_category": category.value,
            "error_type": type(error).__name__,
            "error": error_message,
        })

        await self._safe_update(run.execution_id, {
            "status": status.value,
            "error_message": error_message,
            "error_details": {
                **error_context,
                "error_category": category.value,
                "error_type": type(error).__name__,
                "timestamp": utc_now_iso(),
            },
            "completed_at": utc_now_iso(),
            "executed_nodes": list(run.executed_nodes),
        })

        if category == ErrorCategory.INCOMPLETE_RESULTS:
            title, message = "Workflow incomplete", INCOMPLETE_MESSAGE
        else:
            title, message = "Workflow execution failed", error_message

        return WorkflowResult(
            message=message,
            data=run.context,
            status=status,
            executed_nodes=list(run.executed_nodes),
            node_count=len(run.executed_nodes),
            execution_id=run.execution_id,
            has_webhook_response=run.graph.response_node is not None,
            error=title,
            details=ErrorDetails(
                reason=category.value,
                suggestion=FAILURE_SUGGESTIONS.get(category),
                timestamp=utc_now_iso(),
            ),
        )

    async def _create_record(self, workflow_id: Optional[str], webhook_request_id: Optional[str]) -> Optional[str]:
        if self.store is None:
            return None
        try:
            execution_id = await self.store.create_execution({
                "workflow_id": workflow_id,
                "webhook_request_id": webhook_request_id,
                "status": ExecutionStatus.RUNNING.value,
                "executed_nodes": [],
                "current_node_id": None,
                "started_at": utc_now_iso(),
            })
        except Exception as e:
            logging.warning("Failed to create execution record", extra={"error": str(e)})
            return None
        logging.info("Created execution record", extra={"execution_id": execution_id})
        return execution_id

    async def _safe_update(self, execution_id: Optional[str], patch: Dict[str, Any]) -> None:
        if self.store is None or not execution_id:
            return
        try:
            await self.store.update_execution(execution_id, patch)
        except Exception as e:
            logging.warning("Failed to update execution record", extra={
                "execution_id": execution_id,
                "fields": list(patch),
                "error": str(e),
            })
