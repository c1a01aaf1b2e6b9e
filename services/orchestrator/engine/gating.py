"""Checks run after parallel tasks settle and before the webhook response is built."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Sequence

from services.orchestrator.engine.aliases import gpt_node_number
from shared.exceptions import IncompleteResultsError, TooManyFailuresError
from shared.types import ExecutionStatus, Node
from shared.utils import is_record


@dataclass(frozen=True)
class GateOutcome:
    required: List[int] = field(default_factory=list)
    available: List[int] = field(default_factory=list)
    missing: List[int] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.required:
            return 1.0
        return len(self.available) / len(self.required)

    def to_dict(self) -> dict:
        return {
            "missing_gpt_results": self.missing,
            "available_gpt_results": self.available,
            "success_rate": self.success_rate,
            "total_expected": len(self.required),
            "total_completed": len(self.available),
        }


def required_gpt_numbers(gpt_nodes: Sequence[Node], nodes: Sequence[Node]) -> List[int]:
    return sorted({gpt_node_number(node, nodes) for node in gpt_nodes})


def evaluate_gpt_completion(context: Mapping[str, Any], required: Sequence[int]) -> GateOutcome:
    """A GPT number is available when context["GPT N"] holds a truthy result"""
    available, missing = [], []
    for number in required:
        stored = context.get(f"GPT {number}")
        if is_record(stored) and stored.get("result"):
            available.append(number)
        else:
            missing.append(number)
    return GateOutcome(list(required), available, missing)


def check_failure_rate(failed: Sequence[str], total: int, max_failure_rate: float, execution_id: str = "") -> None:
    if not failed or not total:
        return
    failure_rate = len(failed) / total
    if failure_rate > max_failure_rate:
        raise TooManyFailuresError(
            f"Too many parallel tasks failed ({len(failed)}/{total}): {', '.join(failed)}",
            execution_id,
            failed_tasks=list(failed),
            failure_rate=failure_rate,
        )
    logging.warning("Some parallel tasks failed, continuing", extra={
        "failed_tasks": list(failed),
        "failure_rate": failure_rate,
    })


def _gpt_list(numbers: Sequence[int]) -> str:
    return ", ".join(f"GPT {n}" for n in numbers)


def apply_completion_gate(outcome: GateOutcome, min_success_rate: float, execution_id: str = "") -> ExecutionStatus:
    """COMPLETED, PARTIAL_SUCCESS, or IncompleteResultsError below the threshold"""
    if not outcome.missing:
        return ExecutionStatus.COMPLETED

    rate = outcome.success_rate
    if rate < min_success_rate:
        raise IncompleteResultsError(
            f"Incomplete workflow results: Missing {_gpt_list(outcome.missing)}. "
            f"Success rate {round(rate * 100)}% below required {round(min_success_rate * 100)}%.",
            execution_id,
            **outcome.to_dict(),
        )

    logging.warning("Proceeding with partial GPT results", extra={
        "missing_gpt_results": outcome.missing,
        "success_rate": rate,
    })
    return ExecutionStatus.PARTIAL_SUCCESS


def partial_results_message(outcome: GateOutcome) -> str:
    return f"Partial GPT results: Missing {_gpt_list(outcome.missing)} but proceeding"
