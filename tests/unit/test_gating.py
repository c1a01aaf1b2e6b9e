"""
Unit tests for the failure-rate check and GPT completion gate.
"""

import pytest
from services.orchestrator.engine.gating import (
    apply_completion_gate,
    check_failure_rate,
    evaluate_gpt_completion,
    required_gpt_numbers,
)
from shared.exceptions import IncompleteResultsError, TooManyFailuresError
from shared.types import ExecutionStatus, Node


def test_required_numbers_are_sorted_and_unique():
    nodes = [
        Node(id="a", type="gptTask", label="GPT 3"),
        Node(id="b", type="gptTask", nodeNumber=1),
        Node(id="c", type="gptTask", label="GPT 3 copy"),
    ]

    assert required_gpt_numbers(nodes, nodes) == [1, 3]


def test_result_must_be_truthy_to_count():
    context = {"GPT 1": {"result": "x"}, "GPT 2": {"result": ""}, "GPT 3": "not a mapping"}

    outcome = evaluate_gpt_completion(context, [1, 2, 3, 4])

    assert outcome.available == [1]
    assert outcome.missing == [2, 3, 4]
    assert outcome.success_rate == 0.25


def test_no_required_numbers_is_complete():
    outcome = evaluate_gpt_completion({}, [])

    assert outcome.success_rate == 1.0
    assert apply_completion_gate(outcome, 0.8) == ExecutionStatus.COMPLETED


def test_four_of_five_is_partial_success():
    context = {f"GPT {n}": {"result": "ok"} for n in range(1, 5)}

    outcome = evaluate_gpt_completion(context, [1, 2, 3, 4, 5])

    assert apply_completion_gate(outcome, 0.8) == ExecutionStatus.PARTIAL_SUCCESS


def test_three_of_five_is_incomplete():
    context = {f"GPT {n}": {"result": "ok"} for n in range(1, 4)}

    outcome = evaluate_gpt_completion(context, [1, 2, 3, 4, 5])

    with pytest.raises(IncompleteResultsError, match="Missing GPT 4, GPT 5") as exc_info:
        apply_completion_gate(outcome, 0.8)
    assert exc_info.value.context["missing_gpt_results"] == [4, 5]


def test_failure_rate_above_half_raises():
    with pytest.raises(TooManyFailuresError, match="2/3"):
        check_failure_rate(["httpTask a", "gptTask b"], 3, 0.5)


def test_failure_rate_at_half_passes():
    check_failure_rate(["httpTask a"], 2, 0.5)
    check_failure_rate([], 0, 0.5)
