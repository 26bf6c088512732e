"""Tests for the plan review gate."""

import pytest

from buildq.models import Plan, ReviewStatus
from buildq.review import ReviewGate

PLAN = Plan(reasoning="Add a footer", tasks=("Update index.html",))


def test_submit_is_pending():
    gate = ReviewGate()
    plan_id = gate.submit(PLAN)
    assert gate.status(plan_id) == ReviewStatus.PENDING
    assert [r.plan_id for r in gate.pending()] == [plan_id]


def test_approve_then_execute_then_finish():
    gate = ReviewGate()
    plan_id = gate.submit(PLAN)
    assert gate.approve(plan_id)
    assert gate.status(plan_id) == ReviewStatus.APPROVED
    gate.begin_execution(plan_id)
    assert gate.status(plan_id) == ReviewStatus.EXECUTING
    assert gate.executing == plan_id
    gate.finish(plan_id)
    assert gate.executing is None


def test_reject_pending():
    gate = ReviewGate()
    plan_id = gate.submit(PLAN)
    assert gate.reject(plan_id)
    assert gate.status(plan_id) == ReviewStatus.REJECTED
    assert gate.pending() == []


@pytest.mark.parametrize("first", ["approve", "reject"])
def test_decisions_are_no_ops_off_pending(first):
    gate = ReviewGate()
    plan_id = gate.submit(PLAN)
    getattr(gate, first)(plan_id)
    before = gate.status(plan_id)
    assert gate.approve(plan_id) is False
    assert gate.reject(plan_id) is False
    assert gate.status(plan_id) == before


def test_unknown_plan_id_is_no_op():
    gate = ReviewGate()
    assert gate.approve("nope") is False
    assert gate.reject("nope") is False
    assert gate.status("nope") is None


def test_only_one_plan_executes():
    gate = ReviewGate()
    first = gate.submit(PLAN)
    second = gate.submit(PLAN)
    gate.approve(first)
    gate.begin_execution(first)
    assert gate.approve(second) is False
    assert gate.status(second) == ReviewStatus.PENDING
    gate.finish(first)
    assert gate.approve(second)


def test_begin_execution_requires_approval():
    gate = ReviewGate()
    plan_id = gate.submit(PLAN)
    with pytest.raises(ValueError, match="not approved"):
        gate.begin_execution(plan_id)


def test_plan_ids_unique():
    gate = ReviewGate()
    assert len({gate.submit(PLAN) for _ in range(20)}) == 20
