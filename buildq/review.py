"""Plan Review Gate: holds God-Mode plans until a human decides."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from .models import Plan, ReviewStatus

logger = logging.getLogger(__name__)


@dataclass
class PlanReview:
    plan_id: str
    plan: Plan
    status: ReviewStatus = ReviewStatus.PENDING


class ReviewGate:
    """History of submitted plans; at most one of them executes at a time.

    Only ``approve`` and ``reject`` (human calls) move a plan out of pending.
    Both are no-ops returning False for unknown or non-pending plans.
    """

    def __init__(self):
        self._reviews: dict[str, PlanReview] = {}
        self._executing: str | None = None

    def submit(self, plan: Plan) -> str:
        plan_id = uuid.uuid4().hex[:12]
        self._reviews[plan_id] = PlanReview(plan_id=plan_id, plan=plan)
        logger.debug("plan %s submitted for review", plan_id)
        return plan_id

    def get(self, plan_id: str) -> PlanReview | None:
        return self._reviews.get(plan_id)

    def status(self, plan_id: str) -> ReviewStatus | None:
        review = self._reviews.get(plan_id)
        return review.status if review else None

    def pending(self) -> list[PlanReview]:
        return [r for r in self._reviews.values() if r.status == ReviewStatus.PENDING]

    @property
    def executing(self) -> str | None:
        return self._executing

    def approve(self, plan_id: str) -> bool:
        review = self._reviews.get(plan_id)
        if review is None or review.status != ReviewStatus.PENDING:
            return False
        if self._executing is not None:
            logger.info("approve of %s ignored: plan %s is executing", plan_id, self._executing)
            return False
        review.status = ReviewStatus.APPROVED
        return True

    def reject(self, plan_id: str) -> bool:
        review = self._reviews.get(plan_id)
        if review is None or review.status != ReviewStatus.PENDING:
            return False
        review.status = ReviewStatus.REJECTED
        return True

    def begin_execution(self, plan_id: str) -> None:
        review = self._reviews.get(plan_id)
        if review is None or review.status != ReviewStatus.APPROVED:
            raise ValueError(f"Plan {plan_id} is not approved")
        if self._executing is not None and self._executing != plan_id:
            raise ValueError(f"Plan {self._executing} is already executing")
        review.status = ReviewStatus.EXECUTING
        self._executing = plan_id

    def finish(self, plan_id: str) -> None:
        if self._executing == plan_id:
            self._executing = None
