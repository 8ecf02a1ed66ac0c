"""
app/services/side_effects.py

Ordered, best-effort follow-up writes after a primary mutation:

    1. activity log entry
    2. follow-up task            (optional)
    3. advisor notification      (optional)
    4. last-contact touch        (optional)

Each step commits on its own. A failing step is rolled back and logged at
WARNING level; it never undoes earlier steps and never stops later ones.
Two cases halt the chain at the activity step: a duplicate external event
id (another delivery of the same event already won) and, for plans marked
activity_required, any failure to record the activity.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from db.repositories.errors import DuplicateExternalEventError, StoreError
from db.repositories.store import CRMStore
from db.repositories.types import NewActivity, NewNotification, NewTask

logger = logging.getLogger(__name__)


class StepName:
    ACTIVITY = "activity"
    TASK = "task"
    NOTIFICATION = "notification"
    LAST_CONTACT = "last_contact"


class StepStatus:
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class SideEffectPlan:
    client_id: uuid.UUID | None
    activity: NewActivity | None = None
    task: NewTask | None = None
    notification: NewNotification | None = None
    touch_last_contact_at: datetime | None = None
    activity_required: bool = False


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str
    record_id: uuid.UUID | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "name": self.name,
            "status": self.status,
            "record_id": str(self.record_id) if self.record_id else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class SideEffectReport:
    steps: tuple[StepResult, ...] = field(default_factory=tuple)
    halted: bool = False

    def step(self, name: str) -> StepResult | None:
        return next((step for step in self.steps if step.name == name), None)

    def record_id(self, name: str) -> uuid.UUID | None:
        step = self.step(name)
        return step.record_id if step is not None else None

    def succeeded(self, name: str) -> bool:
        step = self.step(name)
        return step is not None and step.status == StepStatus.SUCCEEDED

    @property
    def failed_steps(self) -> list[str]:
        return [step.name for step in self.steps if step.status == StepStatus.FAILED]


class SideEffectDispatcher:
    def __init__(self, store: CRMStore) -> None:
        self._store = store

    def dispatch(self, plan: SideEffectPlan) -> SideEffectReport:
        steps: list[tuple[str, Callable[[], uuid.UUID | None] | None]] = [
            (
                StepName.ACTIVITY,
                (lambda: self._store.create_activity(plan.activity)) if plan.activity else None,
            ),
            (
                StepName.TASK,
                (lambda: self._store.create_task(plan.task)) if plan.task else None,
            ),
            (
                StepName.NOTIFICATION,
                (lambda: self._store.create_notification(plan.notification))
                if plan.notification
                else None,
            ),
            (
                StepName.LAST_CONTACT,
                self._touch(plan) if plan.client_id and plan.touch_last_contact_at else None,
            ),
        ]

        results: list[StepResult] = []
        for index, (name, run) in enumerate(steps):
            if run is None:
                results.append(StepResult(name=name, status=StepStatus.SKIPPED))
                continue

            result = self._run_step(name, run)
            results.append(result)
            if result.status == StepStatus.DUPLICATE or (
                name == StepName.ACTIVITY
                and plan.activity_required
                and result.status == StepStatus.FAILED
            ):
                results.extend(
                    StepResult(name=later, status=StepStatus.SKIPPED)
                    for later, _ in steps[index + 1:]
                )
                return SideEffectReport(steps=tuple(results), halted=True)

        return SideEffectReport(steps=tuple(results))

    def _touch(self, plan: SideEffectPlan) -> Callable[[], None]:
        def run() -> None:
            self._store.touch_last_contact(plan.client_id, plan.touch_last_contact_at)

        return run

    def _run_step(self, name: str, run: Callable[[], uuid.UUID | None]) -> StepResult:
        try:
            record_id = run()
            self._store.commit()
        except DuplicateExternalEventError as exc:
            self._rollback(name)
            if name != StepName.ACTIVITY:
                raise
            logger.info("Side effect halted on duplicate external event step=%s detail=%s", name, exc)
            return StepResult(name=name, status=StepStatus.DUPLICATE, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            self._rollback(name)
            logger.warning("Side effect failed step=%s error=%s", name, exc)
            return StepResult(name=name, status=StepStatus.FAILED, error=str(exc) or exc.__class__.__name__)

        return StepResult(name=name, status=StepStatus.SUCCEEDED, record_id=record_id)

    def _rollback(self, name: str) -> None:
        try:
            self._store.rollback()
        except StoreError as exc:
            logger.warning("Side effect rollback failed step=%s error=%s", name, exc)
