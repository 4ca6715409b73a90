"""Aggregate progress over a site's step ledger.

``summarize`` is pure and accepts ORM rows or the dicts returned by the
status-all endpoint, so the server and the polling client compute
progress the same way.  PRE_INSTALLATION never counts; the total is
always the four provisioning steps, whether or not their rows exist yet.
"""

from typing import Any, Iterable

from pydantic import BaseModel

from provisioner.models.install_step import PROVISIONING_STEPS, StepStatus, StepType

TOTAL_STEPS = len(PROVISIONING_STEPS)


class ProgressSummary(BaseModel):
    total: int
    completed: int
    failed: int
    in_progress: int
    pending: int
    percentage: int
    all_terminal: bool
    all_success: bool
    first_failed: StepType | None = None
    overall_status: str


def _field(step: Any, name: str) -> Any:
    return step[name] if isinstance(step, dict) else getattr(step, name)


def summarize(steps: Iterable[Any]) -> ProgressSummary:
    completed = failed = in_progress = 0
    first_failed = None

    for step in steps:
        step_type = StepType(_field(step, "step_type"))
        if step_type == StepType.PRE_INSTALLATION:
            continue
        status = StepStatus(_field(step, "status"))
        if status == StepStatus.SUCCESS:
            completed += 1
        elif status == StepStatus.FAILED:
            failed += 1
            if first_failed is None:
                first_failed = step_type
        elif status == StepStatus.IN_PROGRESS:
            in_progress += 1

    pending = max(TOTAL_STEPS - completed - failed - in_progress, 0)
    all_terminal = completed + failed == TOTAL_STEPS
    all_success = completed == TOTAL_STEPS

    if failed:
        overall = "FAILED"
    elif in_progress:
        overall = "IN_PROGRESS"
    elif all_success:
        overall = "SUCCESS"
    else:
        overall = "PENDING"

    return ProgressSummary(
        total=TOTAL_STEPS,
        completed=completed,
        failed=failed,
        in_progress=in_progress,
        pending=pending,
        percentage=round(completed * 100 / TOTAL_STEPS),
        all_terminal=all_terminal,
        all_success=all_success,
        first_failed=first_failed,
        overall_status=overall,
    )
