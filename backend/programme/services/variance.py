"""
Baseline variance.

Compares a baseline snapshot with the current dates of the same task. All
variances are signed whole days, current minus baseline, so a positive value
means later or longer than planned.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from programme.domain.task import Task
from programme.models import BaselineTaskSnapshot

# Days of drift tolerated before a task counts as delayed or early
ON_TIME_TOLERANCE_DAYS = 1


class VarianceStatus(str, Enum):
    ON_TIME = "on-time"
    DELAYED = "delayed"
    EARLY = "early"


@dataclass
class Variance:
    task_id: str
    baseline_start: date
    baseline_end: date
    current_start: date
    current_end: date
    start_variance: int
    end_variance: int
    duration_variance: int
    start_variance_percent: float
    end_variance_percent: float
    duration_variance_percent: float

    @property
    def status(self) -> VarianceStatus:
        return classify(self)


@dataclass
class BaselineComparison:
    """Aggregate of a baseline against the current schedule."""
    baseline_id: Optional[str]
    variances: list[Variance] = field(default_factory=list)
    on_time_tasks: int = 0
    delayed_tasks: int = 0
    early_tasks: int = 0
    total_duration_change: int = 0
    missing_from_current: list[str] = field(default_factory=list)
    new_since_baseline: list[str] = field(default_factory=list)

    @property
    def total_tasks(self) -> int:
        return len(self.variances)


def days_between(earlier: date, later: date) -> int:
    return (later - earlier).days


def compute_variance(
    snapshot: BaselineTaskSnapshot,
    current_start: date,
    current_end: date,
) -> Variance:
    start_variance = days_between(snapshot.baseline_start, current_start)
    end_variance = days_between(snapshot.baseline_end, current_end)
    baseline_duration = days_between(snapshot.baseline_start, snapshot.baseline_end)
    current_duration = days_between(current_start, current_end)
    duration_variance = current_duration - baseline_duration

    def percent(value: int) -> float:
        return value / baseline_duration * 100 if baseline_duration > 0 else 0.0

    return Variance(
        task_id=snapshot.task_id,
        baseline_start=snapshot.baseline_start,
        baseline_end=snapshot.baseline_end,
        current_start=current_start,
        current_end=current_end,
        start_variance=start_variance,
        end_variance=end_variance,
        duration_variance=duration_variance,
        start_variance_percent=percent(start_variance),
        end_variance_percent=percent(end_variance),
        duration_variance_percent=percent(duration_variance),
    )


def classify(variance: Variance) -> VarianceStatus:
    """Delayed wins over early when a task both starts early and finishes late."""
    start, end = variance.start_variance, variance.end_variance
    if start > ON_TIME_TOLERANCE_DAYS or end > ON_TIME_TOLERANCE_DAYS:
        return VarianceStatus.DELAYED
    if start < -ON_TIME_TOLERANCE_DAYS or end < -ON_TIME_TOLERANCE_DAYS:
        return VarianceStatus.EARLY
    return VarianceStatus.ON_TIME


def compare(
    snapshots: Iterable[BaselineTaskSnapshot],
    current_tasks: Iterable[Task],
    baseline_id: Optional[str] = None,
) -> BaselineComparison:
    """
    Match snapshots to current tasks by id and aggregate the drift.

    Tasks present on only one side are listed but left out of the counts.
    """
    current = {task.id: task for task in current_tasks}
    comparison = BaselineComparison(baseline_id=baseline_id)
    matched = set()

    for snapshot in snapshots:
        task = current.get(snapshot.task_id)
        if task is None:
            comparison.missing_from_current.append(snapshot.task_id)
            continue
        matched.add(task.id)
        variance = compute_variance(snapshot, task.start, task.end)
        comparison.variances.append(variance)
        comparison.total_duration_change += variance.duration_variance
        status = variance.status
        if status == VarianceStatus.DELAYED:
            comparison.delayed_tasks += 1
        elif status == VarianceStatus.EARLY:
            comparison.early_tasks += 1
        else:
            comparison.on_time_tasks += 1

    comparison.new_since_baseline = [task_id for task_id in current if task_id not in matched]
    return comparison
