"""Backlog deadline grouping.

Differences are whole units truncated toward zero, so a task set exactly
three days and one hour ago under ``next_3_days`` is not yet overdue.
"""
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from ..db import models
from ..domain.enums import DeadlineGroup, DeadlineType, TaskStatus
from ..utils.timeutil import utcnow

# deadline_type -> (unit, allowed whole units since deadline_set_at)
OVERDUE_AFTER = {
    DeadlineType.NEXT_3_DAYS.value: ("days", 3),
    DeadlineType.NEXT_WEEK.value: ("days", 7),
    DeadlineType.NEXT_MONTH.value: ("months", 1),
    DeadlineType.NEXT_QUARTER.value: ("months", 3),
    DeadlineType.NEXT_YEAR.value: ("years", 1),
}


def whole_days(later: datetime, earlier: datetime) -> int:
    return int((later - earlier).total_seconds() / 86400)


def whole_months(later: datetime, earlier: datetime) -> int:
    delta = relativedelta(later, earlier)
    return delta.years * 12 + delta.months


def whole_years(later: datetime, earlier: datetime) -> int:
    return relativedelta(later, earlier).years


def is_task_overdue(task: models.Task, now: Optional[datetime] = None) -> bool:
    if not task.deadline_type or not task.deadline_set_at or task.status == TaskStatus.DONE.value:
        return False
    rule = OVERDUE_AFTER.get(task.deadline_type)
    if rule is None:
        return False
    now = now or utcnow()
    unit, limit = rule
    if unit == "days":
        elapsed = whole_days(now, task.deadline_set_at)
    elif unit == "months":
        elapsed = whole_months(now, task.deadline_set_at)
    else:
        elapsed = whole_years(now, task.deadline_set_at)
    return elapsed > limit


def get_task_deadline_group(task: models.Task, now: Optional[datetime] = None) -> DeadlineGroup:
    now = now or utcnow()
    if is_task_overdue(task, now):
        return DeadlineGroup.OVERDUE

    if task.scheduled_date and not task.deadline_type:
        days_until = whole_days(task.scheduled_date, now)
        if days_until < 0:
            return DeadlineGroup.OVERDUE
        if days_until <= 3:
            return DeadlineGroup.NEXT_3_DAYS
        if days_until <= 7:
            return DeadlineGroup.NEXT_WEEK
        months_until = whole_months(task.scheduled_date, now)
        if months_until <= 1:
            return DeadlineGroup.NEXT_MONTH
        if months_until <= 3:
            return DeadlineGroup.NEXT_QUARTER
        return DeadlineGroup.NEXT_YEAR

    if not task.deadline_type:
        return DeadlineGroup.NO_DATE
    try:
        return DeadlineGroup(task.deadline_type)
    except ValueError:
        return DeadlineGroup.NO_DATE


def group_tasks(tasks: Iterable[models.Task], now: Optional[datetime] = None) -> Dict[str, List[models.Task]]:
    """Bucket tasks by deadline group, every group present and in display order."""
    now = now or utcnow()
    groups: Dict[str, List[models.Task]] = OrderedDict((g.value, []) for g in DeadlineGroup)
    for task in tasks:
        groups[get_task_deadline_group(task, now).value].append(task)
    return groups
