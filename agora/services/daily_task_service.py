"""
agora.services.daily_task_service — Daily Task Progress
========================================================

Progress rows are keyed by the *local* calendar date (``YYYY-MM-DD`` in the
community timezone) and created lazily the first time a user's tasks are
read or advanced on a new day.

Completing a task credits its reward through the shared ledger primitive
(ledger type ``daily_task``) and re-runs the badge evaluator.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agora.database.models import DailyTask, DailyTaskProgress, DailyTaskType
from agora.engine.clock import as_utc, local_date_str, recent_dates
from agora.engine.rules import RuleBook
from agora.services.point_service import LEDGER_DAILY_TASK, apply_credit

logger = logging.getLogger(__name__)

# User action → task type it advances
ACTION_TO_TASK: dict[str, DailyTaskType] = {
    "post_created": DailyTaskType.POST,
    "reply_created": DailyTaskType.REPLY,
    "like_given": DailyTaskType.LIKE,
    "checkin": DailyTaskType.CHECKIN,
    "course_time": DailyTaskType.COURSE_TIME,
}


def initialize_daily_tasks(session: Session, user_id: int, day: str) -> int:
    """Create missing progress rows for every active task on *day*."""
    have = set(session.scalars(
        select(DailyTaskProgress.task_id).where(
            DailyTaskProgress.user_id == user_id, DailyTaskProgress.date == day,
        )
    ).all())
    task_ids = session.scalars(select(DailyTask.id).where(DailyTask.active.is_(True))).all()
    created = 0
    for task_id in task_ids:
        if task_id in have:
            continue
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(DailyTaskProgress(user_id=user_id, task_id=task_id, date=day))
                session.flush()
            created += 1
        except IntegrityError:
            # A concurrent request initialised the same row.
            continue
    return created


def update_task_progress(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    task_type: str,
    increment: int = 1,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Advance today's tasks of *task_type* by *increment*, capped at target.

    Returns the ids of tasks completed by this call.
    """
    if increment <= 0:
        return []
    now = as_utc(now)
    day = local_date_str(now, rules.tz)
    completed: list[int] = []

    with Session(engine) as session:
        initialize_daily_tasks(session, user_id, day)
        rows = session.execute(
            select(DailyTaskProgress, DailyTask)
            .join(DailyTask, DailyTask.id == DailyTaskProgress.task_id)
            .where(
                DailyTaskProgress.user_id == user_id,
                DailyTaskProgress.date == day,
                DailyTaskProgress.completed.is_(False),
                DailyTask.active.is_(True),
                DailyTask.type == task_type,
            )
        ).all()

        for progress, task in rows:
            new_progress = min(progress.progress + increment, task.target)
            done = new_progress >= task.target
            # Guard on completed = false so a concurrent completion can't
            # credit the reward twice.
            result = session.execute(
                update(DailyTaskProgress)
                .where(DailyTaskProgress.id == progress.id, DailyTaskProgress.completed.is_(False))
                .values(
                    progress=new_progress,
                    completed=done,
                    completed_at=now if done else None,
                )
                .execution_options(synchronize_session=False)
            )
            if not done or result.rowcount != 1:
                continue
            if task.points or task.experience:
                apply_credit(
                    session, rules, user_id,
                    points=task.points,
                    experience=task.experience,
                    type=LEDGER_DAILY_TASK,
                    reason=f"Daily task completed: {task.title}",
                    related_id=task.id,
                    related_type="daily_task",
                    now=now,
                )
            completed.append(task.id)
            logger.info("Daily task %s completed by user %d", task.name, user_id)

        session.commit()

    if completed:
        from agora.services.badge_service import check_and_award_badges

        check_and_award_badges(engine, rules, user_id, now=now)
    return completed


def handle_user_action(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    action: str,
    *,
    minutes: int | None = None,
    now: datetime | None = None,
) -> list[int]:
    """Map a forum action onto the task type it advances."""
    task_type = ACTION_TO_TASK.get(action)
    if task_type is None:
        logger.debug("Unhandled user action for daily tasks: %s", action)
        return []
    increment = 1
    if task_type == DailyTaskType.COURSE_TIME:
        if not minutes:
            return []
        increment = minutes
    return update_task_progress(engine, rules, user_id, task_type, increment, now=now)


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def task_to_dict(task: DailyTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "name": task.name,
        "title": task.title,
        "description": task.description,
        "type": task.type,
        "target": task.target,
        "points": task.points,
        "experience": task.experience,
        "icon": task.icon,
        "sort_order": task.sort_order,
    }


def get_user_daily_tasks(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Today's tasks with progress, initialising rows on first read."""
    now = as_utc(now)
    day = local_date_str(now, rules.tz)
    with Session(engine) as session:
        if initialize_daily_tasks(session, user_id, day):
            session.commit()
        rows = session.execute(
            select(DailyTaskProgress, DailyTask)
            .join(DailyTask, DailyTask.id == DailyTaskProgress.task_id)
            .where(
                DailyTaskProgress.user_id == user_id,
                DailyTaskProgress.date == day,
                DailyTask.active.is_(True),
            )
            .order_by(DailyTask.sort_order, DailyTask.id)
        ).all()
        tasks = [
            {
                "id": progress.id,
                "task": task_to_dict(task),
                "progress": progress.progress,
                "completed": progress.completed,
                "progress_percent": round(progress.progress / task.target * 100) if task.target else 100,
            }
            for progress, task in rows
        ]
        done = sum(1 for t in tasks if t["completed"])
        return {
            "date": day,
            "tasks": tasks,
            "stats": {
                "total": len(tasks),
                "completed": done,
                "completion_rate": round(done / len(tasks) * 100) if tasks else 0,
                "points_earned": sum(t["task"]["points"] for t in tasks if t["completed"]),
            },
        }


def get_user_task_stats(
    engine: Engine,
    rules: RuleBook,
    user_id: int,
    *,
    days: int = 7,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Per-date totals for the last *days* local dates that have rows."""
    days = min(max(1, days), 90)
    window = recent_dates(as_utc(now), rules.tz, days)
    with Session(engine) as session:
        rows = session.execute(
            select(
                DailyTaskProgress.date,
                func.count(DailyTaskProgress.id),
                func.sum(case((DailyTaskProgress.completed.is_(True), 1), else_=0)),
            )
            .where(
                DailyTaskProgress.user_id == user_id,
                DailyTaskProgress.date >= window[-1],
                DailyTaskProgress.date <= window[0],
            )
            .group_by(DailyTaskProgress.date)
            .order_by(DailyTaskProgress.date.desc())
        ).all()
    return [
        {
            "date": day,
            "total_tasks": total,
            "completed_tasks": int(done or 0),
            "completion_rate": round(int(done or 0) / total * 100) if total else 0,
        }
        for day, total, done in rows
    ]


def get_all_daily_tasks(engine: Engine) -> list[dict[str, Any]]:
    with Session(engine) as session:
        tasks = session.scalars(
            select(DailyTask).where(DailyTask.active.is_(True)).order_by(DailyTask.sort_order, DailyTask.id)
        ).all()
        return [task_to_dict(t) for t in tasks]
