"""
Weekly work summary emails.

Every user receives their hours, completed tasks and overdue tasks for the current
ISO week; admins and managers receive one table covering all users. The job runs on
a daemon thread started at app startup, or once by hand via scripts/send_weekly_summary.py.
"""
import threading
import time
from datetime import date, datetime, timedelta, timezone
from html import escape
from typing import Dict, List, Optional, Tuple

import pytz
import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Task, User, WorkLog
from . import notifications


log = structlog.get_logger()


def week_bounds(today: date) -> Tuple[date, date]:
    """Monday and Sunday of the ISO week containing `today`."""
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def user_week_stats(db: Session, user: User, start: date, end: date, now: datetime) -> Dict[str, float]:
    hours = (
        db.query(func.coalesce(func.sum(WorkLog.hours_worked), 0))
        .filter(WorkLog.user_id == user.id, WorkLog.log_date >= start, WorkLog.log_date <= end)
        .scalar()
    )
    # Tasks the user logged time on this week that are now done
    completed = (
        db.query(func.count(func.distinct(Task.id)))
        .join(WorkLog, WorkLog.task_id == Task.id)
        .filter(
            WorkLog.user_id == user.id,
            WorkLog.log_date >= start,
            WorkLog.log_date <= end,
            Task.status == "Done",
        )
        .scalar()
    )
    overdue = (
        db.query(func.count(Task.id))
        .filter(Task.assigned_to == user.id, Task.status != "Done", Task.due_date < now)
        .scalar()
    )
    return {"hoursWorked": float(hours or 0), "completedTasks": int(completed or 0), "overdueTasks": int(overdue or 0)}


def _user_html(user: User, stats: Dict[str, float]) -> str:
    return (
        f"<p>Hello {escape(user.first_name)},</p>"
        "<p>This week you:</p>"
        "<ul>"
        f"<li>Completed <strong>{stats['completedTasks']}</strong> tasks</li>"
        f"<li>Worked <strong>{stats['hoursWorked']:g}</strong> hours</li>"
        f"<li>Have <strong>{stats['overdueTasks']}</strong> overdue tasks</li>"
        "</ul>"
        "<p>Have a great week ahead!</p>"
    )


def _staff_html(rows: List[Tuple[User, Dict[str, float]]]) -> str:
    body = "".join(
        "<tr>"
        f"<td>{escape(u.full_name)}</td>"
        f"<td>{escape(u.email)}</td>"
        f"<td>{s['completedTasks']}</td>"
        f"<td>{s['hoursWorked']:g}</td>"
        f"<td>{s['overdueTasks']}</td>"
        "</tr>"
        for u, s in rows
    )
    return (
        "<p>Here is the weekly user summary:</p>"
        '<table border="1" cellpadding="5" cellspacing="0">'
        "<tr><th>Name</th><th>Email</th><th>Tasks Completed</th><th>Hours Worked</th><th>Overdue</th></tr>"
        f"{body}</table>"
    )


def send_weekly_summary(db: Session, today: Optional[date] = None, now: Optional[datetime] = None) -> Dict[str, int]:
    """Send all summary emails. Errors are logged, never raised."""
    now = now or datetime.now(timezone.utc)
    today = today or now.date()
    start, end = week_bounds(today)
    sent = 0
    rows: List[Tuple[User, Dict[str, float]]] = []
    try:
        users = db.query(User).filter(User.is_active == True).order_by(User.id.asc()).all()  # noqa: E712
        for user in users:
            stats = user_week_stats(db, user, start, end, now)
            rows.append((user, stats))
            if notifications.send_safely(user.email, "Your Weekly Work Summary", _user_html(user, stats)):
                sent += 1

        html = _staff_html(rows)
        for email in notifications.staff_emails(db, include_managers=True):
            if notifications.send_safely(email, "Weekly WorkLog Summary", html):
                sent += 1
    except Exception as e:
        log.error("weekly_summary_failed", error=str(e))
        return {"users": len(rows), "sent": sent, "failed": 1}
    log.info("weekly_summary_sent", users=len(rows), sent=sent, week_start=start.isoformat())
    return {"users": len(rows), "sent": sent, "failed": 0}


# =====================
# Scheduler
# =====================


def parse_weekly_cron(expr: str) -> Tuple[int, int, int]:
    """
    Parse "minute hour * * day_of_week" into (minute, hour, python_weekday).
    Cron weekdays are 0-7 with Sunday as 0 and 7; Python uses Monday as 0.
    """
    parts = expr.split()
    if len(parts) != 5 or parts[2] != "*" or parts[3] != "*":
        raise ValueError(f"Unsupported cron expression: {expr!r}")
    minute, hour, dow = int(parts[0]), int(parts[1]), int(parts[4])
    if not (0 <= minute <= 59 and 0 <= hour <= 23 and 0 <= dow <= 7):
        raise ValueError(f"Cron field out of range: {expr!r}")
    return minute, hour, (dow - 1) % 7


def next_run(now: datetime, expr: str, tz_name: str) -> datetime:
    """Next firing time (tz-aware, in `tz_name`) strictly after `now`."""
    minute, hour, weekday = parse_weekly_cron(expr)
    tz = pytz.timezone(tz_name)
    if now.tzinfo is None:
        now = pytz.UTC.localize(now)
    local_now = now.astimezone(tz)
    days_ahead = (weekday - local_now.weekday()) % 7
    day = local_now.date() + timedelta(days=days_ahead)
    candidate = tz.localize(datetime(day.year, day.month, day.day, hour, minute))
    if candidate <= local_now:
        day = day + timedelta(days=7)
        candidate = tz.localize(datetime(day.year, day.month, day.day, hour, minute))
    return candidate


def _run_once() -> None:
    from ..db import SessionLocal

    db = SessionLocal()
    try:
        send_weekly_summary(db)
    finally:
        db.close()


def _loop(expr: str, tz_name: str, stop: threading.Event) -> None:
    while not stop.is_set():
        target = next_run(datetime.now(timezone.utc), expr, tz_name)
        log.info("weekly_summary_scheduled", at=target.isoformat())
        delay = (target - datetime.now(timezone.utc)).total_seconds()
        if stop.wait(max(delay, 0)):
            return
        try:
            _run_once()
        except Exception as e:
            log.error("weekly_summary_job_crashed", error=str(e))
        # Guard against firing twice within the same minute
        time.sleep(1)


def start_scheduler(expr: Optional[str] = None, tz_name: Optional[str] = None) -> threading.Event:
    """Start the weekly job on a daemon thread; set the returned event to stop it."""
    expr = expr or settings.weekly_summary_cron
    tz_name = tz_name or settings.tz_default
    parse_weekly_cron(expr)
    stop = threading.Event()
    thread = threading.Thread(target=_loop, args=(expr, tz_name, stop), name="weekly-summary", daemon=True)
    thread.start()
    return stop
