from datetime import date, datetime

import pytest
import pytz

from pmhub.models.models import Task, WorkLog
from pmhub.services import notifications
from pmhub.services.weekly_summary import (
    next_run,
    parse_weekly_cron,
    send_weekly_summary,
    user_week_stats,
    week_bounds,
)

WEDNESDAY = date(2024, 5, 8)
NOW = datetime(2024, 5, 8, 12, 0)


def test_week_bounds_are_monday_to_sunday():
    assert week_bounds(WEDNESDAY) == (date(2024, 5, 6), date(2024, 5, 12))
    assert week_bounds(date(2024, 5, 6)) == (date(2024, 5, 6), date(2024, 5, 12))
    assert week_bounds(date(2024, 5, 12)) == (date(2024, 5, 6), date(2024, 5, 12))


@pytest.mark.parametrize(
    "expr,expected",
    [
        ("0 8 * * 1", (0, 8, 0)),
        ("30 17 * * 5", (30, 17, 4)),
        ("0 8 * * 0", (0, 8, 6)),
        ("0 8 * * 7", (0, 8, 6)),
    ],
)
def test_parse_weekly_cron(expr, expected):
    assert parse_weekly_cron(expr) == expected


@pytest.mark.parametrize("expr", ["0 8 1 * 1", "61 8 * * 1", "0 8 * * 9", "weekly"])
def test_parse_weekly_cron_rejects_unsupported(expr):
    with pytest.raises(ValueError):
        parse_weekly_cron(expr)


def test_next_run_uses_local_time():
    now = pytz.UTC.localize(datetime(2024, 5, 8, 12, 0))
    fired = next_run(now, "0 8 * * 1", "America/Vancouver")
    assert fired.tzinfo is not None
    assert (fired.year, fired.month, fired.day, fired.hour, fired.minute) == (2024, 5, 13, 8, 0)
    assert fired.astimezone(pytz.UTC).hour == 15

    # Exactly at firing time rolls to the following week
    again = next_run(fired, "0 8 * * 1", "America/Vancouver")
    assert (again.month, again.day) == (5, 20)


def test_next_run_same_day_later_time():
    monday_morning = pytz.UTC.localize(datetime(2024, 5, 13, 10, 0))  # 03:00 in Vancouver
    fired = next_run(monday_morning, "0 8 * * 1", "America/Vancouver")
    assert (fired.month, fired.day, fired.hour) == (5, 13, 8)


def _seed_week(session, make_user, make_project):
    admin = make_user("admin@example.com", roles=("admin",), first_name="Ada")
    manager = make_user("manager@example.com", roles=("manager",), first_name="Max")
    worker = make_user("worker@example.com", first_name="Wes")
    project = make_project("Bridge", members=[worker])

    done = Task(title="Pour deck", status="Done", project_id=project.id, assigned_to=worker.id)
    late = Task(title="Order rebar", status="To Do", project_id=project.id, assigned_to=worker.id, due_date=datetime(2024, 5, 1))
    finished_late = Task(title="Survey", status="Done", project_id=project.id, assigned_to=worker.id, due_date=datetime(2024, 5, 1))
    future = Task(title="Paint", status="In Progress", project_id=project.id, assigned_to=worker.id, due_date=datetime(2024, 6, 1))
    session.add_all([done, late, finished_late, future])
    session.flush()
    session.add_all(
        [
            WorkLog(user_id=worker.id, project_id=project.id, task_id=done.id, hours_worked=3, log_date=date(2024, 5, 6)),
            WorkLog(user_id=worker.id, project_id=project.id, task_id=done.id, hours_worked=2, log_date=date(2024, 5, 7)),
            WorkLog(user_id=worker.id, project_id=project.id, task_id=late.id, hours_worked=1, log_date=date(2024, 5, 1)),
        ]
    )
    session.commit()
    return admin, manager, worker


def test_user_week_stats(session, make_user, make_project):
    _, _, worker = _seed_week(session, make_user, make_project)
    start, end = week_bounds(WEDNESDAY)

    stats = user_week_stats(session, worker, start, end, NOW)
    assert stats == {"hoursWorked": 5.0, "completedTasks": 1, "overdueTasks": 1}


def test_send_weekly_summary_emails_users_and_staff(session, make_user, make_project, sent_mail):
    admin, manager, worker = _seed_week(session, make_user, make_project)

    result = send_weekly_summary(session, today=WEDNESDAY, now=NOW)
    assert result == {"users": 3, "sent": 5, "failed": 0}

    personal = [m for m in sent_mail if m["subject"] == "Your Weekly Work Summary"]
    assert sorted(m["to"][0] for m in personal) == sorted([admin.email, manager.email, worker.email])
    wes = next(m for m in personal if m["to"] == [worker.email])
    assert "Worked <strong>5</strong> hours" in wes["html"]
    assert "Have <strong>1</strong> overdue tasks" in wes["html"]

    staff = [m for m in sent_mail if m["subject"] == "Weekly WorkLog Summary"]
    assert sorted(m["to"][0] for m in staff) == sorted([admin.email, manager.email])
    assert "<td>worker@example.com</td>" in staff[0]["html"]


def test_send_weekly_summary_counts_undelivered_mail(session, make_user, monkeypatch):
    make_user("admin@example.com", roles=("admin",))

    def _boom(to, subject, html):
        raise ConnectionError("smtp down")

    monkeypatch.setattr(notifications.mailer, "send_mail", _boom)
    assert send_weekly_summary(session, today=WEDNESDAY, now=NOW) == {"users": 1, "sent": 0, "failed": 0}


def test_send_weekly_summary_never_raises(session, make_user, monkeypatch, sent_mail):
    make_user("admin@example.com", roles=("admin",))

    def _broken(*args, **kwargs):
        raise RuntimeError("db went away")

    monkeypatch.setattr(notifications, "staff_emails", _broken)
    result = send_weekly_summary(session, today=WEDNESDAY, now=NOW)
    assert result == {"users": 1, "sent": 1, "failed": 1}
