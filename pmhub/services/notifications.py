"""
Notification emails sent from request handlers.
Delivery is fire-and-forget: failures are logged and never surface to the caller.
"""
from html import escape
from typing import Iterable, List, Optional, Union

import structlog
from sqlalchemy.orm import Session

from ..auth.security import ADMIN_ROLES, MANAGER_ROLES
from ..models.models import Role, User
from . import mailer


log = structlog.get_logger()


def send_safely(to: Union[str, Iterable[str]], subject: str, html: str) -> bool:
    try:
        return mailer.send_mail(to, subject, html)
    except Exception as e:
        log.warning("mail_send_failed", subject=subject, error=str(e))
        return False


def staff_emails(db: Session, include_managers: bool = False, exclude_user_id: Optional[int] = None) -> List[str]:
    """Emails of active admins (and managers when requested)."""
    wanted = MANAGER_ROLES if include_managers else ADMIN_ROLES
    q = (
        db.query(User.email)
        .join(User.roles)
        .filter(User.is_active == True, Role.name.in_(sorted(wanted)))  # noqa: E712
    )
    if exclude_user_id is not None:
        q = q.filter(User.id != exclude_user_id)
    return sorted({row[0] for row in q.all() if row[0]})


def notify_staff(db: Session, subject: str, html: str, include_managers: bool = False, exclude_user_id: Optional[int] = None) -> None:
    emails = staff_emails(db, include_managers=include_managers, exclude_user_id=exclude_user_id)
    for email in emails:
        send_safely(email, subject, html)


def notify_user(user: Optional[User], subject: str, html: str) -> None:
    if user is None or not user.email:
        return
    send_safely(user.email, subject, html)


def paragraph(*lines: str) -> str:
    """Minimal inline HTML body; each argument becomes an escaped <p>."""
    return "".join(f"<p>{escape(str(line))}</p>" for line in lines if line)
