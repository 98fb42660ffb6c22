import smtplib
from email.message import EmailMessage
from typing import Iterable, Union

import structlog

from ..config import settings


log = structlog.get_logger()


def mail_configured() -> bool:
    return bool(settings.enable_email and settings.smtp_host and settings.mail_from)


def send_mail(to: Union[str, Iterable[str]], subject: str, html: str) -> bool:
    """Send an HTML email. Returns False when SMTP is not configured; raises on SMTP errors."""
    recipients = [to] if isinstance(to, str) else [x for x in to if x]
    if not recipients:
        return False
    if not mail_configured():
        log.info("mail_skipped", subject=subject, to=recipients)
        return False

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.mail_from
    msg["To"] = ", ".join(recipients)
    msg.set_content("This message requires an HTML capable mail client.")
    msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)
    log.info("mail_sent", subject=subject, to=recipients)
    return True
