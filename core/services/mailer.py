import logging

from django.conf import settings
from django.core.mail import EmailMultiAlternatives

from .sync_errors import MailFailure

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "Keep Solving on Codeforces!"


def send_message(to: str, subject: str, text: str, html: str | None = None) -> None:
    """Hand one message to the configured Django mail backend. Raises MailFailure."""
    if not to:
        raise MailFailure("Missing recipient address")

    message = EmailMultiAlternatives(
        subject=subject,
        body=text,
        from_email=getattr(settings, "REMINDER_FROM_EMAIL", None),
        to=[to],
    )
    if html:
        message.attach_alternative(html, "text/html")

    try:
        sent = message.send(fail_silently=False)
    except Exception as exc:
        raise MailFailure(f"Mail transport error: {exc}") from exc
    if not sent:
        raise MailFailure("Mail transport accepted no messages")


def build_reminder(name: str, window_days: int) -> tuple[str, str, str]:
    text = (
        f"Hi {name},\n\n"
        f"We noticed you haven't solved any problems on Codeforces in the last {window_days} days. "
        "Keep up your problem solving!"
    )
    html = (
        f"<p>Hi {name},</p>"
        f"<p>We noticed you haven't solved any problems on Codeforces in the last {window_days} days. "
        "Keep up your problem solving!</p>"
    )
    return REMINDER_SUBJECT, text, html


def send_inactivity_reminder(student, window_days: int) -> None:
    subject, text, html = build_reminder(student.name, window_days)
    send_message(student.email, subject, text, html)
