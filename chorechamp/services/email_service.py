"""Outgoing email for welcome messages, chore notices and household invitations.

Sending is best effort: every public helper raises ``EmailDeliveryError`` on
failure and callers log it without failing their request.
"""
import logging
import os
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

APP_NAME = "ChoreChamp"


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the SMTP server"""


class EmailService:
    def __init__(self):
        self.host = os.getenv("EMAIL_HOST")
        self.port = int(os.getenv("EMAIL_PORT", "587"))
        self.username = os.getenv("EMAIL_USER")
        self.password = os.getenv("EMAIL_PASSWORD")
        self.sender = os.getenv("EMAIL_FROM") or self.username
        self.use_tls = os.getenv("EMAIL_USE_TLS", "true").lower() == "true"
        self.client_url = os.getenv("CLIENT_URL", "http://localhost:3000").rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.host and self.sender)

    def send_email(self, to_email: str, subject: str, body_html: str, body_text: Optional[str] = None) -> None:
        if not self.configured:
            raise EmailDeliveryError("Email is not configured (EMAIL_HOST / EMAIL_FROM)")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((APP_NAME, self.sender))
        msg["To"] = to_email
        if body_text:
            msg.attach(MIMEText(body_text, "plain"))
        msg.attach(MIMEText(body_html, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"Failed to send email to {to_email}: {e}") from e
        logger.info("Sent '%s' email to %s", subject, to_email)

    def invite_url(self, token: str) -> str:
        return f"{self.client_url}/join-household/{token}"

    def send_welcome(self, to_email: str, name: str) -> None:
        subject = f"Welcome to {APP_NAME}!"
        html = (
            f"<h1>Welcome to {APP_NAME}!</h1>"
            f"<p>Hi {escape(name)},</p>"
            "<p>You can now log in to see your chores and start earning points.</p>"
        )
        text = f"Hi {name},\n\nWelcome to {APP_NAME}! Log in to see your chores and start earning points."
        self.send_email(to_email, subject, html, text)

    def send_chore_assigned(self, to_email: str, name: str, chore_title: str, points: int,
                            due: Optional[datetime] = None) -> None:
        subject = f"New Chore Assigned: {chore_title}"
        due_line = f"<p><strong>Due:</strong> {due.date().isoformat()}</p>" if due else ""
        html = (
            f"<h1>New Chore Assigned!</h1><p>Hi {escape(name)},</p>"
            f"<p>You have been assigned <strong>{escape(chore_title)}</strong> "
            f"worth {points} points.</p>{due_line}"
        )
        text = f"Hi {name},\n\nYou have been assigned {chore_title} worth {points} points."
        self.send_email(to_email, subject, html, text)

    def send_chore_completed(self, to_email: str, parent_name: str, child_name: str, chore_title: str) -> None:
        subject = f"Chore Completed by {child_name}"
        html = (
            f"<h1>Chore Completed!</h1><p>Hi {escape(parent_name)},</p>"
            f"<p>{escape(child_name)} has completed <strong>{escape(chore_title)}</strong>.</p>"
            "<p>Please verify the completion of this chore.</p>"
        )
        text = f"Hi {parent_name},\n\n{child_name} has completed {chore_title}. Please verify it."
        self.send_email(to_email, subject, html, text)

    def send_household_invitation(self, to_email: str, token: str, inviter_name: str) -> None:
        url = self.invite_url(token)
        subject = f"Invitation to Join a {APP_NAME} Household"
        html = (
            f"<h2>Welcome to {APP_NAME}!</h2>"
            f"<p><strong>{escape(inviter_name)}</strong> has invited you to join their household.</p>"
            f'<p><a href="{url}">Accept Invitation</a></p>'
            "<p><small>This invitation will expire in 48 hours.</small></p>"
        )
        text = (
            f"{inviter_name} has invited you to join their household on {APP_NAME}.\n\n"
            f"Accept the invitation: {url}\n\nThis invitation will expire in 48 hours."
        )
        self.send_email(to_email, subject, html, text)

email_service = EmailService()
