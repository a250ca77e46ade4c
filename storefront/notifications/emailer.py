from __future__ import annotations

import smtplib
from email.message import EmailMessage

from ..config import Settings
from .providers import SendResult


class EmailProvider:
    """SMTP channel for destinations that are email addresses."""

    name = "email"

    def __init__(self, settings: Settings, subject_prefix: str = None) -> None:
        self.settings = settings
        self.subject_prefix = subject_prefix or settings.store_name

    def pick_recipient(self, destination: str) -> str:
        # NOTIFY_FORCE_TO redirects every email, useful against a mail catcher
        if self.settings.notify_force_to:
            return self.settings.notify_force_to
        return destination.strip()

    def send(self, destination: str, message: str, subject: str = None) -> SendResult:
        s = self.settings
        to_email = self.pick_recipient(destination)

        msg = EmailMessage()
        msg["From"] = s.smtp_from
        msg["To"] = to_email
        msg["Subject"] = subject or f"[{self.subject_prefix}] Order update"
        msg.set_content(message)

        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=10) as server:
                if s.smtp_use_tls:
                    server.starttls()
                if s.smtp_username and s.smtp_password:
                    server.login(s.smtp_username, s.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            return SendResult(sent=False, provider=self.name, error=str(e))

        return SendResult(sent=True, provider=self.name, response={"to": to_email})
