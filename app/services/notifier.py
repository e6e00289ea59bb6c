# app/services/notifier.py
from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from app.core.config import Settings

logger = logging.getLogger(__name__)

PURPOSE_TITLES = {
    "check_in": "Check-in for your appointment",
    "payment_confirmation": "Payment confirmation",
    "service_access": "Exclusive access",
    "special_offer": "Special offer",
}


class Notifier(Protocol):
    def deliver(self, address: str, subject: str, body: str) -> bool: ...


class LogNotifier:
    """Sin SMTP configurado: deja constancia en el log y da el envío por bueno."""

    def deliver(self, address: str, subject: str, body: str) -> bool:
        logger.info("Email to %s (%s) not sent: no SMTP configured", address, subject)
        return True


class SmtpNotifier:
    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.sender = settings.sender_email

    def deliver(self, address: str, subject: str, body: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = address
        msg.attach(MIMEText(body, "html"))

        try:
            context = ssl.create_default_context()
            if self.port == 465:
                server = smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=30)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=30)
                server.starttls(context=context)
            try:
                if self.username:
                    server.login(self.username, self.password or "")
                server.sendmail(self.sender.split("<")[-1].rstrip(">"), [address], msg.as_string())
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery to %s failed: %s", address, e)
            return False

        logger.info("QR email sent to %s via %s", address, self.host)
        return True


def build_notifier(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(settings)
    return LogNotifier()


def qr_email(purpose: str, url: str, image_base64: str, expires_at_local) -> tuple[str, str]:
    title = PURPOSE_TITLES.get(purpose, "Special QR code")
    subject = f"Your QR code - {title}"
    body = f"""<html><body style="font-family: Arial, sans-serif; text-align: center;">
<h1>Your QR code</h1>
<p><strong>{title}</strong></p>
<p><img src="data:image/png;base64,{image_base64}" alt="QR code" style="max-width: 200px;"></p>
<p>Valid until {expires_at_local:%d/%m/%Y %H:%M}.</p>
<p>If the image does not load, open <a href="{url}">{url}</a></p>
</body></html>"""
    return subject, body
