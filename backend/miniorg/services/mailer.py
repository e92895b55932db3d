"""Outbound email for verification and password-reset codes.

``ResendMailer`` posts to the Resend HTTP API. Without ``RESEND_API_KEY`` the
``LogMailer`` is used so local development can read codes from the log.
"""
from __future__ import annotations

import html
import logging
from typing import Optional, Protocol

import requests

from ..config import Settings, get_settings
from .credentials import CODE_EXPIRY_MINUTES

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class MailerError(Exception):
    pass


class Mailer(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> None: ...


class ResendMailer:
    def __init__(self, api_key: str, sender: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.http = session or requests.Session()

    def send(self, to: str, subject: str, html_body: str) -> None:
        try:
            resp = self.http.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.sender, "to": [to], "subject": subject, "html": html_body},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MailerError(f"Failed to send email: {e}") from e
        if resp.status_code >= 400:
            raise MailerError(f"Failed to send email: {resp.status_code} {resp.text}")


class LogMailer:
    def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info("Email to %s (%s) not sent: RESEND_API_KEY is not configured", to, subject)
        logger.debug("Email body: %s", html_body)


def get_mailer(settings: Optional[Settings] = None) -> Mailer:
    settings = settings or get_settings()
    if settings.resend_api_key:
        return ResendMailer(settings.resend_api_key, settings.mail_from)
    return LogMailer()


def _code_template(intro: str, code: str) -> str:
    return (
        "<div style=\"font-family:sans-serif;max-width:480px;margin:auto\">"
        "<h1>MiniOrg</h1>"
        f"<p>{html.escape(intro)}</p>"
        f"<p style=\"font-size:32px;letter-spacing:8px;font-family:monospace\">{html.escape(code)}</p>"
        f"<p>This code expires in {CODE_EXPIRY_MINUTES} minutes.</p>"
        "<p>If you did not request this, you can ignore this email.</p>"
        "</div>"
    )


def send_verification_email(mailer: Mailer, email: str, code: str) -> None:
    mailer.send(
        email,
        "Your MiniOrg verification code",
        _code_template("Here is your code to finish creating your MiniOrg account:", code),
    )


def send_password_reset_email(mailer: Mailer, email: str, code: str) -> None:
    mailer.send(
        email,
        "Your MiniOrg password reset code",
        _code_template("Here is your code to reset your MiniOrg password:", code),
    )
