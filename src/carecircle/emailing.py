"""Simple SMTP email helper for enforcement notices."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Dict, List, Mapping, Optional, Sequence

from .exceptions import EnforcementError, UnconfiguredError
from .ops import StructuredLogger


class EmailClient:
    """Very small wrapper around :mod:`smtplib`.

    Port 465 uses implicit TLS, anything else upgrades with STARTTLS when
    ``use_tls`` is set.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 5,
    ) -> None:
        if not host or not port or not sender:
            raise UnconfiguredError("SMTP host, port and sender address are required.")
        if username and not password:
            raise UnconfiguredError("SMTP password is required when a username is set.")
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Mapping[str, Optional[str]]) -> "EmailClient":
        port = settings.get("SMTP_PORT") or ""
        if port and not port.isdigit():
            raise UnconfiguredError(f"SMTP_PORT '{port}' is not a number.")
        return cls(
            settings.get("SMTP_HOST") or "",
            int(port or 0),
            sender=settings.get("MAIL_FROM") or "",
            username=settings.get("SMTP_USER") or None,
            password=settings.get("SMTP_PASS") or None,
        )

    def build_message(self, subject: str, body: str, *, recipients: Sequence[str]) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message.set_content(body)
        return message

    def send(self, message: EmailMessage) -> None:
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                self._deliver(smtp, message)
            return
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            self._deliver(smtp, message)

    def _deliver(self, smtp: smtplib.SMTP, message: EmailMessage) -> None:
        if self.username and self.password:
            smtp.login(self.username, self.password)
        smtp.send_message(message)


class EnforcementMailer:
    """Email parents when an enforcement action fires.

    Registered as an enforcement listener. Without SMTP configuration it logs
    a warning once and does nothing. With no ``MAIL_TO`` recipients the notice
    goes to ``SMTP_USER``.
    """

    def __init__(
        self,
        settings: Mapping[str, Optional[str]],
        *,
        logger: StructuredLogger,
        recipients: Sequence[str] = (),
    ) -> None:
        self._logger = logger
        self._recipients: List[str] = [item.strip() for item in recipients if item.strip()]
        if not self._recipients and (settings.get("SMTP_USER") or "").strip():
            self._recipients = [str(settings["SMTP_USER"]).strip()]
        self._client: Optional[EmailClient] = None
        try:
            self._client = EmailClient.from_settings(settings)
        except UnconfiguredError as exc:
            self._logger.warning("email_unconfigured", detail=str(exc))
        if self._client is not None and not self._recipients:
            self._logger.warning("email_unconfigured", detail="Neither MAIL_TO nor SMTP_USER names a recipient.")
            self._client = None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def __call__(self, event: Dict[str, object]) -> None:
        if self._client is None:
            return
        subject = f"CareCircle: {event.get('action')} sent to {event.get('targetUserId') or 'unassigned'}"
        lines = [f"{key}: {value}" for key, value in sorted(event.items())]
        message = self._client.build_message(subject, "\n".join(lines), recipients=self._recipients)
        try:
            self._client.send(message)
        except (OSError, smtplib.SMTPException) as exc:
            self._logger.warning("email_failed", detail=str(exc))
            raise EnforcementError(f"email notice failed: {exc}") from exc
        self._logger.log("email_sent", recipients=len(self._recipients), subject=subject)


__all__ = ["EmailClient", "EnforcementMailer"]
