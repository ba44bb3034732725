"""Email, bot verification and geocoding collaborators."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import settings
from .errors import DependencyError

logger = logging.getLogger("uvicorn.error")

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates" / "email")),
    autoescape=select_autoescape(["html"]),
)


def render_email(template_name: str, **context) -> str:
    context.setdefault("base_url", settings.base_url.rstrip("/"))
    return _templates.get_template(template_name).render(**context)


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html: str) -> bool: ...


@dataclass
class LogEmailSender:
    """Fallback sender used when SMTP is not configured; keeps an outbox."""

    outbox: list[tuple[str, str, str]] = field(default_factory=list)

    def send(self, to: str, subject: str, html: str) -> bool:
        self.outbox.append((to, subject, html))
        logger.info("Email (not sent, SMTP disabled) to %s: %s", to, subject)
        return True


class SmtpEmailSender:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> bool:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable email client.")
        message.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s (%s)", to, subject)
            return False
        logger.info("Sent email to %s: %s", to, subject)
        return True


def build_email_sender() -> EmailSender:
    if not settings.smtp_host:
        logger.warning("SMTP is not configured; emails will only be logged")
        return LogEmailSender()
    return SmtpEmailSender(
        settings.smtp_host,
        settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.http_timeout_seconds,
    )


def send_notification(
    sender: EmailSender | None, to: str, subject: str, template_name: str, **context
) -> bool:
    """Render and send an email; failures are logged and reported as ``False``."""
    if sender is None:
        return False
    try:
        html = render_email(template_name, **context)
        return sender.send(to, subject, html)
    except Exception:
        logger.exception("Email notification %s to %s failed", template_name, to)
        return False


class BotVerifier(Protocol):
    def verify(self, token: str | None, remote_ip: str | None = None) -> bool: ...


class TurnstileVerifier:
    """Cloudflare Turnstile check.

    Without a secret key every token passes; the fallback is announced once at
    construction.
    """

    def __init__(
        self,
        secret_key: str | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float | None = None,
    ):
        self.secret_key = settings.turnstile_secret_key if secret_key is None else secret_key
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client
        if not self.secret_key:
            logger.warning("Turnstile secret key not configured; skipping bot checks")

    @property
    def enabled(self) -> bool:
        return bool(self.secret_key)

    def verify(self, token: str | None, remote_ip: str | None = None) -> bool:
        if not self.enabled:
            return True
        if not token:
            return False
        data = {"secret": self.secret_key, "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip
        try:
            if self._client is not None:
                response = self._client.post(TURNSTILE_VERIFY_URL, data=data)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(TURNSTILE_VERIFY_URL, data=data)
            response.raise_for_status()
            return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError):
            logger.exception("Turnstile verification request failed")
            return False


@dataclass(frozen=True)
class Place:
    place_id: str
    formatted_address: str
    latitude: float
    longitude: float


class Geocoder(Protocol):
    def lookup(self, query: str) -> Place: ...


class GoogleGeocoder:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float | None = None,
    ):
        self.api_key = settings.google_maps_api_key if api_key is None else api_key
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client

    def lookup(self, query: str) -> Place:
        if not self.api_key:
            raise DependencyError("Geocoding is not configured")
        params = {"address": query, "key": self.api_key}
        try:
            if self._client is not None:
                response = self._client.get(GEOCODE_URL, params=params)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.get(GEOCODE_URL, params=params)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Geocoding request failed for %r", query)
            raise DependencyError("Geocoding service unavailable") from exc

        results = payload.get("results") or []
        if payload.get("status") != "OK" or not results:
            raise DependencyError(f"No location found for {query!r}")
        best = results[0]
        location = best["geometry"]["location"]
        return Place(
            place_id=best["place_id"],
            formatted_address=best["formatted_address"],
            latitude=float(location["lat"]),
            longitude=float(location["lng"]),
        )
