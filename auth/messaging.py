"""
auth/messaging.py -- Outbound email/SMS gateway.

The workflows only know the MessagingGateway contract:

    gateway.send(address, subject, body)    # raises DeliveryFailed

Transports:
  SendGridGateway -- real delivery via the SendGrid v3 API.
  LogGateway      -- development: logs the message and keeps it in .outbox
                     so the link or code can be read back locally.

SMS is delivered as plain-text email to the carrier's email-to-SMS gateway
(e.g. 2065550123@vtext.com). The carrier hint only changes the address.

build_gateway() picks SendGrid only when Settings.send_messages is on and an
API key and sender are configured; otherwise LogGateway.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from auth.errors import DeliveryFailed
from core.config import Settings

logger = logging.getLogger("authsquared.messaging")


@dataclass(frozen=True)
class Carrier:
    id: str
    name: str
    gateway: str


CARRIERS: dict[str, Carrier] = {
    c.id: c
    for c in (
        Carrier("att", "AT&T", "@txt.att.net"),
        Carrier("tmobile", "T-Mobile", "@tmomail.net"),
        Carrier("verizon", "Verizon", "@vtext.com"),
        Carrier("sprint", "Sprint", "@messaging.sprintpcs.com"),
        Carrier("metropcs", "Metro PCS", "@mymetropcs.com"),
        Carrier("boost", "Boost Mobile", "@sms.myboostmobile.com"),
        Carrier("cricket", "Cricket", "@sms.cricketwireless.net"),
        Carrier("uscellular", "US Cellular", "@email.uscc.net"),
    )
}

_NON_DIGITS = re.compile(r"\D")


def sms_address(phone: str, carrier: Optional[str], default_carrier: str = "att") -> str:
    """Return the email-to-SMS address for phone.

    Non-digits are stripped and a leading US country code on an 11-digit
    number is dropped. Unknown or missing carriers fall back to
    default_carrier.
    """
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    chosen = CARRIERS.get((carrier or "").lower()) or CARRIERS.get(default_carrier.lower()) or CARRIERS["att"]
    return f"{digits}{chosen.gateway}"


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------


def verification_email(first_name: str, url: str, ttl_hours: int) -> tuple[str, str]:
    subject = "Verify your email address"
    body = (
        f"Hi {first_name},\n\n"
        f"Confirm your email address by opening the link below:\n\n{url}\n\n"
        f"The link expires in {ttl_hours} hours. If you did not create an account, ignore this email."
    )
    return subject, body


def password_reset_email(first_name: str, url: str) -> tuple[str, str]:
    subject = "Reset your password"
    body = (
        f"Hi {first_name},\n\n"
        f"A password reset was requested for your account. Open the link below to choose a new password:\n\n"
        f"{url}\n\n"
        "The link expires in 1 hour and works once. If you did not request this, ignore this email."
    )
    return subject, body


def sms_code_message(code: str, ttl_minutes: int) -> str:
    # Carrier gateways truncate long messages; keep it short.
    return f"Auth² Code: {code}\nExpires in {ttl_minutes} min\nDo not share"


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


class MessagingGateway(Protocol):
    def send(self, address: str, subject: str, body: str) -> None: ...


class SendGridGateway:
    """Deliver through SendGrid. Any transport error becomes DeliveryFailed."""

    def __init__(self, api_key: str, from_email: str) -> None:
        self._client = SendGridAPIClient(api_key)
        self._from_email = from_email

    def send(self, address: str, subject: str, body: str) -> None:
        message = Mail(
            from_email=self._from_email,
            to_emails=address,
            subject=subject or " ",
            plain_text_content=body,
        )
        try:
            response = self._client.send(message)
        except HTTPError as exc:
            logger.error("SendGrid rejected message to %s: %s", address, exc)
            raise DeliveryFailed() from exc
        except OSError as exc:
            logger.error("SendGrid unreachable sending to %s: %s", address, exc)
            raise DeliveryFailed() from exc
        if response.status_code >= 400:
            logger.error("SendGrid returned %d for %s", response.status_code, address)
            raise DeliveryFailed()
        logger.info("Message sent to %s (status %d)", address, response.status_code)


@dataclass
class OutboundMessage:
    address: str
    subject: str
    body: str


class LogGateway:
    """Development transport: log instead of sending, remember what was sent."""

    def __init__(self) -> None:
        self.outbox: list[OutboundMessage] = []

    def send(self, address: str, subject: str, body: str) -> None:
        self.outbox.append(OutboundMessage(address, subject, body))
        logger.info("MOCK MESSAGE to=%s subject=%r\n%s", address, subject, body)


def build_gateway(settings: Settings) -> MessagingGateway:
    if settings.send_messages and settings.sendgrid_api_key and settings.mail_from_email:
        logger.info("Messaging: SendGrid")
        return SendGridGateway(settings.sendgrid_api_key, settings.mail_from_email)
    logger.warning("Messaging: log-only gateway (messages are not delivered)")
    return LogGateway()
