"""Notification dispatch over email and SMS.

Gateways deliver a single rendered message. The dispatcher renders
templates, retries transient gateway failures and reports one outcome per
send; it never raises for a delivery failure.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import httpx

from telehealth.core.config import settings
from telehealth.core.errors import GatewayError, NotificationFailed
from telehealth.core.retry import RetryExhausted, RetryPolicy, retry_async
from telehealth.fixtures.message_templates import get_template, render
from telehealth.models.appointment import (
    NotificationChannel,
    NotificationEvent,
    NotificationRecipient,
    ReceiptStatus,
)
from telehealth.stores.protocols import Contact

logger = logging.getLogger(__name__)


# =============================================================================
# Gateways
# =============================================================================


class EmailGateway(ABC):
    """Abstract base class for email gateways."""

    @abstractmethod
    async def send(self, to: str, subject: str, html_body: str) -> str:
        """Send an email and return the provider message id.

        Raises GatewayError on failure.
        """
        pass


class SmsGateway(ABC):
    """Abstract base class for SMS gateways."""

    @abstractmethod
    async def send(self, to: str, message: str) -> str:
        """Send an SMS and return the provider message id.

        Raises GatewayError on failure.
        """
        pass


async def _post(
    provider: str,
    url: str,
    timeout_seconds: float,
    transport: httpx.AsyncBaseTransport | None,
    **kwargs: Any,
) -> dict[str, Any]:
    """POST to a gateway and classify failures as transient or permanent."""
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            response = await client.post(url, **kwargs)
    except (httpx.TimeoutException, httpx.TransportError) as e:
        raise GatewayError(f"{provider} request failed: {type(e).__name__}", is_retryable=True) from e

    if not response.is_success:
        raise GatewayError(
            f"{provider} returned HTTP {response.status_code}",
            status_code=response.status_code,
            is_retryable=response.status_code == 429 or response.status_code >= 500,
        )
    return response.json()


class ResendEmailGateway(EmailGateway):
    """Email delivery through the Resend API."""

    def __init__(
        self,
        api_key: str,
        from_email: str,
        api_base: str = "https://api.resend.com",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def send(self, to: str, subject: str, html_body: str) -> str:
        data = await _post(
            "Resend",
            f"{self.api_base}/emails",
            self.timeout_seconds,
            self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "from": self.from_email,
                "to": [to],
                "subject": subject,
                "html": html_body,
            },
        )
        message_id = data.get("id")
        if not message_id:
            raise GatewayError("Resend returned no message id")
        return message_id


class TwilioSmsGateway(SmsGateway):
    """SMS delivery through the Twilio Messages API."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str = "https://api.twilio.com",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.api_base = api_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def send(self, to: str, message: str) -> str:
        data = await _post(
            "Twilio",
            f"{self.api_base}/2010-04-01/Accounts/{self.account_sid}/Messages.json",
            self.timeout_seconds,
            self.transport,
            auth=(self.account_sid, self.auth_token),
            data={"To": to, "From": self.from_number, "Body": message},
        )
        sid = data.get("sid")
        if not sid:
            raise GatewayError("Twilio returned no message sid")
        return sid


class LoggingEmailGateway(EmailGateway):
    """Simulated email delivery for development."""

    async def send(self, to: str, subject: str, html_body: str) -> str:
        logger.info(f"Sending email to {to}: {subject}")
        return f"email_{uuid4().hex[:16]}"


class LoggingSmsGateway(SmsGateway):
    """Simulated SMS delivery for development."""

    async def send(self, to: str, message: str) -> str:
        logger.info(f"Sending SMS to {to}: {message[:50]}...")
        return f"sms_{uuid4().hex[:16]}"


def get_email_gateway() -> EmailGateway:
    """Get configured email gateway (Resend when a key is set)."""
    if settings.resend_api_key:
        return ResendEmailGateway(
            api_key=settings.resend_api_key,
            from_email=settings.email_from,
            api_base=settings.resend_api_base,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    return LoggingEmailGateway()


def get_sms_gateway() -> SmsGateway:
    """Get configured SMS gateway (Twilio when credentials are set)."""
    if settings.twilio_account_sid and settings.twilio_auth_token:
        return TwilioSmsGateway(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            api_base=settings.twilio_api_base,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    return LoggingSmsGateway()


# =============================================================================
# Dispatcher
# =============================================================================


@dataclass(frozen=True)
class Sent:
    provider_message_id: str
    attempts: int

    status = ReceiptStatus.SENT
    reason = None


@dataclass(frozen=True)
class Failed:
    reason: str
    attempts: int

    status = ReceiptStatus.FAILED
    provider_message_id = None


NotificationOutcome = Sent | Failed


@dataclass(frozen=True)
class PlannedSend:
    """One (channel, recipient) delivery within an event's fan-out."""

    channel: NotificationChannel
    recipient: NotificationRecipient
    contact: Contact | None


OutcomeCallback = Callable[[PlannedSend, NotificationOutcome], Awaitable[None]]


class NotificationDispatcher:
    """Render and deliver booking notifications."""

    def __init__(
        self,
        email_gateway: EmailGateway,
        sms_gateway: SmsGateway,
        retry_policy: RetryPolicy | None = None,
    ):
        self.email_gateway = email_gateway
        self.sms_gateway = sms_gateway
        self.retry_policy = retry_policy or RetryPolicy.from_settings(
            timeout=settings.gateway_timeout_seconds
        )

    async def notify(
        self,
        appointment_id: str,
        event: NotificationEvent,
        channel: NotificationChannel,
        recipient: NotificationRecipient,
        contact: Contact | None,
        template_data: dict[str, Any],
    ) -> NotificationOutcome:
        """Deliver one notification and report the outcome."""
        log_extra = {
            "appointment_id": appointment_id,
            "channel": channel.value,
            "recipient": recipient.value,
        }
        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self._deliver(event, channel, recipient, contact, template_data)

        try:
            message_id, _ = await retry_async(attempt, self.retry_policy, f"{channel.value} {event.value}")
        except RetryExhausted as e:
            reason = f"gave up after {e.attempts} attempts: {e.last_error}"
        except (GatewayError, NotificationFailed) as e:
            reason = str(e)
        except Exception as e:
            logger.exception(f"Unexpected error sending {channel.value} notification", extra=log_extra)
            reason = f"unexpected error: {e}"
        else:
            logger.info(f"Sent {event.value} {channel.value} to {recipient.value}", extra=log_extra)
            return Sent(provider_message_id=message_id, attempts=attempts)

        logger.warning(
            f"Failed to send {event.value} {channel.value} to {recipient.value}: {reason}",
            extra=log_extra,
        )
        return Failed(reason=reason, attempts=attempts)

    async def _deliver(
        self,
        event: NotificationEvent,
        channel: NotificationChannel,
        recipient: NotificationRecipient,
        contact: Contact | None,
        template_data: dict[str, Any],
    ) -> str:
        template = get_template(event, channel, recipient)
        if template is None:
            raise NotificationFailed(f"no {channel.value} template for {event.value} to {recipient.value}")
        if contact is None:
            raise NotificationFailed(f"no contact details for {recipient.value}")

        if channel == NotificationChannel.EMAIL:
            if not contact.email:
                raise NotificationFailed("no email address on file")
            return await self.email_gateway.send(
                to=contact.email,
                subject=render(template["subject"], template_data),
                html_body=render(template["html_body"], template_data, escape=True),
            )
        if channel == NotificationChannel.SMS:
            if not contact.phone:
                raise NotificationFailed("no phone number on file")
            return await self.sms_gateway.send(
                to=contact.phone,
                message=render(template["body"], template_data),
            )
        raise ValueError(f"Unsupported channel: {channel}")

    async def fan_out(
        self,
        appointment_id: str,
        event: NotificationEvent,
        sends: Iterable[PlannedSend],
        template_data: Mapping[NotificationRecipient, dict[str, Any]],
        on_outcome: OutcomeCallback,
    ) -> list[NotificationOutcome]:
        """Issue all sends for an event concurrently.

        Each outcome is handed to ``on_outcome`` as soon as its send
        completes. ``template_data`` is keyed by recipient so each
        participant gets their own join link.
        """

        async def run(send: PlannedSend) -> NotificationOutcome:
            data = template_data.get(send.recipient, {})
            outcome = await self.notify(
                appointment_id, event, send.channel, send.recipient, send.contact, data
            )
            try:
                await on_outcome(send, outcome)
            except Exception:
                logger.exception(
                    "Failed to record notification outcome",
                    extra={"appointment_id": appointment_id, "channel": send.channel.value},
                )
            return outcome

        return list(await asyncio.gather(*(run(send) for send in sends)))
