"""Tests for notification rendering and dispatch."""

import asyncio

import pytest

from telehealth.core.errors import GatewayError
from telehealth.fixtures.message_templates import MESSAGE_TEMPLATES, get_template, render
from telehealth.models.appointment import (
    NotificationChannel,
    NotificationEvent,
    NotificationRecipient,
    ReceiptStatus,
)
from telehealth.services.notifications import (
    Failed,
    LoggingEmailGateway,
    LoggingSmsGateway,
    NotificationDispatcher,
    PlannedSend,
    Sent,
)
from telehealth.stores.protocols import Contact
from tests.conftest import FAST_RETRY, FakeEmailGateway, FakeSmsGateway, transient_gateway_error

PATIENT = Contact("p-1", "Ngozi Patient", "ngozi@example.com", "+2348000000001")
DATA = {
    "patient_name": "Ngozi Patient",
    "doctor_name": "Dr. Amaka Eze",
    "date": "Monday 01 March 2099",
    "time": "10:00 UTC",
    "duration": 45,
    "join_url": "https://x.daily.co/appointment-1?t=abc",
    "portal_url": "https://portal.test",
}


def dispatcher(email=None, sms=None) -> NotificationDispatcher:
    return NotificationDispatcher(
        email or FakeEmailGateway(),
        sms or FakeSmsGateway(),
        retry_policy=FAST_RETRY,
    )


class TestTemplates:
    """Tests for message templates."""

    def test_render_substitutes_placeholders(self):
        assert render("Hi {{ name }}, see {{link}}", {"name": "Ada", "link": "x"}) == "Hi Ada, see x"

    def test_unknown_placeholders_render_empty(self):
        assert render("Hi {{missing}}!", {}) == "Hi !"

    def test_escape_html_values(self):
        """Markup in substituted values is escaped for email bodies."""
        rendered = render("<p>Hi {{name}}</p>", {"name": "<script>x</script> & co"}, escape=True)

        assert rendered == "<p>Hi &lt;script&gt;x&lt;/script&gt; &amp; co</p>"

    def test_plain_render_leaves_values_alone(self):
        assert render("Hi {{name}}", {"name": "A & B"}) == "Hi A & B"

    @pytest.mark.parametrize("event", [NotificationEvent.CONFIRMATION, NotificationEvent.CANCELLATION])
    @pytest.mark.parametrize("recipient", list(NotificationRecipient))
    def test_both_parties_have_templates_on_both_channels(self, event, recipient):
        for channel in NotificationChannel:
            assert get_template(event, channel, recipient) is not None

    def test_booking_failed_goes_to_patient_only(self):
        assert get_template(
            NotificationEvent.BOOKING_FAILED, NotificationChannel.EMAIL, NotificationRecipient.DOCTOR
        ) is None

    def test_email_templates_have_subject_and_html(self):
        for (_, channel, _), template in MESSAGE_TEMPLATES.items():
            if channel == NotificationChannel.EMAIL:
                assert template["subject"]
                assert "<html>" in template["html_body"]
            else:
                assert template["body"]

    def test_confirmation_email_contains_join_link(self):
        template = get_template(
            NotificationEvent.CONFIRMATION, NotificationChannel.EMAIL, NotificationRecipient.PATIENT
        )

        html = render(template["html_body"], DATA)

        assert 'href="https://x.daily.co/appointment-1?t=abc"' in html
        assert "Dr. Amaka Eze" in html


class TestNotify:
    """Tests for NotificationDispatcher.notify."""

    async def test_email_sent(self):
        email = FakeEmailGateway()

        outcome = await dispatcher(email=email).notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.EMAIL,
            NotificationRecipient.PATIENT,
            PATIENT,
            DATA,
        )

        assert outcome == Sent(provider_message_id="email-1", attempts=1)
        assert outcome.status == ReceiptStatus.SENT
        assert email.sent[0]["to"] == "ngozi@example.com"
        assert email.sent[0]["subject"] == "Your consultation with Dr. Amaka Eze is confirmed"

    async def test_sms_sent(self):
        sms = FakeSmsGateway()

        outcome = await dispatcher(sms=sms).notify(
            "appt-1",
            NotificationEvent.CANCELLATION,
            NotificationChannel.SMS,
            NotificationRecipient.PATIENT,
            PATIENT,
            DATA,
        )

        assert isinstance(outcome, Sent)
        assert sms.sent[0]["message"].startswith("Your consultation with Dr. Amaka Eze")

    async def test_email_body_escapes_contact_names(self):
        """Names are escaped in the HTML body but not in SMS text."""
        email = FakeEmailGateway()
        sms = FakeSmsGateway()
        data = {**DATA, "patient_name": "<img src=x onerror=alert(1)>"}
        notifier = dispatcher(email=email, sms=sms)

        await notifier.notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.EMAIL,
            NotificationRecipient.PATIENT,
            PATIENT,
            data,
        )

        html_body = email.sent[0]["html_body"]
        assert "<img src=x" not in html_body
        assert "&lt;img src=x onerror=alert(1)&gt;" in html_body
        assert 'href="https://x.daily.co/appointment-1?t=abc"' in html_body

    async def test_transient_failures_retried_then_failed(self):
        """Exhausted retries yield a Failed outcome instead of raising."""
        email = FakeEmailGateway(error=transient_gateway_error())

        outcome = await dispatcher(email=email).notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.EMAIL,
            NotificationRecipient.PATIENT,
            PATIENT,
            DATA,
        )

        assert isinstance(outcome, Failed)
        assert outcome.attempts == 3
        assert outcome.status == ReceiptStatus.FAILED
        assert email.calls == 3

    async def test_permanent_failure_not_retried(self):
        sms = FakeSmsGateway(error=GatewayError("Twilio returned HTTP 400", status_code=400))

        outcome = await dispatcher(sms=sms).notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.SMS,
            NotificationRecipient.PATIENT,
            PATIENT,
            DATA,
        )

        assert outcome == Failed(reason="Twilio returned HTTP 400", attempts=1)
        assert sms.calls == 1

    async def test_missing_email_address(self):
        email = FakeEmailGateway()
        contact = Contact("p-1", "No Email", None, "+2348000000001")

        outcome = await dispatcher(email=email).notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.EMAIL,
            NotificationRecipient.PATIENT,
            contact,
            DATA,
        )

        assert outcome.reason == "no email address on file"
        assert email.calls == 0

    async def test_missing_contact(self):
        outcome = await dispatcher().notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.SMS,
            NotificationRecipient.DOCTOR,
            None,
            DATA,
        )

        assert isinstance(outcome, Failed)

    async def test_unexpected_gateway_error_becomes_failed(self):
        """Errors outside the gateway contract are still reported, not raised."""
        email = FakeEmailGateway(error=KeyError("id"))

        outcome = await dispatcher(email=email).notify(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            NotificationChannel.EMAIL,
            NotificationRecipient.PATIENT,
            PATIENT,
            DATA,
        )

        assert isinstance(outcome, Failed)
        assert outcome.reason.startswith("unexpected error")


class TestFanOut:
    """Tests for NotificationDispatcher.fan_out."""

    async def test_each_outcome_reported_without_barrier(self):
        """A slow send does not hold back the callback for a fast one."""
        release = asyncio.Event()

        class SlowEmail(FakeEmailGateway):
            async def send(self, to, subject, html_body):
                await release.wait()
                return await super().send(to, subject, html_body)

        reported = []

        async def on_outcome(send: PlannedSend, outcome):
            reported.append((send.channel, outcome.status))
            if send.channel == NotificationChannel.SMS:
                release.set()

        sends = [
            PlannedSend(NotificationChannel.EMAIL, NotificationRecipient.PATIENT, PATIENT),
            PlannedSend(NotificationChannel.SMS, NotificationRecipient.PATIENT, PATIENT),
        ]

        outcomes = await dispatcher(email=SlowEmail()).fan_out(
            "appt-1",
            NotificationEvent.CONFIRMATION,
            sends,
            {NotificationRecipient.PATIENT: DATA},
            on_outcome,
        )

        assert reported == [
            (NotificationChannel.SMS, ReceiptStatus.SENT),
            (NotificationChannel.EMAIL, ReceiptStatus.SENT),
        ]
        assert [type(o) for o in outcomes] == [Sent, Sent]

    async def test_callback_error_does_not_stop_other_sends(self):
        sms = FakeSmsGateway()

        async def on_outcome(send, outcome):
            raise RuntimeError("store down")

        sends = [
            PlannedSend(NotificationChannel.EMAIL, NotificationRecipient.PATIENT, PATIENT),
            PlannedSend(NotificationChannel.SMS, NotificationRecipient.PATIENT, PATIENT),
        ]

        outcomes = await dispatcher(sms=sms).fan_out(
            "appt-1",
            NotificationEvent.CANCELLATION,
            sends,
            {NotificationRecipient.PATIENT: DATA},
            on_outcome,
        )

        assert len(outcomes) == 2
        assert len(sms.sent) == 1


async def test_logging_gateways_simulate_delivery():
    """Development gateways return provider-style ids."""
    assert (await LoggingEmailGateway().send("a@example.com", "Hi", "<p>Hi</p>")).startswith("email_")
    assert (await LoggingSmsGateway().send("+2348000000001", "Hi")).startswith("sms_")
