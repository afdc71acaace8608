"""Notification templates for booking events.

Templates use ``{{variable}}`` placeholders. Each entry is keyed by
(event, channel, recipient); email entries carry a subject and HTML body,
SMS entries a plain body.
"""

import html
import re
from typing import Any

from telehealth.models.appointment import (
    NotificationChannel,
    NotificationEvent,
    NotificationRecipient,
)

_EMAIL_STYLE = """
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }
        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
        .header { background: #0f766e; color: white; padding: 24px; border-radius: 8px 8px 0 0; }
        .header h1 { margin: 0; font-size: 22px; }
        .content { background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; }
        .details { background: white; border-radius: 8px; padding: 16px; margin: 16px 0; border: 1px solid #e2e8f0; }
        .cta-button { display: inline-block; background: #0f766e; color: white; padding: 12px 24px; border-radius: 6px; text-decoration: none; }
        .footer { background: #f1f5f9; padding: 16px 24px; border-radius: 0 0 8px 8px; font-size: 14px; color: #64748b; }
    </style>
"""


def _html(heading: str, intro: str, details: str, cta: str | None = None) -> str:
    cta_html = f'<p><a href="{{{{join_url}}}}" class="cta-button">{cta}</a></p>' if cta else ""
    return f"""<!DOCTYPE html>
<html>
<head>{_EMAIL_STYLE}</head>
<body>
    <div class="container">
        <div class="header"><h1>{heading}</h1></div>
        <div class="content">
            <p>{intro}</p>
            <div class="details">{details}</div>
            {cta_html}
        </div>
        <div class="footer"><p>The Telehealth Team</p></div>
    </div>
</body>
</html>"""


_SCHEDULE_DETAILS = "<p><strong>Date:</strong> {{date}}<br><strong>Time:</strong> {{time}}<br><strong>Duration:</strong> {{duration}} minutes</p>"

E = NotificationEvent
C = NotificationChannel
R = NotificationRecipient

MESSAGE_TEMPLATES: dict[tuple[E, C, R], dict[str, str]] = {
    # =========================================================================
    # Confirmation
    # =========================================================================
    (E.CONFIRMATION, C.EMAIL, R.PATIENT): {
        "subject": "Your consultation with {{doctor_name}} is confirmed",
        "html_body": _html(
            "Your consultation is confirmed",
            "Hi {{patient_name}}, your video consultation with {{doctor_name}} is booked.",
            _SCHEDULE_DETAILS,
            cta="Join video consultation",
        ),
    },
    (E.CONFIRMATION, C.EMAIL, R.DOCTOR): {
        "subject": "New consultation booked with {{patient_name}}",
        "html_body": _html(
            "New consultation booked",
            "{{doctor_name}}, {{patient_name}} has booked a video consultation with you.",
            _SCHEDULE_DETAILS,
            cta="Open consultation room",
        ),
    },
    (E.CONFIRMATION, C.SMS, R.PATIENT): {
        "body": "Your consultation with {{doctor_name}} is confirmed for {{date}} at {{time}}. Join: {{join_url}}",
    },
    (E.CONFIRMATION, C.SMS, R.DOCTOR): {
        "body": "New consultation with {{patient_name}} on {{date}} at {{time}}. Join: {{join_url}}",
    },
    # =========================================================================
    # Cancellation
    # =========================================================================
    (E.CANCELLATION, C.EMAIL, R.PATIENT): {
        "subject": "Your consultation on {{date}} has been cancelled",
        "html_body": _html(
            "Consultation cancelled",
            "Hi {{patient_name}}, your consultation with {{doctor_name}} has been cancelled.",
            _SCHEDULE_DETAILS,
        ),
    },
    (E.CANCELLATION, C.EMAIL, R.DOCTOR): {
        "subject": "Consultation with {{patient_name}} cancelled",
        "html_body": _html(
            "Consultation cancelled",
            "{{doctor_name}}, your consultation with {{patient_name}} has been cancelled.",
            _SCHEDULE_DETAILS,
        ),
    },
    (E.CANCELLATION, C.SMS, R.PATIENT): {
        "body": "Your consultation with {{doctor_name}} on {{date}} at {{time}} has been cancelled.",
    },
    (E.CANCELLATION, C.SMS, R.DOCTOR): {
        "body": "Your consultation with {{patient_name}} on {{date}} at {{time}} has been cancelled.",
    },
    # =========================================================================
    # Booking failed (patient only)
    # =========================================================================
    (E.BOOKING_FAILED, C.EMAIL, R.PATIENT): {
        "subject": "We could not set up your consultation",
        "html_body": _html(
            "We could not set up your consultation",
            "Hi {{patient_name}}, we were unable to prepare the video room for your "
            "consultation with {{doctor_name}}. Please book a new time from your portal.",
            _SCHEDULE_DETAILS + '<p><a href="{{portal_url}}">Open patient portal</a></p>',
        ),
    },
    (E.BOOKING_FAILED, C.SMS, R.PATIENT): {
        "body": "We could not set up your consultation with {{doctor_name}} on {{date}}. Please rebook: {{portal_url}}",
    },
}

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render(text: str, data: dict[str, Any], escape: bool = False) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names render empty.

    With ``escape`` set, values are HTML-escaped for use in email bodies.

    >>> render("Hello {{name}}", {"name": "Ada"})
    'Hello Ada'
    >>> render("<p>{{name}}</p>", {"name": "<b>Ada</b>"}, escape=True)
    '<p>&lt;b&gt;Ada&lt;/b&gt;</p>'
    """

    def substitute(match: re.Match) -> str:
        value = str(data.get(match.group(1), ""))
        return html.escape(value) if escape else value

    return _PLACEHOLDER.sub(substitute, text)


def get_template(
    event: NotificationEvent,
    channel: NotificationChannel,
    recipient: NotificationRecipient,
) -> dict[str, str] | None:
    """Look up the template for one send, or None if none is defined."""
    return MESSAGE_TEMPLATES.get((event, channel, recipient))
