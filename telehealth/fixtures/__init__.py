"""Static fixtures for the booking engine.

Contains:
- Notification message templates
"""

from telehealth.fixtures.message_templates import MESSAGE_TEMPLATES, get_template, render

__all__ = ["MESSAGE_TEMPLATES", "get_template", "render"]
