"""Tests for structured and audit logging."""

import logging

from telehealth.core.logging import AuditLogger, StructuredFormatter


def test_structured_formatter_includes_correlation_fields():
    """Fields passed via ``extra`` appear as key=value pairs."""
    record = logging.LogRecord("telehealth.test", logging.WARNING, __file__, 1, "send failed", None, None)
    record.appointment_id = "appt-1"
    record.channel = "sms"

    line = StructuredFormatter().format(record)

    assert "level=WARNING" in line
    assert "message=send failed" in line
    assert "appointment_id=appt-1" in line
    assert "channel=sms" in line
    assert "actor_id" not in line


def test_audit_logger_records_action(caplog):
    """Audit events name the action, actor and entity."""
    with caplog.at_level(logging.INFO, logger="audit"):
        AuditLogger().log(
            action="appointment_cancelled",
            actor_type="patient",
            actor_id="p-1",
            entity_type="appointment",
            entity_id="appt-1",
            metadata={"previous_status": "confirmed"},
        )

    record = caplog.records[-1]
    assert record.action == "appointment_cancelled"
    assert "entity=appointment:appt-1" in record.getMessage()
