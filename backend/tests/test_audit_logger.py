"""Tests for the logging-backed audit logger."""

import logging

import pytest

from services.audit_logger import LoggingAuditLogger
from services.interfaces import AdminAction, SecurityEvent, UserEvent


@pytest.fixture
def audit():
    return LoggingAuditLogger()


@pytest.mark.asyncio
async def test_user_event_is_info(audit, caplog):
    with caplog.at_level(logging.INFO, logger="roteirar.audit"):
        await audit.log_user_event(UserEvent(user_id="u1", action="user_registered", details={"a": 1}))

    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert "user_registered" in record.getMessage()
    assert record.audit["category"] == "user"
    assert record.audit["details"] == {"a": 1}


@pytest.mark.asyncio
async def test_security_event_is_warning(audit, caplog):
    with caplog.at_level(logging.INFO, logger="roteirar.audit"):
        await audit.log_security_event(
            SecurityEvent(action="failed_login", email="a@b.com", reason="invalid_password")
        )

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "subject=a@b.com" in record.getMessage()
    assert "reason=invalid_password" in record.getMessage()
    assert record.audit["category"] == "security"


@pytest.mark.asyncio
async def test_admin_action(audit, caplog):
    with caplog.at_level(logging.INFO, logger="roteirar.audit"):
        await audit.log_admin_action(AdminAction(admin_id="admin-1", action="block_user", target_user_id="u1"))

    record = caplog.records[-1]
    assert "admin=admin-1" in record.getMessage()
    assert record.audit["target_user_id"] == "u1"
    assert isinstance(record.audit["timestamp"], str)


def test_custom_logger():
    logger = logging.getLogger("tests.audit")
    audit = LoggingAuditLogger(logger)
    assert audit.logger is logger
