"""Default audit logger - writes audit events to the ``roteirar.audit`` logger."""

import logging

from services.interfaces import AdminAction, SecurityEvent, UserEvent

audit_log = logging.getLogger("roteirar.audit")


class LoggingAuditLogger:
    """IAuditLogger backed by standard logging.

    Each record carries the full event as ``record.audit`` so a JSON
    formatter or log shipper can pick it up without parsing the message.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or audit_log

    async def log_user_event(self, event: UserEvent) -> None:
        self.logger.info(
            f"user_event {event.action} user={event.user_id}",
            extra={"audit": {"category": "user", **event.model_dump(mode="json")}},
        )

    async def log_security_event(self, event: SecurityEvent) -> None:
        subject = event.user_id or event.email or "unknown"
        self.logger.warning(
            f"security_event {event.action} subject={subject}"
            + (f" reason={event.reason}" if event.reason else ""),
            extra={"audit": {"category": "security", **event.model_dump(mode="json")}},
        )

    async def log_admin_action(self, action: AdminAction) -> None:
        self.logger.info(
            f"admin_action {action.action} admin={action.admin_id} target={action.target_user_id}",
            extra={"audit": {"category": "admin", **action.model_dump(mode="json")}},
        )
