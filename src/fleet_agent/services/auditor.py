"""Audit trail updates sent to the coordinator."""

import logging

from fleet_agent.services.request_channel import RequestChannel


class AuditorProxy:
    """Appends entries to the audit trail identified by `audit_id`."""

    def __init__(self, channel: RequestChannel, audit_id: int):
        self.logger = logging.getLogger("fleet_agent.auditor")
        self.channel = channel
        self.audit_id = audit_id

    def update_status(self, status: str) -> None:
        self.logger.info(f"[audit {self.audit_id}] {status}")
        self.channel.push("/auditor/update_status", {"audit_id": self.audit_id, "text": status})

    def append_output(self, text: str) -> None:
        self.channel.push("/auditor/append_output", {"audit_id": self.audit_id, "text": text})

    def append_error(self, text: str, category: str = "error") -> None:
        self.logger.error(f"[audit {self.audit_id}] {text}")
        self.channel.push(
            "/auditor/append_error",
            {"audit_id": self.audit_id, "text": text, "category": category},
        )
