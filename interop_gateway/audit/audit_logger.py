"""
Audit sinks and the fire-and-forget compliance auditor.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .audit_events import AuditAction, ComplianceEvent, ComplianceFlag

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class AuditSink(Protocol):
    async def record(self, event: ComplianceEvent) -> None:
        ...


class JsonlAuditSink:
    """
    Writes audit events as JSON lines, one file per UTC day.

    Events are mirrored to the ``audit`` logger.
    """

    def __init__(self, log_dir: str = "audit-logs", console_output: bool = True):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.console_output = console_output
        self._logger = logging.getLogger("audit")

    def _get_log_file(self) -> Path:
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"audit_{date_str}.jsonl"

    async def record(self, event: ComplianceEvent) -> None:
        with open(self._get_log_file(), "a") as f:
            f.write(event.to_json() + "\n")

        if self.console_output:
            self._logger.info(
                "[%s] %s: %s %s",
                event.action.value,
                event.actor,
                event.resource,
                event.resource_id or "",
            )

    def get_events(self, action: Optional[AuditAction] = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Read events back, newest file first."""
        events: List[Dict[str, Any]] = []
        for log_file in sorted(self.log_dir.glob("audit_*.jsonl"), reverse=True):
            with open(log_file, "r") as f:
                for line in f:
                    if len(events) >= limit:
                        return events
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if action and event.get("action") != action.value:
                        continue
                    events.append(event)
        return events


class ComplianceAuditor:
    """
    Emits compliance events to a sink.

    Sink failures are logged and never propagate to the caller.
    """

    def __init__(self, sink: AuditSink):
        self.sink = sink

    async def emit(self, event: ComplianceEvent) -> None:
        try:
            await self.sink.record(event)
        except Exception as e:
            logger.error("Failed to record audit event %s: %s", event.action.value, e)

    async def delivery_failed(
        self,
        *,
        system_id: str,
        system_name: str,
        action: AuditAction,
        error: BaseException,
        payload_preview: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> None:
        flag = ComplianceFlag.HL7_TRANSMISSION if action == AuditAction.HL7_TRANSMISSION_FAILED else ComplianceFlag.FHIR_SYNC
        details: Dict[str, Any] = {
            "system_name": system_name,
            "error_type": type(error).__name__,
            "error": str(error),
        }
        if attempts is not None:
            details["attempts"] = attempts
        if payload_preview:
            details["message_preview"] = payload_preview[:PREVIEW_LENGTH]
        await self.emit(
            ComplianceEvent(
                action=action,
                resource="EXTERNAL_SYSTEM",
                resource_id=system_id,
                details=details,
                compliance_flags=[flag, ComplianceFlag.SYSTEM_INTEGRATION],
            )
        )

    async def resource_stored(
        self,
        *,
        resource_type: str,
        resource_id: str,
        source: str,
        patient_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        await self.emit(
            ComplianceEvent(
                action=AuditAction.FHIR_RESOURCE_STORED,
                resource=resource_type,
                resource_id=resource_id,
                details={"source": source, "patient_id": patient_id},
                compliance_flags=[ComplianceFlag.PHI_STORAGE],
                user_id=user_id,
            )
        )

    async def resource_forwarded(
        self,
        *,
        resource_type: str,
        resource_id: str,
        system_id: str,
        system_name: str,
        user_id: Optional[str] = None,
    ) -> None:
        await self.emit(
            ComplianceEvent(
                action=AuditAction.FHIR_RESOURCE_FORWARDED,
                resource=resource_type,
                resource_id=resource_id,
                details={"system_id": system_id, "system_name": system_name},
                compliance_flags=[ComplianceFlag.PHI_DISCLOSURE, ComplianceFlag.SYSTEM_INTEGRATION],
                user_id=user_id,
            )
        )

    async def message_processed(
        self,
        *,
        action: AuditAction,
        message_id: str,
        message_type: str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ) -> None:
        await self.emit(
            ComplianceEvent(
                action=action,
                resource="HL7_MESSAGE",
                resource_id=message_id,
                details={"message_type": message_type, **(details or {})},
                compliance_flags=[ComplianceFlag.HL7_TRANSMISSION],
                user_id=user_id,
            )
        )

    async def system_changed(self, *, system_id: str, change: str, user_id: Optional[str] = None) -> None:
        await self.emit(
            ComplianceEvent(
                action=AuditAction.EXTERNAL_SYSTEM_CHANGED,
                resource="EXTERNAL_SYSTEM",
                resource_id=system_id,
                details={"change": change},
                compliance_flags=[ComplianceFlag.CONFIGURATION],
                user_id=user_id,
            )
        )
