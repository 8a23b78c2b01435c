"""
HL7 message log: every inbound and outbound message with its outcome.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select

from interop_gateway.database.connection import Database
from interop_gateway.database.models import HL7MessageModel, as_utc, utcnow
from interop_gateway.exceptions import NotFoundError

logger = logging.getLogger(__name__)

INBOUND = "INBOUND"
OUTBOUND = "OUTBOUND"

RECEIVED = "RECEIVED"
PROCESSED = "PROCESSED"
FAILED = "FAILED"
SENT = "SENT"


@dataclass
class LoggedMessage:
    id: str
    message_type: Optional[str]
    message_id: Optional[str]
    version: Optional[str]
    direction: str
    raw_message: str
    parsed_data: Optional[Dict[str, Any]]
    source_system: Optional[str]
    destination_system: Optional[str]
    status: str
    processing_errors: Optional[List[str]]
    patient_id: Optional[str]
    created_at: Optional[datetime]
    processed_at: Optional[datetime]

    def to_dict(self, include_raw: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "message_type": self.message_type,
            "message_id": self.message_id,
            "version": self.version,
            "direction": self.direction,
            "source_system": self.source_system,
            "destination_system": self.destination_system,
            "status": self.status,
            "processing_errors": self.processing_errors or [],
            "patient_id": self.patient_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
        if include_raw:
            data["raw_message"] = self.raw_message
            data["parsed_data"] = self.parsed_data
        return data


def _to_logged(row: HL7MessageModel) -> LoggedMessage:
    return LoggedMessage(
        id=row.id,
        message_type=row.message_type,
        message_id=row.message_id,
        version=row.version,
        direction=row.direction,
        raw_message=row.raw_message,
        parsed_data=row.parsed_data,
        source_system=row.source_system,
        destination_system=row.destination_system,
        status=row.status,
        processing_errors=row.processing_errors,
        patient_id=row.patient_id,
        created_at=as_utc(row.created_at),
        processed_at=as_utc(row.processed_at),
    )


class HL7MessageLog:
    def __init__(self, database: Database):
        self.database = database

    async def record_inbound(
        self,
        raw_message: str,
        *,
        message_type: Optional[str] = None,
        message_id: Optional[str] = None,
        version: Optional[str] = None,
        parsed_data: Optional[Dict[str, Any]] = None,
        source_system: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> LoggedMessage:
        return await self._record(
            INBOUND,
            RECEIVED,
            raw_message=raw_message,
            message_type=message_type,
            message_id=message_id,
            version=version,
            parsed_data=parsed_data,
            source_system=source_system,
            patient_id=patient_id,
        )

    async def record_outbound(
        self,
        raw_message: str,
        *,
        message_type: Optional[str] = None,
        message_id: Optional[str] = None,
        version: Optional[str] = None,
        destination_system: Optional[str] = None,
        patient_id: Optional[str] = None,
    ) -> LoggedMessage:
        return await self._record(
            OUTBOUND,
            PROCESSED,
            raw_message=raw_message,
            message_type=message_type,
            message_id=message_id,
            version=version,
            destination_system=destination_system,
            patient_id=patient_id,
        )

    async def _record(self, direction: str, status: str, **fields) -> LoggedMessage:
        async with self.database.session() as session:
            row = HL7MessageModel(id=str(uuid4()), direction=direction, status=status, **fields)
            session.add(row)
            await session.flush()
            logger.debug("Logged %s %s message %s", direction, fields.get("message_type"), row.id)
            return _to_logged(row)

    async def mark_processed(
        self,
        log_id: str,
        *,
        patient_id: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> LoggedMessage:
        """Mark handled. ``errors`` lists resources that could not be stored."""
        return await self._set_status(log_id, PROCESSED, errors=errors, patient_id=patient_id)

    async def mark_failed(self, log_id: str, errors: List[str]) -> LoggedMessage:
        return await self._set_status(log_id, FAILED, errors=errors)

    async def mark_sent(self, log_id: str, destination_system: Optional[str] = None) -> LoggedMessage:
        return await self._set_status(log_id, SENT, destination_system=destination_system)

    async def _set_status(
        self,
        log_id: str,
        status: str,
        *,
        errors: Optional[List[str]] = None,
        patient_id: Optional[str] = None,
        destination_system: Optional[str] = None,
    ) -> LoggedMessage:
        async with self.database.session() as session:
            row = await session.get(HL7MessageModel, log_id)
            if row is None:
                raise NotFoundError("HL7Message", log_id)
            row.status = status
            row.processed_at = utcnow()
            if errors is not None:
                row.processing_errors = list(errors)
            if patient_id:
                row.patient_id = patient_id
            if destination_system:
                row.destination_system = destination_system
            await session.flush()
            return _to_logged(row)

    async def get(self, log_id: str) -> LoggedMessage:
        async with self.database.session() as session:
            row = await session.get(HL7MessageModel, log_id)
            if row is None:
                raise NotFoundError("HL7Message", log_id)
            return _to_logged(row)

    async def list(
        self,
        *,
        direction: Optional[str] = None,
        status: Optional[str] = None,
        message_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[LoggedMessage]:
        query = select(HL7MessageModel).order_by(HL7MessageModel.created_at.desc())
        if direction:
            query = query.where(HL7MessageModel.direction == direction.upper())
        if status:
            query = query.where(HL7MessageModel.status == status.upper())
        if message_type:
            query = query.where(HL7MessageModel.message_type == message_type.upper())
        async with self.database.session() as session:
            result = await session.execute(query.limit(limit))
            return [_to_logged(row) for row in result.scalars().all()]
