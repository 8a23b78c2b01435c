"""
SQLAlchemy models for the interoperability gateway database.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on read; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ExternalSystemModel(Base):
    """Registered partner systems and their last sync outcome."""

    __tablename__ = "external_systems"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    type = Column(String(50), nullable=False, index=True)
    base_url = Column(String(500), nullable=False)
    auth_type = Column(String(20), nullable=False, default="NONE")
    credentials = Column(JSON, default=dict)
    configuration = Column(JSON, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_sync = Column(DateTime(timezone=True))
    sync_status = Column(String(20), nullable=False, default="IDLE")
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class FhirResourceModel(Base):
    """Local copy of FHIR resources, one row per (resource_type, resource_id)."""

    __tablename__ = "fhir_resources"

    id = Column(String(36), primary_key=True)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False)
    patient_id = Column(String(64), index=True)
    source = Column(String(255))
    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE / INACTIVE
    last_updated = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", name="uq_fhir_resource_key"),
        Index("idx_fhir_resource_type_status", "resource_type", "status"),
    )


class HL7MessageModel(Base):
    """Inbound and outbound HL7 messages with their processing outcome."""

    __tablename__ = "hl7_messages"

    id = Column(String(36), primary_key=True)
    message_type = Column(String(20), index=True)
    message_id = Column(String(255), index=True)
    version = Column(String(10))
    direction = Column(String(10), nullable=False, index=True)  # INBOUND / OUTBOUND
    raw_message = Column(Text, nullable=False)
    parsed_data = Column(JSON)
    source_system = Column(String(255))
    destination_system = Column(String(255))
    status = Column(String(20), nullable=False, index=True)  # RECEIVED / PROCESSED / FAILED / SENT
    processing_errors = Column(JSON)
    patient_id = Column(String(64), index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    processed_at = Column(DateTime(timezone=True))
