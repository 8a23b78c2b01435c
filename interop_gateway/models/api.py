"""
Request bodies for the HTTP API.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from interop_gateway.models.domain import PatientRecord


class HL7ReceiveRequest(BaseModel):
    message: str = Field(..., description="HL7 v2.x message (pipe-delimited)")
    source_system: Optional[str] = Field(None, description="Name or id of the sending system")
    rebroadcast: bool = Field(False, description="Forward to every other active HL7 endpoint")


class HL7ValidateRequest(BaseModel):
    message: str


class HL7GenerateRequest(BaseModel):
    message_type: str = Field(..., description="ADT, ORU or ORM")
    patient: PatientRecord
    payload: Dict[str, Any] = Field(default_factory=dict)
    destination: Optional[str] = Field(None, description="External system id to send the message to")


class PatientSyncRequest(BaseModel):
    patient: PatientRecord
    system_id: str
