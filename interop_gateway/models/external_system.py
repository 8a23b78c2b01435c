"""
External system configuration models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SystemType(str, Enum):
    HL7_ENDPOINT = "HL7_ENDPOINT"
    FHIR_SERVER = "FHIR_SERVER"
    GOV_API = "GOV_API"
    LAB_SYSTEM = "LAB_SYSTEM"
    PHARMACY = "PHARMACY"
    INSURANCE = "INSURANCE"


class AuthType(str, Enum):
    NONE = "NONE"
    BASIC = "BASIC"
    BEARER = "BEARER"
    API_KEY = "API_KEY"


class SyncStatus(str, Enum):
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Credentials(BaseModel):
    """Secrets used to build auth headers"""
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None


class ExternalSystemCreate(BaseModel):
    """Request body for registering a partner system"""
    name: str = Field(..., min_length=1, max_length=255)
    type: SystemType
    base_url: str
    auth_type: AuthType = AuthType.NONE
    credentials: Credentials = Field(default_factory=Credentials)
    configuration: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class ExternalSystemUpdate(BaseModel):
    """Partial update; unset fields are left alone"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[SystemType] = None
    base_url: Optional[str] = None
    auth_type: Optional[AuthType] = None
    credentials: Optional[Credentials] = None
    configuration: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ExternalSystem(BaseModel):
    """Registered partner system"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: SystemType
    base_url: str
    auth_type: AuthType = AuthType.NONE
    credentials: Credentials = Field(default_factory=Credentials)
    configuration: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    last_sync: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.IDLE
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def public_dict(self) -> Dict[str, Any]:
        """JSON view without credentials."""
        data = self.model_dump(mode="json", exclude={"credentials"})
        data["has_credentials"] = any(self.credentials.model_dump().values())
        return data


class SyncStatusView(BaseModel):
    system_id: str
    name: str
    sync_status: SyncStatus
    last_sync: Optional[datetime] = None
    error_message: Optional[str] = None
