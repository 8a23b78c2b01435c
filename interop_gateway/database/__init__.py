"""
Database package: connection, ORM models and repositories.
"""

from .connection import Database, get_database_url
from .message_log import HL7MessageLog, LoggedMessage
from .models import Base, ExternalSystemModel, FhirResourceModel, HL7MessageModel
from .registry import ExternalSystemRegistry
from .resource_store import FhirResourceStore, SearchResult, StoredResource

__all__ = [
    "Database",
    "get_database_url",
    "HL7MessageLog",
    "LoggedMessage",
    "Base",
    "ExternalSystemModel",
    "FhirResourceModel",
    "HL7MessageModel",
    "ExternalSystemRegistry",
    "FhirResourceStore",
    "SearchResult",
    "StoredResource",
]
