"""
Compliance audit logging for interoperability traffic.
"""

from .audit_events import AuditAction, ComplianceEvent, ComplianceFlag
from .audit_logger import AuditSink, ComplianceAuditor, JsonlAuditSink

__all__ = [
    "AuditAction",
    "ComplianceEvent",
    "ComplianceFlag",
    "AuditSink",
    "ComplianceAuditor",
    "JsonlAuditSink",
]
