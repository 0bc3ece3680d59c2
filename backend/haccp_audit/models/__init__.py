# Re-export all models for convenient imports
from haccp_audit.models.audit_document import AuditDocument, AuditStatus
from haccp_audit.models.form_snapshot import AuditFormSnapshot
from haccp_audit.models.audit_version import AuditVersion

__all__ = [
    "AuditDocument",
    "AuditStatus",
    "AuditFormSnapshot",
    "AuditVersion",
]
