"""
Version Ledger Model - one row per rendered PDF artifact
"""

from sqlalchemy import Column, String, DateTime, Integer, Text, Index, UniqueConstraint
from datetime import datetime

from haccp_audit.core.database import Base
from haccp_audit.core.types import GUID, generate_uuid


class AuditVersion(Base):
    """
    Append-only ledger entry linking a form version to its PDF.

    No foreign key to audit_documents: entries outlive deleted forms.
    """
    __tablename__ = "audit_versions"

    __table_args__ = (
        UniqueConstraint('form_id', 'version_number', name='uq_ledger_form_version'),
        Index('ix_audit_versions_form_id', 'form_id'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False)
    form_id = Column(GUID, nullable=False)
    version_number = Column(Integer, nullable=False)
    pdf_url = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AuditVersion {self.form_id} v{self.version_number}>"
