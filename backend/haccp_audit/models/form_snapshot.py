"""
Audit Form Snapshot Model - immutable copy of a form at one version
Used for: historical version lookup, re-rendering forms that never got a PDF
"""

from sqlalchemy import Column, String, DateTime, Integer, JSON, Index, UniqueConstraint
from datetime import datetime

from haccp_audit.core.database import Base
from haccp_audit.core.types import GUID, generate_uuid


class AuditFormSnapshot(Base):
    """
    Written in the same transaction as the form insert/update.

    A snapshot without a matching ledger entry marks a version whose
    render, upload or ledger step never completed.
    """
    __tablename__ = "audit_form_snapshots"

    __table_args__ = (
        UniqueConstraint('form_id', 'version', name='uq_snapshot_form_version'),
        Index('ix_snapshots_created_at', 'created_at'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    form_id = Column(GUID, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    user_id = Column(String(100), nullable=False)

    # Full camelCase document as returned by the API
    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<AuditFormSnapshot {self.form_id} v{self.version}>"
