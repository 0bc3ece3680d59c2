"""
Audit Document Model

One table holds both blank templates and filled forms; ``status`` tells them
apart. Sections and list fields are stored as JSON documents.
"""

from sqlalchemy import Column, String, DateTime, Date, Enum as SQLEnum, Integer, Text, JSON, Index
from datetime import datetime
import enum

from haccp_audit.core.database import Base
from haccp_audit.core.types import GUID, generate_uuid


class AuditStatus(str, enum.Enum):
    """Audit document status"""
    NOT_FILLED = "NOT FILLED"  # Template
    FILLED = "FILLED"  # Submitted form


class AuditDocument(Base):
    """
    Template or filled audit form.

    Invariants:
    - template: status NOT_FILLED, version 0, user_id ""
    - form: status FILLED, version >= 1, user_id set, organisation
      fields copied from the source template when the form was created
    """
    __tablename__ = "audit_documents"

    __table_args__ = (
        Index('ix_audit_documents_user_id', 'user_id'),
        Index('ix_audit_documents_status', 'status'),
    )

    id = Column(GUID, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, default="")
    source_template_id = Column(GUID, nullable=True)  # Template a form was filled from

    # Organisation fields (copied on fill)
    restaurant_name = Column(String(255), nullable=False, default="")
    name_of_company = Column(String(255), nullable=False, default="")
    fssai_license_no = Column(String(100), nullable=False, default="")
    company_representatives = Column(JSON, nullable=False, default=list)
    site_address = Column(Text, nullable=False, default="")
    state = Column(String(100), nullable=False, default="")
    pin_code = Column(String(20), nullable=False, default="")
    phone_no = Column(String(50), nullable=False, default="")
    email = Column(String(255), nullable=False, default="")
    website = Column(String(255), nullable=False, default="")
    audit_team = Column(JSON, nullable=False, default=list)

    # Audit details
    date_of_audit = Column(Date, nullable=True)
    audit_type = Column(String(100), nullable=False, default="")
    audit_criteria = Column(Text, nullable=False, default="")
    type_of_audit = Column(String(100), nullable=False, default="")
    scope = Column(Text, nullable=False, default="")
    manpower = Column(JSON, nullable=False, default=lambda: {"male": 0, "female": 0})

    # [{"sectionTitle": ..., "questions": [...]}]
    sections = Column(JSON, nullable=False, default=list)

    status = Column(SQLEnum(AuditStatus), nullable=False, default=AuditStatus.NOT_FILLED)
    version = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<AuditDocument {self.id} v{self.version} ({self.status})>"

    @property
    def is_template(self) -> bool:
        return self.status == AuditStatus.NOT_FILLED
