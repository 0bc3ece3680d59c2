# Pydantic schemas
from haccp_audit.schemas.audit import (
    ComplianceValue,
    Question,
    Section,
    Manpower,
    OrganizationFields,
    AuditDocumentData,
    TemplateCreate,
    TemplateUpdate,
    AuditFormFill,
    AuditFormUpdate,
    LedgerEntryOut,
    MessageResponse,
    TemplateResponse,
    FormSubmissionResponse,
    ReconcileResponse,
    normalize_sections,
)
