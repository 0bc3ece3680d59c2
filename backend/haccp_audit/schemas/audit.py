"""
Audit template / form schemas.

The wire format is camelCase (``restaurantName``, ``evidenceAndComments``);
Python code uses snake_case attribute names. Legacy payloads that store
``sections`` as a flat list of questions are folded into the nested shape
on the way in.
"""
from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Dict
from datetime import date, datetime
import enum

from haccp_audit.models.audit_document import AuditStatus


LEGACY_SECTION_TITLE = "General"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ComplianceValue(str, enum.Enum):
    """Compliance indicator for one checklist question"""
    YES = "Y"
    NO = "N"
    NEEDS_IMPROVEMENT = "NI"
    NOT_APPLICABLE = "N/A"


_COMPLIANCE_ALIASES = {"NA": "N/A", "YES": "Y", "NO": "N"}


def _blank_to_empty(v: Any) -> Any:
    return "" if v is None else v


def _parse_audit_date(v: Any) -> Any:
    if v in ("", None):
        return None
    # Browsers send midnight timestamps like 2024-05-01T00:00:00.000Z
    if isinstance(v, str) and "T" in v:
        return v.split("T", 1)[0]
    return v


class Question(CamelModel):
    question: str = ""
    compliance: Optional[ComplianceValue] = None
    evidence_and_comments: str = ""
    image: Optional[str] = None  # URL once stored, data URI / base64 before

    @field_validator("compliance", mode="before")
    @classmethod
    def normalize_compliance(cls, v):
        if v is None:
            return None
        if isinstance(v, str):
            v = v.strip().upper()
            if not v:
                return None
            return _COMPLIANCE_ALIASES.get(v, v)
        return v

    @field_validator("question", "evidence_and_comments", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("image", mode="before")
    @classmethod
    def blank_image(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Section(CamelModel):
    section_title: str = ""
    questions: List[Question] = Field(default_factory=list)

    @field_validator("section_title", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("questions", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v


def _is_section_like(item: Any) -> bool:
    if isinstance(item, Section):
        return True
    if isinstance(item, dict):
        return "questions" in item or "sectionTitle" in item or "section_title" in item
    return False


def normalize_sections(raw: Any) -> Any:
    """
    Fold the legacy flat question list into nested sections.

    Each run of consecutive bare questions becomes one section titled
    "General"; section-shaped items pass through untouched.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        return raw

    sections: List[Any] = []
    pending: List[Any] = []
    for item in raw:
        if _is_section_like(item):
            if pending:
                sections.append({"sectionTitle": LEGACY_SECTION_TITLE, "questions": pending})
                pending = []
            sections.append(item)
        else:
            pending.append(item)
    if pending:
        sections.append({"sectionTitle": LEGACY_SECTION_TITLE, "questions": pending})
    return sections


class Manpower(CamelModel):
    male: int = Field(0, ge=0)
    female: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.male + self.female


class OrganizationFields(CamelModel):
    """Company identity block copied from template to form"""
    restaurant_name: str = ""
    name_of_company: str = ""
    fssai_license_no: str = ""
    company_representatives: List[str] = Field(default_factory=list)
    site_address: str = ""
    state: str = ""
    pin_code: str = ""
    phone_no: str = ""
    email: str = ""
    website: str = ""
    audit_team: List[str] = Field(default_factory=list)

    @field_validator(
        "restaurant_name", "name_of_company", "fssai_license_no", "site_address",
        "state", "pin_code", "phone_no", "email", "website",
        mode="before",
    )
    @classmethod
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("company_representatives", "audit_team", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return [] if v is None else v


ORGANIZATION_FIELD_NAMES = tuple(OrganizationFields.model_fields.keys())


# ============================================
# Stored document
# ============================================

class AuditDocumentData(OrganizationFields):
    """Full template or form as stored and returned by the API"""
    id: str
    user_id: str = ""
    source_template_id: Optional[str] = None
    date_of_audit: Optional[date] = None
    audit_type: str = ""
    audit_criteria: str = ""
    type_of_audit: str = ""
    scope: str = ""
    manpower: Manpower = Field(default_factory=Manpower)
    sections: List[Section] = Field(default_factory=list)
    status: AuditStatus = AuditStatus.NOT_FILLED
    version: int = Field(0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_validator("user_id", "audit_type", "audit_criteria", "type_of_audit", "scope", mode="before")
    @classmethod
    def detail_none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("date_of_audit", mode="before")
    @classmethod
    def parse_date(cls, v):
        return _parse_audit_date(v)

    @field_validator("manpower", mode="before")
    @classmethod
    def default_manpower(cls, v):
        return {"male": 0, "female": 0} if v is None else v

    @field_validator("sections", mode="before")
    @classmethod
    def adapt_legacy_sections(cls, v):
        return normalize_sections(v)

    def image_questions(self):
        """Yield (section, question) pairs that carry an evidence image"""
        for section in self.sections:
            for question in section.questions:
                if question.image:
                    yield section, question

    def to_payload(self) -> Dict[str, Any]:
        """JSON-safe camelCase dict, as stored in snapshots"""
        return self.model_dump(mode="json", by_alias=True)


# ============================================
# Requests
# ============================================

class TemplateCreate(OrganizationFields):
    restaurant_name: str = Field(..., min_length=1, max_length=255)
    sections: List[Section] = Field(default_factory=list)

    @field_validator("sections", mode="before")
    @classmethod
    def adapt_legacy_sections(cls, v):
        return normalize_sections(v)


class TemplateUpdate(CamelModel):
    """Only the name and checklist of a template can be edited"""
    restaurant_name: Optional[str] = Field(None, min_length=1, max_length=255)
    sections: Optional[List[Section]] = None

    @field_validator("sections", mode="before")
    @classmethod
    def adapt_legacy_sections(cls, v):
        return None if v is None else normalize_sections(v)


class AuditFormFill(CamelModel):
    """
    Body of POST /audit-form.

    Organisation fields left out (or null) are copied from the template.
    """
    template_id: Optional[str] = None
    user_id: Optional[str] = None

    restaurant_name: Optional[str] = None
    name_of_company: Optional[str] = None
    fssai_license_no: Optional[str] = None
    company_representatives: Optional[List[str]] = None
    site_address: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    phone_no: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    audit_team: Optional[List[str]] = None

    date_of_audit: Optional[date] = None
    audit_type: str = ""
    audit_criteria: str = ""
    type_of_audit: str = ""
    scope: str = ""
    manpower: Manpower = Field(default_factory=Manpower)
    sections: List[Section] = Field(default_factory=list)

    @field_validator("date_of_audit", mode="before")
    @classmethod
    def parse_date(cls, v):
        return _parse_audit_date(v)

    @field_validator("audit_type", "audit_criteria", "type_of_audit", "scope", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return _blank_to_empty(v)

    @field_validator("sections", mode="before")
    @classmethod
    def adapt_legacy_sections(cls, v):
        return normalize_sections(v)


class AuditFormUpdate(CamelModel):
    """Body of PUT /audit-forms/{id}; omitted fields keep their value"""
    restaurant_name: Optional[str] = None
    name_of_company: Optional[str] = None
    fssai_license_no: Optional[str] = None
    company_representatives: Optional[List[str]] = None
    site_address: Optional[str] = None
    state: Optional[str] = None
    pin_code: Optional[str] = None
    phone_no: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    audit_team: Optional[List[str]] = None

    date_of_audit: Optional[date] = None
    audit_type: Optional[str] = None
    audit_criteria: Optional[str] = None
    type_of_audit: Optional[str] = None
    scope: Optional[str] = None
    manpower: Optional[Manpower] = None
    sections: Optional[List[Section]] = None

    @field_validator("date_of_audit", mode="before")
    @classmethod
    def parse_date(cls, v):
        return _parse_audit_date(v)

    @field_validator("sections", mode="before")
    @classmethod
    def adapt_legacy_sections(cls, v):
        return None if v is None else normalize_sections(v)


# ============================================
# Ledger
# ============================================

class LedgerEntryOut(CamelModel):
    form_id: str
    user_id: str = ""
    version_number: int
    # Older records call this pdfPath
    pdf_url: str = Field(
        ..., validation_alias=AliasChoices("pdfUrl", "pdf_url", "pdfPath"), serialization_alias="pdfUrl"
    )
    created_at: Optional[datetime] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============================================
# Responses
# ============================================

class MessageResponse(CamelModel):
    message: str


class TemplateResponse(CamelModel):
    message: str
    audit_template: AuditDocumentData


class FormSubmissionResponse(CamelModel):
    message: str
    audit_form: AuditDocumentData
    pdf_url: Optional[str] = None
    version_number: int
    warning: Optional[Dict[str, Any]] = None


class ReconcileFailure(CamelModel):
    form_id: str
    version: int
    error: Dict[str, Any]


class ReconcileResponse(CamelModel):
    checked: int
    repaired: List[LedgerEntryOut] = Field(default_factory=list)
    failed: List[ReconcileFailure] = Field(default_factory=list)
