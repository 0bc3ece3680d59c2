"""
Name-keyed mapping between audit document fields and the PDF layout.

Every row of the organisation table, every checkbox group and every
compliance highlight is declared here; the layout code only iterates
these tables.
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple, Union

from reportlab.lib import colors

from haccp_audit.schemas.audit import AuditDocumentData, ComplianceValue


def _text(name: str) -> Callable[[AuditDocumentData], str]:
    def extract(doc: AuditDocumentData) -> str:
        value = getattr(doc, name)
        return "" if value is None else str(value)
    return extract


def _joined(name: str) -> Callable[[AuditDocumentData], str]:
    def extract(doc: AuditDocumentData) -> str:
        return ", ".join(item for item in (getattr(doc, name) or []) if item)
    return extract


def format_audit_date(value: Optional[date]) -> str:
    return value.strftime("%d %B %Y") if value else ""


def _manpower(doc: AuditDocumentData) -> str:
    m = doc.manpower
    return f"Male: {m.male}    Female: {m.female}    Total: {m.total}"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    extract: Callable[[AuditDocumentData], str]


# Organisation / audit details table, top to bottom
INFO_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("restaurant_name", "Restaurant Name", _text("restaurant_name")),
    FieldSpec("name_of_company", "Name of Company", _text("name_of_company")),
    FieldSpec("fssai_license_no", "FSSAI License No.", _text("fssai_license_no")),
    FieldSpec("company_representatives", "Company Representative(s)", _joined("company_representatives")),
    FieldSpec("site_address", "Site Address", _text("site_address")),
    FieldSpec("state", "State", _text("state")),
    FieldSpec("pin_code", "Pin Code", _text("pin_code")),
    FieldSpec("phone_no", "Phone No.", _text("phone_no")),
    FieldSpec("email", "Email", _text("email")),
    FieldSpec("website", "Website", _text("website")),
    FieldSpec("audit_team", "Audit Team", _joined("audit_team")),
    FieldSpec("date_of_audit", "Date of Audit", lambda d: format_audit_date(d.date_of_audit)),
    FieldSpec("audit_criteria", "Audit Criteria", _text("audit_criteria")),
    FieldSpec("scope", "Scope", _text("scope")),
    FieldSpec("manpower", "Manpower", _manpower),
)


def info_rows(doc: AuditDocumentData) -> List[Tuple[str, str]]:
    """(label, value) for every INFO_FIELDS entry, empty values included"""
    return [(field.label, field.extract(doc)) for field in INFO_FIELDS]


@dataclass(frozen=True)
class CheckboxGroup:
    name: str
    label: str
    options: Tuple[str, ...]


CHECKBOX_GROUPS: Tuple[CheckboxGroup, ...] = (
    CheckboxGroup(
        "audit_type",
        "Audit Type",
        ("Annual audit", "Surveillance audit", "Re-certification audit", "Special audit"),
    ),
    CheckboxGroup(
        "type_of_audit",
        "Type of Audit",
        ("Announced", "Unannounced"),
    ),
)


def checkbox_states(options: Tuple[str, ...], value: Optional[str]) -> List[Tuple[str, bool]]:
    """Each option paired with whether it is checked; only an exact match checks a box"""
    selected = (value or "").strip()
    return [(option, option == selected) for option in options]


# ============================================
# Compliance highlighting
# ============================================

HIGHLIGHT_ALPHA = 0.35

COMPLIANCE_PALETTES: Dict[str, Dict[ComplianceValue, Tuple[float, float, float]]] = {
    "classic": {
        ComplianceValue.YES: (0.30, 0.69, 0.31),  # green
        ComplianceValue.NO: (0.90, 0.22, 0.21),  # red
        ComplianceValue.NEEDS_IMPROVEMENT: (1.00, 0.84, 0.00),  # yellow
        ComplianceValue.NOT_APPLICABLE: (0.62, 0.62, 0.62),  # gray
    },
    "alternate": {
        ComplianceValue.YES: (0.30, 0.69, 0.31),  # green
        ComplianceValue.NO: (0.90, 0.22, 0.21),  # red
        ComplianceValue.NEEDS_IMPROVEMENT: (0.00, 0.74, 0.83),  # cyan
        ComplianceValue.NOT_APPLICABLE: (0.61, 0.15, 0.69),  # purple
    },
}

COMPLIANCE_LABELS: Dict[ComplianceValue, str] = {
    ComplianceValue.YES: "Yes",
    ComplianceValue.NO: "No",
    ComplianceValue.NEEDS_IMPROVEMENT: "Needs Improvement",
    ComplianceValue.NOT_APPLICABLE: "Not Applicable",
}


def _as_compliance(value: Union[ComplianceValue, str, None]) -> Optional[ComplianceValue]:
    if value is None or isinstance(value, ComplianceValue):
        return value
    try:
        return ComplianceValue(value)
    except ValueError:
        return None


def compliance_color_for(value: Union[ComplianceValue, str, None], palette: str = "classic") -> Optional[colors.Color]:
    """Semi-transparent highlight for a compliance value, None when unset or unknown"""
    if palette not in COMPLIANCE_PALETTES:
        raise ValueError(f"Unknown compliance palette: {palette}")
    compliance = _as_compliance(value)
    if compliance is None:
        return None
    r, g, b = COMPLIANCE_PALETTES[palette][compliance]
    return colors.Color(r, g, b, alpha=HIGHLIGHT_ALPHA)


def compliance_text(value: Union[ComplianceValue, str, None]) -> str:
    compliance = _as_compliance(value)
    return compliance.value if compliance else "-"


def compliance_label(value: Union[ComplianceValue, str, None]) -> str:
    compliance = _as_compliance(value)
    return COMPLIANCE_LABELS[compliance] if compliance else "Not recorded"
