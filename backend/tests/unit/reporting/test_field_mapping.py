"""
Unit Tests for Report Field Mapping
Tests for: organisation rows, checkbox states, compliance colours
"""
import pytest
from datetime import date

from haccp_audit.modules.reporting.field_mapping import (
    CHECKBOX_GROUPS,
    COMPLIANCE_PALETTES,
    HIGHLIGHT_ALPHA,
    INFO_FIELDS,
    checkbox_states,
    compliance_color_for,
    compliance_label,
    compliance_text,
    format_audit_date,
    info_rows,
)
from haccp_audit.schemas.audit import AuditDocumentData, ComplianceValue


class TestInfoRows:
    """Test the organisation table mapping"""

    def test_every_field_renders_even_when_empty(self):
        """Test empty documents still produce one row per field"""
        rows = info_rows(AuditDocumentData(id="f-1"))

        assert len(rows) == len(INFO_FIELDS)
        assert rows[0] == ("Restaurant Name", "")

    def test_values_extracted_by_name(self):
        doc = AuditDocumentData(
            id="f-1",
            restaurant_name="Cafe X",
            audit_team=["Asha", "", "Ravi"],
            date_of_audit=date(2024, 5, 1),
            manpower={"male": 4, "female": 3},
        )
        rows = dict(info_rows(doc))

        assert rows["Restaurant Name"] == "Cafe X"
        assert rows["Audit Team"] == "Asha, Ravi"
        assert rows["Date of Audit"] == "01 May 2024"
        assert rows["Manpower"].endswith("Total: 7")

    def test_field_names_exist_on_document(self):
        """Test the mapping only names real document fields"""
        for field in INFO_FIELDS:
            assert field.name in AuditDocumentData.model_fields

    def test_format_missing_date(self):
        assert format_audit_date(None) == ""


class TestCheckboxStates:
    """Test checkbox selection"""

    def test_exact_match_checks_one_box(self):
        audit_type = CHECKBOX_GROUPS[0]
        states = checkbox_states(audit_type.options, "Surveillance audit")

        assert [checked for _, checked in states] == [False, True, False, False]

    def test_surrounding_whitespace_ignored(self):
        states = checkbox_states(("Announced", "Unannounced"), "  Unannounced ")
        assert states == [("Announced", False), ("Unannounced", True)]

    def test_unknown_value_checks_nothing(self):
        states = checkbox_states(("Announced", "Unannounced"), "announced")
        assert not any(checked for _, checked in states)

    def test_missing_value_checks_nothing(self):
        states = checkbox_states(("Announced", "Unannounced"), None)
        assert not any(checked for _, checked in states)

    def test_groups_map_document_fields(self):
        for group in CHECKBOX_GROUPS:
            assert group.name in AuditDocumentData.model_fields


class TestComplianceColors:
    """Test compliance highlight colours"""

    @pytest.mark.parametrize("palette", sorted(COMPLIANCE_PALETTES))
    @pytest.mark.parametrize("value", list(ComplianceValue))
    def test_each_value_maps_to_configured_color(self, palette, value):
        """Test every compliance value gets its palette colour"""
        color = compliance_color_for(value, palette)
        r, g, b = COMPLIANCE_PALETTES[palette][value]

        assert (color.red, color.green, color.blue) == (r, g, b)
        assert color.alpha == HIGHLIGHT_ALPHA

    def test_palettes_differ_for_ni_and_na(self):
        for value in (ComplianceValue.NEEDS_IMPROVEMENT, ComplianceValue.NOT_APPLICABLE):
            classic = compliance_color_for(value, "classic")
            alternate = compliance_color_for(value, "alternate")
            assert (classic.red, classic.green, classic.blue) != (alternate.red, alternate.green, alternate.blue)

    def test_string_values_accepted(self):
        assert compliance_color_for("N", "classic") is not None

    def test_missing_or_unknown_value_has_no_highlight(self):
        assert compliance_color_for(None, "classic") is None
        assert compliance_color_for("MAYBE", "classic") is None

    def test_unknown_palette_rejected(self):
        with pytest.raises(ValueError):
            compliance_color_for(ComplianceValue.YES, "neon")

    def test_text_and_labels(self):
        assert compliance_text(ComplianceValue.NOT_APPLICABLE) == "N/A"
        assert compliance_text(None) == "-"
        assert compliance_label("NI") == "Needs Improvement"
        assert compliance_label(None) == "Not recorded"
