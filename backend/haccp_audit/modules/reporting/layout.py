"""
Layout helpers for the audit report: paragraph styles, the checklist table
and the row-splitting that keeps long answers from being clipped.
"""

from typing import List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.styles import ParagraphStyle, StyleSheet1, getSampleStyleSheet
from reportlab.platypus import CondPageBreak, Paragraph, Spacer, Table, TableStyle

from haccp_audit.modules.reporting.field_mapping import compliance_color_for, compliance_text
from haccp_audit.schemas.audit import ComplianceValue, Section

HEADER_BACKGROUND = HexColor('#1f4e79')
LABEL_BACKGROUND = HexColor('#eaf1f8')
GRID_COLOR = HexColor('#9e9e9e')

CELL_PADDING = 4
# Requirement / Compliance / Evidence
CHECKLIST_COLUMN_RATIOS = (0.45, 0.15, 0.40)
CHECKLIST_HEADERS = ("Requirement", "Compliance", "Evidence / Comments")


def build_styles() -> StyleSheet1:
    """Paragraph styles for the audit report"""
    styles = getSampleStyleSheet()

    styles.add(ParagraphStyle(
        name='ReportTitle',
        parent=styles['Title'],
        fontSize=24,
        leading=30,
        textColor=HexColor('#1a1a1a'),
        spaceAfter=18,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    ))

    styles.add(ParagraphStyle(
        name='CoverSubtitle',
        parent=styles['Normal'],
        fontSize=18,
        leading=22,
        textColor=HexColor('#1f4e79'),
        spaceAfter=24,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    ))

    styles.add(ParagraphStyle(
        name='CoverMeta',
        parent=styles['Normal'],
        fontSize=12,
        leading=16,
        textColor=HexColor('#4a4a4a'),
        spaceAfter=6,
        alignment=TA_CENTER,
        fontName='Helvetica'
    ))

    styles.add(ParagraphStyle(
        name='PageHeading',
        parent=styles['Normal'],
        fontSize=16,
        leading=20,
        textColor=HexColor('#2c3e50'),
        spaceAfter=12,
        fontName='Helvetica-Bold',
    ))

    styles.add(ParagraphStyle(
        name='SectionTitle',
        parent=styles['Normal'],
        fontSize=13,
        leading=16,
        textColor=HexColor('#1f4e79'),
        spaceBefore=10,
        spaceAfter=6,
        fontName='Helvetica-Bold',
    ))

    styles.add(ParagraphStyle(
        name='CellText',
        parent=styles['Normal'],
        fontSize=9,
        leading=11.5,
        textColor=HexColor('#333333'),
        alignment=TA_LEFT,
        fontName='Helvetica'
    ))

    styles.add(ParagraphStyle(
        name='CellLabel',
        parent=styles['CellText'],
        fontName='Helvetica-Bold'
    ))

    styles.add(ParagraphStyle(
        name='CellCentered',
        parent=styles['CellText'],
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    ))

    styles.add(ParagraphStyle(
        name='HeaderCell',
        parent=styles['CellText'],
        textColor=colors.white,
        fontName='Helvetica-Bold'
    ))

    styles.add(ParagraphStyle(
        name='Note',
        parent=styles['Normal'],
        fontSize=9,
        leading=12,
        textColor=HexColor('#757575'),
        fontName='Helvetica-Oblique',
        spaceAfter=8
    ))

    styles.add(ParagraphStyle(
        name='Disclaimer',
        parent=styles['Normal'],
        fontSize=10,
        leading=14,
        textColor=HexColor('#333333'),
        spaceAfter=10,
        fontName='Helvetica'
    ))

    return styles


def to_markup(text: Optional[str]) -> str:
    """Escape user text for Paragraph and keep its line breaks"""
    return escape(text or "").replace("\n", "<br/>")


def paragraph_height(markup: str, style: ParagraphStyle, width: float) -> float:
    _, height = Paragraph(markup, style).wrap(width, 1e6)
    return height


def _split_long_word(word: str, style: ParagraphStyle, width: float, max_height: float) -> List[str]:
    pieces, current = [], ""
    for char in word:
        if current and paragraph_height(escape(current + char), style, width) > max_height:
            pieces.append(current)
            current = char
        else:
            current += char
    if current:
        pieces.append(current)
    return pieces


def fit_text_chunks(text: Optional[str], style: ParagraphStyle, width: float, max_height: float) -> List[str]:
    """
    Split text into consecutive chunks whose rendered height fits
    ``max_height`` at ``width``. Short text comes back as a single chunk.
    """
    text = text or ""
    if paragraph_height(to_markup(text), style, width) <= max_height:
        return [text]

    words: List[str] = []
    for word in text.split():
        if paragraph_height(escape(word), style, width) > max_height:
            words.extend(_split_long_word(word, style, width, max_height))
        else:
            words.append(word)

    chunks: List[str] = []
    start = 0
    while start < len(words):
        # Largest prefix of the remaining words that still fits
        lo, hi = start + 1, len(words)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if paragraph_height(escape(" ".join(words[start:mid])), style, width) <= max_height:
                lo = mid
            else:
                hi = mid - 1
        chunks.append(" ".join(words[start:lo]))
        start = lo
    return chunks


def checklist_column_widths(frame_width: float) -> Tuple[float, float, float]:
    return tuple(frame_width * ratio for ratio in CHECKLIST_COLUMN_RATIOS)


def checklist_table_style(row_compliance: Sequence[Optional[ComplianceValue]], palette: str) -> TableStyle:
    """
    Grid, header and per-row compliance highlight.

    ``row_compliance[i]`` belongs to table row ``i + 1`` (row 0 is the header);
    the highlight covers the compliance and evidence cells.
    """
    commands = [
        ('BACKGROUND', (0, 0), (-1, 0), HEADER_BACKGROUND),
        ('GRID', (0, 0), (-1, -1), 0.5, GRID_COLOR),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('VALIGN', (1, 1), (1, -1), 'MIDDLE'),
        ('LEFTPADDING', (0, 0), (-1, -1), CELL_PADDING),
        ('RIGHTPADDING', (0, 0), (-1, -1), CELL_PADDING),
        ('TOPPADDING', (0, 0), (-1, -1), CELL_PADDING),
        ('BOTTOMPADDING', (0, 0), (-1, -1), CELL_PADDING),
    ]
    for index, compliance in enumerate(row_compliance, start=1):
        highlight = compliance_color_for(compliance, palette)
        if highlight is not None:
            commands.append(('BACKGROUND', (1, index), (2, index), highlight))
    return TableStyle(commands)


class ChecklistBuilder:
    """Turns one Section into flowables that paginate cleanly"""

    def __init__(self, styles: StyleSheet1, frame_width: float, frame_height: float, palette: str):
        self.styles = styles
        self.palette = palette
        self.col_widths = checklist_column_widths(frame_width)
        self.frame_width = frame_width
        # Room for the repeated header row plus the section title on the same page
        self.max_cell_height = frame_height - 120

    def _cell_text_width(self, column: int) -> float:
        return self.col_widths[column] - 2 * CELL_PADDING

    def _header_row(self) -> List[Paragraph]:
        return [Paragraph(label, self.styles['HeaderCell']) for label in CHECKLIST_HEADERS]

    def question_rows(self, number: str, question) -> List[List[Paragraph]]:
        """One table row per question, more when text must continue"""
        cell_style = self.styles['CellText']
        requirement = f"{number} {question.question}".strip()
        req_chunks = fit_text_chunks(requirement, cell_style, self._cell_text_width(0), self.max_cell_height)
        ev_chunks = fit_text_chunks(
            question.evidence_and_comments, cell_style, self._cell_text_width(2), self.max_cell_height
        )

        rows = []
        for i in range(max(len(req_chunks), len(ev_chunks))):
            req = req_chunks[i] if i < len(req_chunks) else ""
            ev = ev_chunks[i] if i < len(ev_chunks) else ""
            compliance = compliance_text(question.compliance) if i == 0 else "(cont.)"
            rows.append([
                Paragraph(to_markup(req), cell_style),
                Paragraph(escape(compliance), self.styles['CellCentered']),
                Paragraph(to_markup(ev), cell_style),
            ])
        return rows

    def _row_height(self, row: List[Paragraph]) -> float:
        heights = [p.wrap(self._cell_text_width(col), 1e6)[1] for col, p in enumerate(row)]
        return max(heights) + 2 * CELL_PADDING

    def build(self, section: Section, section_number: int) -> List:
        title_text = f"{section_number}. {section.section_title or 'Untitled section'}"
        title = Paragraph(to_markup(title_text), self.styles['SectionTitle'])
        title_style = self.styles['SectionTitle']
        title_height = title.wrap(self.frame_width, 1e6)[1] + title_style.spaceBefore + title_style.spaceAfter

        if not section.questions:
            return [
                CondPageBreak(title_height + 30),
                title,
                Paragraph("No questions in this section.", self.styles['Note']),
            ]

        header = self._header_row()
        rows: List[List[Paragraph]] = [header]
        row_compliance: List[Optional[ComplianceValue]] = []
        for q_index, question in enumerate(section.questions, start=1):
            for row in self.question_rows(f"{section_number}.{q_index}", question):
                rows.append(row)
                row_compliance.append(question.compliance)

        # Title, header and first question row must land on the same page
        needed = title_height + self._row_height(header) + self._row_height(rows[1])
        table = Table(rows, colWidths=self.col_widths, repeatRows=1, hAlign='LEFT')
        table.setStyle(checklist_table_style(row_compliance, self.palette))

        return [CondPageBreak(needed + 2), title, table, Spacer(1, 8)]
