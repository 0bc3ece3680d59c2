"""
Audit Report PDF Renderer
Turns one filled audit form into a printable, archival PDF

Page order:
1. Cover page (logo, title, restaurant, date, form reference)
2. Organisation and audit details
3. Checklist, one table per section
4. One page per evidence image
5. Declaration and signatures

Rendering is deterministic: the same document always yields the same bytes.
"""

import asyncio
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional

from reportlab.lib.pagesizes import A4, letter
from reportlab.lib.units import inch
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, PageBreak,
    Table, TableStyle, Image as RLImage
)

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import RenderError
from haccp_audit.core.logging_config import logger
from haccp_audit.models.audit_document import AuditStatus
from haccp_audit.modules.reporting.field_mapping import (
    CHECKBOX_GROUPS,
    COMPLIANCE_LABELS,
    COMPLIANCE_PALETTES,
    checkbox_states,
    compliance_color_for,
    compliance_label,
    format_audit_date,
    info_rows,
)
from haccp_audit.modules.reporting.flowables import CheckBox, ImagePlaceholder
from haccp_audit.modules.reporting.image_loader import (
    EvidenceImage,
    EvidenceImageLoader,
    ImageFailure,
    ImageResult,
)
from haccp_audit.modules.reporting.layout import (
    CELL_PADDING,
    GRID_COLOR,
    LABEL_BACKGROUND,
    ChecklistBuilder,
    build_styles,
    fit_text_chunks,
    paragraph_height,
    to_markup,
)
from haccp_audit.schemas.audit import AuditDocumentData
from haccp_audit.services.blob_store import BlobStore

PAGE_SIZES = {"A4": A4, "LETTER": letter}

# SimpleDocTemplate frames keep 6pt padding on every side
FRAME_PADDING = 6

DISCLAIMER_TEXT = (
    "This report reflects the conditions observed at the site on the date of the audit "
    "and is based on the information, records and samples made available to the audit "
    "team. It does not certify compliance at any other time. Observations marked "
    "\"N\" or \"NI\" require corrective action by the food business operator."
)


@dataclass
class RenderAssets:
    """Everything fetched before layout"""
    logo: Optional[bytes]
    images: Dict[str, ImageResult]


class AuditPDFRenderer:
    """
    Render filled audit forms to PDF bytes.

    ``render`` is async: it fetches the logo and evidence images first, then
    runs the blocking reportlab build in a worker thread.
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        palette: Optional[str] = None,
        page_size: Optional[str] = None,
        logo_path: Optional[str] = None,
        image_loader: Optional[EvidenceImageLoader] = None,
        title: Optional[str] = None,
    ):
        self.palette = palette or settings.PDF_COMPLIANCE_PALETTE
        if self.palette not in COMPLIANCE_PALETTES:
            raise ValueError(f"Unknown compliance palette: {self.palette}")
        size_name = (page_size or settings.PDF_PAGE_SIZE).upper()
        if size_name not in PAGE_SIZES:
            raise ValueError(f"Unknown page size: {size_name}")
        self.pagesize = PAGE_SIZES[size_name]
        self.logo_path = settings.PDF_LOGO_PATH if logo_path is None else logo_path
        self.title = title or settings.PDF_REPORT_TITLE
        self.image_loader = image_loader or EvidenceImageLoader(blob_store=blob_store)
        self.styles = build_styles()

        self.left_margin = self.right_margin = 54
        self.top_margin = 72
        self.bottom_margin = 60
        page_width, page_height = self.pagesize
        self.frame_width = page_width - self.left_margin - self.right_margin - 2 * FRAME_PADDING
        self.frame_height = page_height - self.top_margin - self.bottom_margin - 2 * FRAME_PADDING

    # ==========================================
    # Public API
    # ==========================================

    async def render(self, document: AuditDocumentData) -> bytes:
        """Fetch assets, then build the PDF off the event loop"""
        if document.status != AuditStatus.FILLED:
            raise RenderError("Only filled audit forms can be rendered", form_id=document.id)

        logo = await self._load_logo()
        images = await self.image_loader.load_many(q.image for _, q in document.image_questions())
        return await asyncio.to_thread(self.render_sync, document, RenderAssets(logo, images))

    def render_sync(self, document: AuditDocumentData, assets: Optional[RenderAssets] = None) -> bytes:
        """Blocking build; ``assets`` defaults to no logo and no images"""
        assets = assets or RenderAssets(logo=None, images={})
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self.pagesize,
            rightMargin=self.right_margin,
            leftMargin=self.left_margin,
            topMargin=self.top_margin,
            bottomMargin=self.bottom_margin,
            title=f"Audit Form {document.id} v{document.version}",
            author=settings.APP_NAME,
            invariant=1,
        )

        story = []
        story.extend(self._cover_page(document, assets.logo))
        story.extend(self._info_page(document))
        story.extend(self._checklist_pages(document))
        story.extend(self._evidence_pages(document, assets.images))
        story.extend(self._closing_page(document))

        furniture = self._page_furniture(document)
        try:
            doc.build(story, onFirstPage=furniture, onLaterPages=furniture)
        except Exception as e:
            logger.error(f"Error rendering audit form {document.id}: {e}", exc_info=True)
            raise RenderError(f"PDF layout failed: {type(e).__name__}: {e}", form_id=document.id)

        pdf_bytes = buffer.getvalue()
        logger.info(f"Rendered audit form {document.id} v{document.version} ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    # ==========================================
    # Assets
    # ==========================================

    async def _load_logo(self) -> Optional[bytes]:
        if not self.logo_path:
            return None
        try:
            logo = await asyncio.to_thread(Path(self.logo_path).read_bytes)
        except OSError as e:
            raise RenderError(f"Report logo '{self.logo_path}' is unreadable: {e}")
        if not logo:
            raise RenderError(f"Report logo '{self.logo_path}' is empty")
        return logo

    def _scaled_image(self, image: EvidenceImage, max_width: float, max_height: float) -> RLImage:
        scale = min(max_width / image.width, max_height / image.height, 1.0)
        return RLImage(image.stream(), width=image.width * scale, height=image.height * scale)

    # ==========================================
    # Page furniture
    # ==========================================

    def _page_furniture(self, document: AuditDocumentData):
        page_width, page_height = self.pagesize
        header = document.restaurant_name or "Food Safety Audit"
        footer = f"Audit Form {document.id} v{document.version}"

        def draw(canvas, doc):
            canvas.saveState()
            canvas.setFont('Helvetica', 8)
            canvas.setFillColorRGB(0.35, 0.35, 0.35)
            if doc.page > 1:
                canvas.drawString(self.left_margin, page_height - 40, header[:90])
                canvas.drawRightString(page_width - self.right_margin, page_height - 40, self.title)
                canvas.setStrokeColor(GRID_COLOR)
                canvas.line(self.left_margin, page_height - 46, page_width - self.right_margin, page_height - 46)
            canvas.drawString(self.left_margin, 32, footer)
            canvas.drawRightString(page_width - self.right_margin, 32, f"Page {doc.page}")
            canvas.restoreState()

        return draw

    # ==========================================
    # Pages
    # ==========================================

    def _cover_page(self, document: AuditDocumentData, logo: Optional[bytes]) -> List:
        story = [Spacer(1, 1.2 * inch)]

        if logo:
            try:
                logo_image = RLImage(BytesIO(logo))
                scale = min(2.5 * inch / logo_image.drawWidth, 1.2 * inch / logo_image.drawHeight, 1.0)
                logo_image.drawWidth *= scale
                logo_image.drawHeight *= scale
            except Exception as e:
                raise RenderError(f"Report logo could not be decoded: {e}", form_id=document.id)
            story.append(logo_image)
            story.append(Spacer(1, 0.4 * inch))

        story.append(Paragraph(to_markup(self.title), self.styles['ReportTitle']))
        story.append(Paragraph(to_markup(document.restaurant_name or "-"), self.styles['CoverSubtitle']))
        if document.name_of_company:
            story.append(Paragraph(to_markup(document.name_of_company), self.styles['CoverMeta']))
        story.append(Spacer(1, 0.4 * inch))

        story.append(Paragraph(
            f"<b>Date of Audit:</b> {to_markup(format_audit_date(document.date_of_audit) or '-')}",
            self.styles['CoverMeta']
        ))
        if document.audit_team:
            story.append(Paragraph(
                f"<b>Audit Team:</b> {to_markup(', '.join(document.audit_team))}",
                self.styles['CoverMeta']
            ))
        story.append(Paragraph(f"<b>Form Reference:</b> {to_markup(document.id)}", self.styles['CoverMeta']))
        story.append(Paragraph(f"<b>Version:</b> {document.version}", self.styles['CoverMeta']))

        story.append(PageBreak())
        return story

    def _info_page(self, document: AuditDocumentData) -> List:
        story = [Paragraph("Organisation &amp; Audit Details", self.styles['PageHeading'])]

        label_width = self.frame_width * 0.35
        value_width = self.frame_width - label_width
        rows = []
        for label, value in info_rows(document):
            # Long values continue on extra rows so no single row outgrows the page
            chunks = fit_text_chunks(
                value, self.styles['CellText'], value_width - 2 * CELL_PADDING, self.frame_height - 120
            )
            for i, chunk in enumerate(chunks):
                rows.append([Paragraph(to_markup(label) if i == 0 else "", self.styles['CellLabel']),
                             Paragraph(to_markup(chunk), self.styles['CellText'])])
        info_table = Table(rows, colWidths=[label_width, value_width], hAlign='LEFT')
        info_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (0, -1), LABEL_BACKGROUND),
            ('GRID', (0, 0), (-1, -1), 0.5, GRID_COLOR),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('RIGHTPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('TOPPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('BOTTOMPADDING', (0, 0), (-1, -1), CELL_PADDING),
        ]))
        story.append(info_table)
        story.append(Spacer(1, 0.3 * inch))

        for group in CHECKBOX_GROUPS:
            story.extend(self._checkbox_group(group, getattr(document, group.name)))

        story.append(PageBreak())
        return story

    def _checkbox_group(self, group, value: Optional[str]) -> List:
        cells = []
        widths = []
        for option, checked in checkbox_states(group.options, value):
            cells.extend([CheckBox(checked), Paragraph(to_markup(option), self.styles['CellText'])])
            widths.extend([14, None])

        label_width = self.frame_width * 0.25
        option_width = (self.frame_width - label_width) / max(len(group.options), 1) - 14
        widths = [label_width] + [w if w is not None else option_width for w in widths]

        row = [Paragraph(to_markup(group.label), self.styles['CellLabel'])] + cells
        table = Table([row], colWidths=widths, hAlign='LEFT')
        table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('LEFTPADDING', (0, 0), (-1, -1), 2),
            ('RIGHTPADDING', (0, 0), (-1, -1), 2),
        ]))
        story = [table]

        recorded = (value or "").strip()
        if recorded and recorded not in group.options:
            story.append(Paragraph(f"Recorded value: {to_markup(recorded)}", self.styles['Note']))
        story.append(Spacer(1, 6))
        return story

    def _compliance_legend(self) -> Table:
        cells = []
        commands = [
            ('GRID', (0, 0), (-1, -1), 0.5, GRID_COLOR),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]
        for index, (value, label) in enumerate(COMPLIANCE_LABELS.items()):
            cells.append(Paragraph(f"<b>{to_markup(value.value)}</b> {to_markup(label)}", self.styles['CellText']))
            commands.append(('BACKGROUND', (index, 0), (index, 0), compliance_color_for(value, self.palette)))
        legend = Table([cells], colWidths=[self.frame_width / len(cells)] * len(cells), hAlign='LEFT')
        legend.setStyle(TableStyle(commands))
        return legend

    def _checklist_pages(self, document: AuditDocumentData) -> List:
        story = [
            Paragraph("Audit Checklist", self.styles['PageHeading']),
            self._compliance_legend(),
            Spacer(1, 10),
        ]
        if not document.sections:
            story.append(Paragraph("This audit form has no checklist sections.", self.styles['Note']))
            return story

        builder = ChecklistBuilder(self.styles, self.frame_width, self.frame_height, self.palette)
        for number, section in enumerate(document.sections, start=1):
            story.extend(builder.build(section, number))
        return story

    def _evidence_pages(self, document: AuditDocumentData, images: Dict[str, ImageResult]) -> List:
        story = []
        image_box_width = self.frame_width
        for s_index, section in enumerate(document.sections, start=1):
            for q_index, question in enumerate(section.questions, start=1):
                if not question.image:
                    continue

                story.append(PageBreak())
                story.append(Paragraph(
                    f"Evidence {s_index}.{q_index}: {to_markup(section.section_title or 'Untitled section')}",
                    self.styles['PageHeading']
                ))
                story.append(Paragraph(to_markup(question.question), self.styles['Disclaimer']))

                label_width = self.frame_width * 0.25
                value_width = self.frame_width - label_width
                compliance_value = (
                    f"{question.compliance.value} - {compliance_label(question.compliance)}"
                    if question.compliance else compliance_label(None)
                )
                rows = [[Paragraph("Compliance", self.styles['CellLabel']),
                         Paragraph(to_markup(compliance_value), self.styles['CellText'])]]
                evidence_chunks = fit_text_chunks(
                    question.evidence_and_comments or "-", self.styles['CellText'],
                    value_width - 2 * CELL_PADDING, self.frame_height - 200,
                )
                for i, chunk in enumerate(evidence_chunks):
                    label = "Evidence / Comments" if i == 0 else ""
                    rows.append([Paragraph(label, self.styles['CellLabel']),
                                 Paragraph(to_markup(chunk), self.styles['CellText'])])

                detail = Table(rows, colWidths=[label_width, value_width], hAlign='LEFT')
                commands = [
                    ('GRID', (0, 0), (-1, -1), 0.5, GRID_COLOR),
                    ('VALIGN', (0, 0), (-1, -1), 'TOP'),
                    ('BACKGROUND', (0, 0), (0, -1), LABEL_BACKGROUND),
                    ('TOPPADDING', (0, 0), (-1, -1), CELL_PADDING),
                    ('BOTTOMPADDING', (0, 0), (-1, -1), CELL_PADDING),
                ]
                highlight = compliance_color_for(question.compliance, self.palette)
                if highlight is not None:
                    commands.append(('BACKGROUND', (1, 0), (1, -1), highlight))
                detail.setStyle(TableStyle(commands))
                story.append(detail)
                story.append(Spacer(1, 12))

                detail_height = detail.wrap(self.frame_width, self.frame_height)[1]
                image_box_height = max(self.frame_height - detail_height - 110, 2 * inch)

                result = images.get(question.image)
                if isinstance(result, EvidenceImage):
                    story.append(self._scaled_image(result, image_box_width, image_box_height))
                else:
                    reason = result.reason if isinstance(result, ImageFailure) else "image was not loaded"
                    story.append(ImagePlaceholder(image_box_width, min(image_box_height, 3 * inch), reason))
        return story

    def _closing_page(self, document: AuditDocumentData) -> List:
        story = [
            PageBreak(),
            Paragraph("Declaration", self.styles['PageHeading']),
            Paragraph(DISCLAIMER_TEXT, self.styles['Disclaimer']),
            Spacer(1, 0.3 * inch),
        ]

        signatories = [("Auditor", name) for name in document.audit_team if name] or [("Auditor", "")]
        representatives = [("Company Representative", name) for name in document.company_representatives if name]
        signatories += representatives or [("Company Representative", "")]

        widths = [self.frame_width * r for r in (0.25, 0.30, 0.28, 0.17)]
        name_width = widths[1] - 2 * CELL_PADDING
        cell_style = self.styles['CellText']

        rows = [[Paragraph(h, self.styles['HeaderCell']) for h in ("Role", "Name", "Signature", "Date")]]
        row_heights = [None]
        for role, name in signatories:
            chunks = fit_text_chunks(name, cell_style, name_width, self.frame_height - 120)
            for i, chunk in enumerate(chunks):
                rows.append([
                    Paragraph(to_markup(role) if i == 0 else "", cell_style),
                    Paragraph(to_markup(chunk), cell_style),
                    "",
                    "",
                ])
                # Signing space, grown to fit names that wrap
                text_height = paragraph_height(to_markup(chunk), cell_style, name_width)
                row_heights.append(max(0.45 * inch, text_height + 2 * CELL_PADDING))
        table = Table(rows, colWidths=widths, rowHeights=row_heights, repeatRows=1, hAlign='LEFT')
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), GRID_COLOR),
            ('GRID', (0, 0), (-1, -1), 0.5, GRID_COLOR),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('LEFTPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('RIGHTPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('TOPPADDING', (0, 0), (-1, -1), CELL_PADDING),
            ('BOTTOMPADDING', (0, 0), (-1, -1), CELL_PADDING),
        ]))
        story.append(table)
        return story
