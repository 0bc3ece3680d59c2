"""
Audit Pipeline - fill and update audit forms end to end

Every request walks the same steps in order:

    resolve_source -> resolve_media -> assign_version -> persist_document
        -> render_pdf -> upload_pdf -> append_ledger

Nothing is written before persist_document. Once the form and its snapshot
are committed they stay committed: a failure in a later step raises
PartialCompletionError carrying the saved document, and the snapshot without
a ledger entry is left for ReconciliationService to finish.
"""

import asyncio
import enum
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import (
    AuditFormNotFoundError,
    AuditServiceError,
    MissingTemplateIdError,
    PartialCompletionError,
    RenderError,
    RenderTimeoutError,
    StorageError,
    StorageTimeoutError,
    TemplateNotFoundError,
    ValidationError,
)
from haccp_audit.core.logging_config import logger, set_form_id
from haccp_audit.core.types import generate_uuid
from haccp_audit.models.audit_document import AuditStatus
from haccp_audit.models.audit_version import AuditVersion
from haccp_audit.models.form_snapshot import AuditFormSnapshot
from haccp_audit.modules.reporting import AuditPDFRenderer
from haccp_audit.schemas.audit import (
    ORGANIZATION_FIELD_NAMES,
    AuditDocumentData,
    AuditFormFill,
    AuditFormUpdate,
)
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.blob_store import BlobStore, artifact_name
from haccp_audit.services.media_resolver import MediaResolver
from haccp_audit.services.version_assigner import assign_next_version, next_version
from haccp_audit.services.version_ledger import VersionLedger


class PipelineStep(str, enum.Enum):
    RESOLVE_SOURCE = "resolve_source"
    RESOLVE_MEDIA = "resolve_media"
    ASSIGN_VERSION = "assign_version"
    PERSIST_DOCUMENT = "persist_document"
    RENDER_PDF = "render_pdf"
    UPLOAD_PDF = "upload_pdf"
    APPEND_LEDGER = "append_ledger"


@dataclass
class PipelineResult:
    document: AuditDocumentData
    ledger_entry: AuditVersion


class AuditPipeline:
    """Orchestrates store, media, renderer, blob store and ledger for one request"""

    def __init__(
        self,
        db,
        blob_store: BlobStore,
        renderer: Optional[AuditPDFRenderer] = None,
        render_timeout: Optional[float] = None,
        upload_timeout: Optional[float] = None,
    ):
        self.store = AuditStore(db)
        self.ledger = VersionLedger(db)
        self.blob_store = blob_store
        self.media = MediaResolver(blob_store)
        self.renderer = renderer or AuditPDFRenderer(blob_store=blob_store)
        self.render_timeout = render_timeout or settings.RENDER_TIMEOUT_SECONDS
        self.upload_timeout = upload_timeout or settings.UPLOAD_TIMEOUT_SECONDS

    # ==========================================
    # Operations
    # ==========================================

    async def fill_template(
        self,
        template_id: Optional[str],
        payload: AuditFormFill,
        principal_user_id: Optional[str] = None,
    ) -> PipelineResult:
        """Create a new FILLED form from a template"""
        template_id = template_id or payload.template_id or settings.DEFAULT_TEMPLATE_ID
        if not template_id:
            raise MissingTemplateIdError()
        user_id = payload.user_id or principal_user_id
        if not user_id:
            raise ValidationError("userId is required to fill an audit template", field="userId")

        source = await self.store.get_document(template_id)
        if source is None:
            raise TemplateNotFoundError(template_id)
        logger.log_pipeline_step(PipelineStep.RESOLVE_SOURCE.value, template_id, source.version)

        sections = await self.media.resolve_sections(payload.sections)
        logger.log_pipeline_step(PipelineStep.RESOLVE_MEDIA.value, template_id)

        version = next_version(source.version)
        form_id = generate_uuid()
        set_form_id(form_id)
        logger.log_pipeline_step(PipelineStep.ASSIGN_VERSION.value, form_id, version)

        # Organisation fields left out of the request come from the template
        organization = {}
        for name in ORGANIZATION_FIELD_NAMES:
            value = getattr(payload, name)
            organization[name] = getattr(source, name) if value is None else value

        now = datetime.utcnow()
        data = AuditDocumentData(
            id=form_id,
            user_id=user_id,
            source_template_id=source.id,
            date_of_audit=payload.date_of_audit,
            audit_type=payload.audit_type,
            audit_criteria=payload.audit_criteria,
            type_of_audit=payload.type_of_audit,
            scope=payload.scope,
            manpower=payload.manpower,
            sections=sections,
            status=AuditStatus.FILLED,
            version=version,
            created_at=now,
            updated_at=now,
            **organization,
        )

        form = await self.store.insert_form(data)
        document = AuditDocumentData.model_validate(form)
        logger.log_pipeline_step(PipelineStep.PERSIST_DOCUMENT.value, form_id, version)

        ledger_entry = await self._publish(document)
        return PipelineResult(document, ledger_entry)

    async def update_form(self, form_id: str, payload: AuditFormUpdate) -> PipelineResult:
        """
        Apply an edit to a FILLED form in place and publish the new version.

        Only fields present (and non-null) in the request change.
        """
        set_form_id(form_id)
        current = await self.store.get_document(form_id)
        if current is None or current.status != AuditStatus.FILLED:
            raise AuditFormNotFoundError(form_id)
        existing = AuditDocumentData.model_validate(current)
        logger.log_pipeline_step(PipelineStep.RESOLVE_SOURCE.value, form_id, existing.version)

        changes = {}
        for name in payload.model_fields_set:
            value = getattr(payload, name)
            if value is not None:
                changes[name] = value
        if "sections" in changes:
            changes["sections"] = await self.media.resolve_sections(changes["sections"])

        recorded = (
            await self.store.highest_snapshot_version(form_id),
            await self.ledger.highest_version(form_id),
        )
        version = assign_next_version(existing.version, recorded)
        logger.log_pipeline_step(PipelineStep.ASSIGN_VERSION.value, form_id, version)

        data = existing.model_copy(update={
            **changes,
            "version": version,
            "updated_at": datetime.utcnow(),
        })
        form = await self.store.update_form(data, expected_version=existing.version)
        document = AuditDocumentData.model_validate(form)
        logger.log_pipeline_step(PipelineStep.PERSIST_DOCUMENT.value, form_id, version)

        ledger_entry = await self._publish(document)
        return PipelineResult(document, ledger_entry)

    async def rerender_snapshot(self, snapshot: AuditFormSnapshot) -> PipelineResult:
        """Finish render, upload and ledger for a version persisted earlier"""
        try:
            document = AuditDocumentData.model_validate(snapshot.payload)
        except PydanticValidationError as e:
            raise RenderError(
                f"Snapshot v{snapshot.version} payload is invalid: {e.error_count()} error(s)",
                form_id=snapshot.form_id,
            )
        ledger_entry = await self._publish(document)
        return PipelineResult(document, ledger_entry)

    # ==========================================
    # Publish steps (after persist_document)
    # ==========================================

    async def _publish(self, document: AuditDocumentData) -> AuditVersion:
        pdf_bytes = await self._render(document)
        pdf_url = await self._upload(document, pdf_bytes)

        try:
            entry = await self.ledger.append(
                form_id=document.id,
                user_id=document.user_id,
                version_number=document.version,
                pdf_url=pdf_url,
            )
        except StorageError as e:
            raise self._partial(PipelineStep.APPEND_LEDGER, document, e)

        logger.log_pipeline_step(PipelineStep.APPEND_LEDGER.value, document.id, document.version, pdf_url=pdf_url)
        return entry

    async def _render(self, document: AuditDocumentData) -> bytes:
        start = time.time()
        try:
            pdf_bytes = await asyncio.wait_for(self.renderer.render(document), timeout=self.render_timeout)
        except asyncio.TimeoutError:
            raise self._partial(PipelineStep.RENDER_PDF, document, RenderTimeoutError(self.render_timeout, document.id))
        except RenderError as e:
            raise self._partial(PipelineStep.RENDER_PDF, document, e)

        duration_ms = (time.time() - start) * 1000
        logger.log_pipeline_step(PipelineStep.RENDER_PDF.value, document.id, document.version,
                                 pdf_bytes=len(pdf_bytes))
        logger.log_performance("render_pdf", duration_ms, threshold_ms=self.render_timeout * 500)
        return pdf_bytes

    async def _upload(self, document: AuditDocumentData, pdf_bytes: bytes) -> str:
        key = artifact_name(document.id, document.version)
        try:
            pdf_url = await asyncio.wait_for(
                self.blob_store.put(key, pdf_bytes, "application/pdf"),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError:
            raise self._partial(PipelineStep.UPLOAD_PDF, document, StorageTimeoutError(self.upload_timeout, key))
        except StorageError as e:
            raise self._partial(PipelineStep.UPLOAD_PDF, document, e)

        logger.log_pipeline_step(PipelineStep.UPLOAD_PDF.value, document.id, document.version)
        return pdf_url

    def _partial(self, step: PipelineStep, document: AuditDocumentData,
                 cause: AuditServiceError) -> PartialCompletionError:
        logger.log_pipeline_step(step.value, document.id, document.version, success=False,
                                 error_code=cause.code)
        return PartialCompletionError(step.value, cause, document=document, version=document.version)
