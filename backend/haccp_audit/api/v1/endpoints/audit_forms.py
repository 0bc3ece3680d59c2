"""
AUDIT FORM API
==============
Auditor-facing endpoints: fill a template, edit a filled form, read
historical versions and the PDF ledger.

Submissions return 201/200 when the PDF was published and 207 when the
form was saved but rendering, upload or the ledger append failed.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from haccp_audit.core.database import get_db
from haccp_audit.core.exceptions import (
    AuditFormNotFoundError,
    FormVersionNotFoundError,
    LedgerEntryNotFoundError,
    PartialCompletionError,
    TemplateNotFoundError,
    ValidationError,
)
from haccp_audit.core.logging_config import logger
from haccp_audit.core.security import get_optional_principal, principal_user_id
from haccp_audit.models.audit_document import AuditStatus
from haccp_audit.schemas.audit import (
    AuditDocumentData,
    AuditFormFill,
    AuditFormUpdate,
    FormSubmissionResponse,
    LedgerEntryOut,
    MessageResponse,
)
from haccp_audit.services.audit_pipeline import AuditPipeline, PipelineResult
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.blob_store import BlobStore, get_blob_store
from haccp_audit.services.version_ledger import VersionLedger


router = APIRouter(prefix="/user", tags=["Audit Forms"], dependencies=[Depends(get_optional_principal)])


# ========== Helpers ==========

def _submission(result: PipelineResult, message: str) -> FormSubmissionResponse:
    return FormSubmissionResponse(
        message=message,
        audit_form=result.document,
        pdf_url=result.ledger_entry.pdf_url,
        version_number=result.document.version,
    )


def _partial_submission(error: PartialCompletionError, message: str) -> JSONResponse:
    """207 body: the saved form plus a warning describing the failed step"""
    document: AuditDocumentData = error.document
    body = FormSubmissionResponse(
        message=f"{message}, but the PDF could not be published",
        audit_form=document,
        pdf_url=None,
        version_number=document.version,
        warning=error.to_dict(),
    )
    return JSONResponse(
        status_code=status.HTTP_207_MULTI_STATUS,
        content=body.model_dump(mode="json", by_alias=True),
    )


async def _fill(
    template_id: Optional[str],
    body: AuditFormFill,
    principal: Optional[Dict[str, Any]],
    db: AsyncSession,
    blob_store: BlobStore,
):
    pipeline = AuditPipeline(db, blob_store)
    try:
        result = await pipeline.fill_template(template_id, body, principal_user_id(principal))
    except PartialCompletionError as e:
        return _partial_submission(e, "Audit form created")
    return _submission(result, "Audit form created successfully")


# ========== Templates ==========

@router.get("/audit-template/{template_id}", response_model=AuditDocumentData)
async def get_audit_template(template_id: str, db: AsyncSession = Depends(get_db)):
    document = await AuditStore(db).get_document(template_id)
    if document is None:
        raise TemplateNotFoundError(template_id)
    return AuditDocumentData.model_validate(document)


# ========== Submissions ==========

@router.post(
    "/audit-form",
    response_model=FormSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={207: {"model": FormSubmissionResponse}},
)
async def fill_default_audit_template(
    body: AuditFormFill,
    principal: Optional[Dict[str, Any]] = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Fill the template named in the body, or the configured default template"""
    return await _fill(None, body, principal, db, blob_store)


@router.post(
    "/audit-form/{template_id}",
    response_model=FormSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={207: {"model": FormSubmissionResponse}},
)
async def fill_audit_template(
    template_id: str,
    body: AuditFormFill,
    principal: Optional[Dict[str, Any]] = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Fill a template: the new form gets version template.version + 1, a
    rendered PDF and a ledger entry.
    """
    return await _fill(template_id, body, principal, db, blob_store)


@router.put(
    "/audit-forms/{form_id}",
    response_model=FormSubmissionResponse,
    responses={207: {"model": FormSubmissionResponse}},
)
async def update_audit_form(
    form_id: str,
    body: AuditFormUpdate,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Edit a filled form in place; the version goes up by one"""
    pipeline = AuditPipeline(db, blob_store)
    try:
        result = await pipeline.update_form(form_id, body)
    except PartialCompletionError as e:
        return _partial_submission(e, "Audit form updated")
    return _submission(result, "Audit form updated successfully")


# ========== Forms ==========

@router.get("/audit-form/{form_id}/version/{version}", response_model=AuditDocumentData)
async def get_audit_form_version(form_id: str, version: int, db: AsyncSession = Depends(get_db)):
    """A form exactly as it was at ``version``"""
    store = AuditStore(db)
    snapshot = await store.get_snapshot(form_id, version)
    if snapshot is not None:
        return AuditDocumentData.model_validate(snapshot.payload)

    # Forms saved before snapshots existed only have their live row
    document = await store.get_document(form_id)
    if document is not None and document.status == AuditStatus.FILLED and document.version == version:
        return AuditDocumentData.model_validate(document)
    raise FormVersionNotFoundError(form_id, version)


@router.get("/user-audit-forms/{user_id}", response_model=List[AuditDocumentData])
async def list_user_audit_forms(
    user_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    sort: Optional[str] = Query(None, pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db),
):
    """A user's forms; ``status=FILLED`` and ``sort=desc`` as the dashboard uses them"""
    audit_status = None
    if status_filter:
        try:
            audit_status = AuditStatus(status_filter.upper())
        except ValueError:
            raise ValidationError(
                f"Unknown status '{status_filter}', expected one of "
                f"{', '.join(s.value for s in AuditStatus)}",
                field="status",
            )

    forms = await AuditStore(db).list_user_forms(user_id, status=audit_status, sort=sort)
    logger.debug(f"Found {len(forms)} audit form(s) for user {user_id}")
    return [AuditDocumentData.model_validate(form) for form in forms]


@router.delete("/audit-form/{form_id}", response_model=MessageResponse)
async def delete_audit_form(form_id: str, db: AsyncSession = Depends(get_db)):
    """Delete a filled form and its snapshots; ledger entries are kept"""
    store = AuditStore(db)
    form = await store.get_document(form_id)
    if form is None or form.status != AuditStatus.FILLED:
        raise AuditFormNotFoundError(form_id)
    await store.delete_document(form)
    return MessageResponse(message="Audit form deleted successfully")


# ========== Ledger ==========

@router.get("/audit-form/{form_id}", response_model=LedgerEntryOut)
async def get_latest_audit_pdf(form_id: str, db: AsyncSession = Depends(get_db)):
    """Latest rendered PDF of a form"""
    entry = await VersionLedger(db).latest(form_id)
    if entry is None:
        raise LedgerEntryNotFoundError(form_id)
    return LedgerEntryOut.model_validate(entry)


@router.get("/audit-form/{form_id}/versions", response_model=List[LedgerEntryOut])
async def list_audit_pdf_versions(form_id: str, db: AsyncSession = Depends(get_db)):
    """Every rendered PDF of a form, newest version first"""
    entries = await VersionLedger(db).history(form_id)
    return [LedgerEntryOut.model_validate(entry) for entry in entries]
