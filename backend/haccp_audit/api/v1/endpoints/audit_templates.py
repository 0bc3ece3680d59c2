"""
AUDIT TEMPLATE ADMIN API
========================
Template CRUD for administrators, plus the reconciliation trigger that
finishes form versions whose PDF never reached the ledger.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from haccp_audit.core.database import get_db
from haccp_audit.core.exceptions import TemplateNotFoundError
from haccp_audit.core.logging_config import logger
from haccp_audit.models.audit_document import AuditDocument
from haccp_audit.schemas.audit import (
    AuditDocumentData,
    MessageResponse,
    ReconcileResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.blob_store import BlobStore, get_blob_store
from haccp_audit.services.reconciliation import ReconciliationService


router = APIRouter(prefix="/admin", tags=["Audit Templates"])


async def _get_template(store: AuditStore, template_id: str) -> AuditDocument:
    """Only NOT FILLED documents can be edited or deleted as templates"""
    template = await store.get_document(template_id)
    if template is None or not template.is_template:
        raise TemplateNotFoundError(template_id)
    return template


@router.post("/audit-template", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_audit_template(
    body: TemplateCreate,
    db: AsyncSession = Depends(get_db),
):
    """Create a blank template (status NOT FILLED, version 0)"""
    template = await AuditStore(db).create_template(body)
    return TemplateResponse(
        message="Audit template created successfully",
        audit_template=AuditDocumentData.model_validate(template),
    )


@router.get("/audit-templates", response_model=List[AuditDocumentData])
async def list_audit_templates(db: AsyncSession = Depends(get_db)):
    """Templates still waiting to be filled"""
    templates = await AuditStore(db).list_templates()
    return [AuditDocumentData.model_validate(t) for t in templates]


@router.get("/audit-template/{template_id}", response_model=AuditDocumentData)
async def get_audit_template(template_id: str, db: AsyncSession = Depends(get_db)):
    document = await AuditStore(db).get_document(template_id)
    if document is None:
        raise TemplateNotFoundError(template_id)
    return AuditDocumentData.model_validate(document)


@router.put("/audit-template/{template_id}", response_model=TemplateResponse)
async def update_audit_template(
    template_id: str,
    body: TemplateUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Edit restaurant name and sections; the version is not bumped"""
    store = AuditStore(db)
    template = await _get_template(store, template_id)
    template = await store.update_template(template, body)
    return TemplateResponse(
        message="Audit template updated successfully",
        audit_template=AuditDocumentData.model_validate(template),
    )


@router.delete("/audit-template/{template_id}", response_model=MessageResponse)
async def delete_audit_template(template_id: str, db: AsyncSession = Depends(get_db)):
    store = AuditStore(db)
    template = await _get_template(store, template_id)
    await store.delete_document(template)
    return MessageResponse(message="Audit template deleted successfully")


@router.post("/audit-forms/reconcile", response_model=ReconcileResponse)
async def reconcile_audit_forms(
    limit: Optional[int] = Query(None, ge=1, le=500),
    min_age_seconds: Optional[int] = Query(None, ge=0, alias="minAgeSeconds"),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Re-render form versions that were saved but never got a ledger entry.

    Per-version failures are reported in ``failed``; the call itself succeeds.
    """
    logger.info(f"[Reconcile] Triggered (limit={limit}, minAgeSeconds={min_age_seconds})")
    service = ReconciliationService(db, blob_store)
    return await service.run(limit=limit, min_age_seconds=min_age_seconds)
