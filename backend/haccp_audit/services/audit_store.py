"""
Audit Store - persistence for templates, forms and form snapshots
(audit_documents and audit_form_snapshots tables)
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from haccp_audit.core.exceptions import DocumentStoreError, VersionConflictError
from haccp_audit.core.logging_config import logger
from haccp_audit.models.audit_document import AuditDocument, AuditStatus
from haccp_audit.models.audit_version import AuditVersion
from haccp_audit.models.form_snapshot import AuditFormSnapshot
from haccp_audit.schemas.audit import ORGANIZATION_FIELD_NAMES, AuditDocumentData, TemplateCreate, TemplateUpdate


def document_columns(data: AuditDocumentData) -> Dict[str, Any]:
    """Column values for an AuditDocument row"""
    columns = {name: getattr(data, name) for name in ORGANIZATION_FIELD_NAMES}
    columns.update(
        user_id=data.user_id,
        source_template_id=data.source_template_id,
        date_of_audit=data.date_of_audit,
        audit_type=data.audit_type,
        audit_criteria=data.audit_criteria,
        type_of_audit=data.type_of_audit,
        scope=data.scope,
        manpower=data.manpower.model_dump(),
        sections=[section.model_dump(mode="json", by_alias=True) for section in data.sections],
        status=data.status,
        version=data.version,
    )
    return columns


class AuditStore:
    """
    Document store for audit templates and forms.

    Writes commit immediately; each form write also stores the snapshot of
    the version it produces in the same transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==========================================
    # Reads
    # ==========================================

    async def get_document(self, document_id: str) -> Optional[AuditDocument]:
        """Template or form by id"""
        result = await self.db.execute(
            select(AuditDocument).where(AuditDocument.id == document_id)
        )
        return result.scalar_one_or_none()

    async def list_templates(self) -> List[AuditDocument]:
        """Templates still waiting to be filled"""
        result = await self.db.execute(
            select(AuditDocument)
            .where(AuditDocument.status == AuditStatus.NOT_FILLED)
            .order_by(AuditDocument.created_at)
        )
        return list(result.scalars().all())

    async def list_user_forms(
        self,
        user_id: str,
        status: Optional[AuditStatus] = None,
        sort: Optional[str] = None,
    ) -> List[AuditDocument]:
        """
        A user's forms, optionally filtered by status.

        ``sort`` orders by version ("desc" newest first, "asc" oldest first);
        without it forms come back in creation order.
        """
        query = select(AuditDocument).where(AuditDocument.user_id == user_id)
        if status is not None:
            query = query.where(AuditDocument.status == status)
        if sort == "desc":
            query = query.order_by(AuditDocument.version.desc(), AuditDocument.updated_at.desc())
        elif sort == "asc":
            query = query.order_by(AuditDocument.version.asc(), AuditDocument.updated_at.asc())
        else:
            query = query.order_by(AuditDocument.created_at)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_snapshot(self, form_id: str, version: int) -> Optional[AuditFormSnapshot]:
        result = await self.db.execute(
            select(AuditFormSnapshot).where(
                AuditFormSnapshot.form_id == form_id,
                AuditFormSnapshot.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def highest_snapshot_version(self, form_id: str) -> Optional[int]:
        result = await self.db.execute(
            select(func.max(AuditFormSnapshot.version)).where(AuditFormSnapshot.form_id == form_id)
        )
        return result.scalar()

    async def find_unrendered_snapshots(self, limit: int = 50, min_age_seconds: int = 0) -> List[AuditFormSnapshot]:
        """
        Snapshots with no ledger entry for their version.

        ``min_age_seconds`` skips versions whose pipeline may still be running.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=min_age_seconds)
        result = await self.db.execute(
            select(AuditFormSnapshot)
            .outerjoin(
                AuditVersion,
                and_(
                    AuditVersion.form_id == AuditFormSnapshot.form_id,
                    AuditVersion.version_number == AuditFormSnapshot.version,
                ),
            )
            .where(AuditVersion.id.is_(None), AuditFormSnapshot.created_at <= cutoff)
            .order_by(AuditFormSnapshot.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    # ==========================================
    # Templates
    # ==========================================

    async def create_template(self, data: TemplateCreate) -> AuditDocument:
        values = {name: getattr(data, name) for name in ORGANIZATION_FIELD_NAMES}
        template = AuditDocument(
            **values,
            sections=[section.model_dump(mode="json", by_alias=True) for section in data.sections],
            manpower={"male": 0, "female": 0},
            status=AuditStatus.NOT_FILLED,
            version=0,
            user_id="",
        )
        self.db.add(template)
        await self._commit("create_template")
        await self.db.refresh(template)

        logger.info(f"Created audit template {template.id} ({template.restaurant_name})")
        return template

    async def update_template(self, template: AuditDocument, data: TemplateUpdate) -> AuditDocument:
        """In-place edit of name and sections; the version stays at 0"""
        if data.restaurant_name is not None:
            template.restaurant_name = data.restaurant_name
        if data.sections is not None:
            template.sections = [section.model_dump(mode="json", by_alias=True) for section in data.sections]
        template.updated_at = datetime.utcnow()

        await self._commit("update_template")
        await self.db.refresh(template)
        return template

    async def delete_document(self, document: AuditDocument) -> None:
        """Delete a template or form; a form's snapshots go with it, ledger entries stay"""
        document_id = document.id
        await self.db.execute(delete(AuditFormSnapshot).where(AuditFormSnapshot.form_id == document_id))
        await self.db.delete(document)
        await self._commit("delete_document")
        logger.info(f"Deleted audit document {document_id}")

    # ==========================================
    # Forms
    # ==========================================

    async def insert_form(self, data: AuditDocumentData) -> AuditDocument:
        """Insert a new form and the snapshot of its first version"""
        now = datetime.utcnow()
        form = AuditDocument(
            id=data.id,
            created_at=data.created_at or now,
            updated_at=data.updated_at or now,
            **document_columns(data),
        )
        self.db.add(form)
        self.db.add(self._snapshot(data))
        await self._commit("insert_form", form_id=data.id)
        await self.db.refresh(form)

        logger.info(f"Saved audit form {form.id} v{form.version} for user {form.user_id}")
        return form

    async def update_form(self, data: AuditDocumentData, expected_version: int) -> AuditDocument:
        """
        Overwrite a form only if it is still at ``expected_version``.

        Raises VersionConflictError when another request got there first.
        """
        values = document_columns(data)
        values["updated_at"] = data.updated_at or datetime.utcnow()

        try:
            result = await self.db.execute(
                update(AuditDocument)
                .where(AuditDocument.id == data.id, AuditDocument.version == expected_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DocumentStoreError(f"Failed to update audit form {data.id}: {e}", operation="update_form")

        if result.rowcount != 1:
            await self.db.rollback()
            logger.warning(f"Version conflict on audit form {data.id} (expected v{expected_version})")
            raise VersionConflictError(data.id, expected_version)

        self.db.add(self._snapshot(data))
        await self._commit("update_form", form_id=data.id, expected_version=expected_version)

        result = await self.db.execute(
            select(AuditDocument)
            .where(AuditDocument.id == data.id)
            .execution_options(populate_existing=True)
        )
        form = result.scalar_one()
        logger.info(f"Updated audit form {form.id} to v{form.version}")
        return form

    # ==========================================
    # Internals
    # ==========================================

    @staticmethod
    def _snapshot(data: AuditDocumentData) -> AuditFormSnapshot:
        return AuditFormSnapshot(
            form_id=data.id,
            version=data.version,
            user_id=data.user_id,
            payload=data.to_payload(),
            created_at=datetime.utcnow(),
        )

    async def _commit(self, operation: str, form_id: Optional[str] = None,
                      expected_version: Optional[int] = None) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if form_id is not None and expected_version is not None:
                # Snapshot for this version already exists
                raise VersionConflictError(form_id, expected_version)
            raise DocumentStoreError(f"Integrity error during {operation}: {e.orig}", operation=operation)
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DocumentStoreError(f"Database error during {operation}: {e}", operation=operation)
