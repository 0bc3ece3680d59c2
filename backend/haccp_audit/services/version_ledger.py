"""
Version Ledger - append-only record of rendered audit form PDFs

One entry per (form, version). Entries are never updated or deleted; a
deleted form keeps its history so old PDFs stay discoverable.
"""

from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from haccp_audit.core.exceptions import DocumentStoreError
from haccp_audit.core.logging_config import logger
from haccp_audit.models.audit_version import AuditVersion


class VersionLedger:
    """Service for the audit_versions ledger"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        form_id: str,
        user_id: str,
        version_number: int,
        pdf_url: str,
    ) -> AuditVersion:
        """
        Record the PDF for one form version.

        Appending the same version twice returns the entry already stored,
        which makes retries and reconciliation safe.
        """
        entry = AuditVersion(
            form_id=form_id,
            user_id=user_id,
            version_number=version_number,
            pdf_url=pdf_url,
        )
        self.db.add(entry)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get(form_id, version_number)
            if existing is None:
                raise DocumentStoreError(
                    f"Ledger insert for {form_id} v{version_number} failed", operation="ledger_append"
                )
            logger.info(f"[Ledger] {form_id} v{version_number} already recorded")
            return existing
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise DocumentStoreError(f"Ledger insert failed: {e}", operation="ledger_append")

        await self.db.refresh(entry)
        logger.debug(f"[Ledger] Recorded {form_id} v{version_number} -> {pdf_url}")
        return entry

    async def get(self, form_id: str, version_number: int) -> Optional[AuditVersion]:
        result = await self.db.execute(
            select(AuditVersion).where(
                AuditVersion.form_id == form_id,
                AuditVersion.version_number == version_number,
            )
        )
        return result.scalar_one_or_none()

    async def latest(self, form_id: str) -> Optional[AuditVersion]:
        """Entry with the highest version number"""
        result = await self.db.execute(
            select(AuditVersion)
            .where(AuditVersion.form_id == form_id)
            .order_by(AuditVersion.version_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, form_id: str) -> List[AuditVersion]:
        """All entries, newest version first"""
        result = await self.db.execute(
            select(AuditVersion)
            .where(AuditVersion.form_id == form_id)
            .order_by(AuditVersion.version_number.desc())
        )
        return list(result.scalars().all())

    async def highest_version(self, form_id: str) -> Optional[int]:
        result = await self.db.execute(
            select(func.max(AuditVersion.version_number)).where(AuditVersion.form_id == form_id)
        )
        return result.scalar()
