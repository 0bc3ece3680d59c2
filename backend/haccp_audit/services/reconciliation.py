"""
Reconciliation - finish audit form versions whose PDF never made it to the ledger

A version is unfinished when its snapshot exists but no ledger entry does;
that happens when render, upload or ledger append failed after the form was
saved. Each one is re-rendered from its snapshot.
"""

from typing import Optional

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import AuditServiceError, PartialCompletionError
from haccp_audit.core.logging_config import logger
from haccp_audit.schemas.audit import LedgerEntryOut, ReconcileFailure, ReconcileResponse
from haccp_audit.services.audit_pipeline import AuditPipeline
from haccp_audit.services.audit_store import AuditStore
from haccp_audit.services.blob_store import BlobStore


class ReconciliationService:

    def __init__(self, db, blob_store: BlobStore, pipeline: Optional[AuditPipeline] = None):
        self.store = AuditStore(db)
        self.pipeline = pipeline or AuditPipeline(db, blob_store)

    async def run(self, limit: Optional[int] = None, min_age_seconds: Optional[int] = None) -> ReconcileResponse:
        """Repair up to ``limit`` unfinished versions; failures are reported, not raised"""
        limit = limit or settings.RECONCILE_BATCH_SIZE
        if min_age_seconds is None:
            min_age_seconds = settings.RECONCILE_MIN_AGE_SECONDS

        snapshots = await self.store.find_unrendered_snapshots(limit=limit, min_age_seconds=min_age_seconds)
        response = ReconcileResponse(checked=len(snapshots))

        for snapshot in snapshots:
            try:
                result = await self.pipeline.rerender_snapshot(snapshot)
            except PartialCompletionError as e:
                response.failed.append(
                    ReconcileFailure(form_id=snapshot.form_id, version=snapshot.version, error=e.cause.to_dict())
                )
                continue
            except AuditServiceError as e:
                response.failed.append(
                    ReconcileFailure(form_id=snapshot.form_id, version=snapshot.version, error=e.to_dict())
                )
                continue
            response.repaired.append(LedgerEntryOut.model_validate(result.ledger_entry))

        logger.info(
            f"[Reconcile] checked={response.checked} repaired={len(response.repaired)} "
            f"failed={len(response.failed)}"
        )
        return response
