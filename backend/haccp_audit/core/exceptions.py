"""
Custom Exceptions for the HACCP Audit Service
=============================================

Every failure the audit pipeline can surface maps to one class here, and each
class carries a stable ``code`` used in the JSON error envelope.

Usage:
    from haccp_audit.core.exceptions import TemplateNotFoundError, RenderError

    if not template:
        raise TemplateNotFoundError(template_id)

    try:
        pdf_bytes = await renderer.render(document)
    except RenderError as e:
        logger.error(f"Render failed: {e}")
        raise
"""

from typing import Optional, Any, Dict


class AuditServiceError(Exception):
    """Base exception for all audit service errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(AuditServiceError):
    """Bearer credential missing or rejected"""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_FAILED")


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""

    def __init__(self):
        super().__init__("Token has expired")
        self.code = "TOKEN_EXPIRED"


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(AuditServiceError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with ID '{resource_id}' not found",
            code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class TemplateNotFoundError(ResourceNotFoundError):
    """Audit template not found (or the id refers to a filled form)"""

    def __init__(self, template_id: str):
        super().__init__("Template", template_id)


class AuditFormNotFoundError(ResourceNotFoundError):
    """Filled audit form not found"""

    def __init__(self, form_id: str):
        super().__init__("Audit form", form_id)


class FormVersionNotFoundError(ResourceNotFoundError):
    """A specific version of a form does not exist"""

    def __init__(self, form_id: str, version: int):
        super().__init__("Form version", f"{form_id}@v{version}")
        self.details.update({"form_id": form_id, "version": version})


class LedgerEntryNotFoundError(ResourceNotFoundError):
    """No rendered artifact has been recorded for a form"""

    def __init__(self, form_id: str):
        super().__init__("Ledger entry", form_id)


# ============================================
# Validation Errors (422-type)
# ============================================

class ValidationError(AuditServiceError):
    """Input validation failed"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class MissingTemplateIdError(ValidationError):
    """Fill request named no template and no default is configured"""

    def __init__(self):
        super().__init__(
            "No template id given and DEFAULT_TEMPLATE_ID is not configured",
            field="templateId"
        )
        self.code = "TEMPLATE_ID_REQUIRED"


class MediaResolutionError(ValidationError):
    """An inline evidence image could not be decoded"""

    def __init__(self, message: str, location: Optional[str] = None):
        super().__init__(f"Could not resolve embedded media: {message}")
        self.code = "MEDIA_RESOLUTION_FAILED"
        if location:
            self.details["location"] = location


# ============================================
# Concurrency Errors (409-type)
# ============================================

class VersionConflictError(AuditServiceError):
    """Another request bumped the form version first"""

    def __init__(self, form_id: str, expected_version: int):
        super().__init__(
            f"Audit form '{form_id}' was modified concurrently "
            f"(expected version {expected_version})",
            code="VERSION_CONFLICT",
            details={"form_id": form_id, "expected_version": expected_version}
        )


# ============================================
# Render Errors
# ============================================

class RenderError(AuditServiceError):
    """PDF layout, asset or encoding failure"""

    def __init__(self, message: str, form_id: Optional[str] = None):
        super().__init__(message, code="RENDER_FAILED")
        if form_id:
            self.details["form_id"] = form_id


class RenderTimeoutError(RenderError):
    """PDF rendering exceeded its deadline"""

    def __init__(self, timeout_seconds: float, form_id: Optional[str] = None):
        super().__init__(f"PDF rendering timed out after {timeout_seconds}s", form_id)
        self.code = "RENDER_TIMEOUT"
        self.details["timeout_seconds"] = timeout_seconds


# ============================================
# Storage Errors
# ============================================

class StorageError(AuditServiceError):
    """Storage operation failed"""

    def __init__(self, message: str):
        super().__init__(message, code="STORAGE_ERROR")


class BlobUploadError(StorageError):
    """Blob store upload failed"""

    def __init__(self, key: str, message: str = "Upload failed"):
        super().__init__(f"Failed to upload '{key}': {message}")
        self.code = "BLOB_UPLOAD_FAILED"
        self.details["key"] = key


class BlobDownloadError(StorageError):
    """Blob store read failed"""

    def __init__(self, key: str, message: str = "Download failed"):
        super().__init__(f"Failed to read '{key}': {message}")
        self.code = "BLOB_DOWNLOAD_FAILED"
        self.details["key"] = key


class StorageTimeoutError(StorageError):
    """Blob store call exceeded its deadline"""

    def __init__(self, timeout_seconds: float, key: Optional[str] = None):
        super().__init__(f"Storage operation timed out after {timeout_seconds}s")
        self.code = "STORAGE_TIMEOUT"
        self.details["timeout_seconds"] = timeout_seconds
        if key:
            self.details["key"] = key


class DocumentStoreError(StorageError):
    """Database read or write failed"""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.code = "DOCUMENT_STORE_ERROR"
        if operation:
            self.details["operation"] = operation


# ============================================
# Partial Completion
# ============================================

class PartialCompletionError(AuditServiceError):
    """
    The audit form was saved but a later pipeline step failed.

    The saved document is attached so callers can still return it; the
    reconciliation job picks up the missing artifact later.
    """

    def __init__(self, failed_step: str, cause: AuditServiceError, document: Any = None,
                 version: Optional[int] = None):
        super().__init__(
            f"Audit form saved but step '{failed_step}' failed: {cause.message}",
            code="PARTIAL_COMPLETION",
            details={
                "failed_step": failed_step,
                "cause": cause.to_dict(),
                "version": version,
            }
        )
        self.failed_step = failed_step
        self.cause = cause
        self.document = document


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: AuditServiceError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
