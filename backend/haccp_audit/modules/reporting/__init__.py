"""PDF reporting for filled audit forms"""
from haccp_audit.modules.reporting.pdf_renderer import AuditPDFRenderer, RenderAssets
from haccp_audit.modules.reporting.image_loader import EvidenceImageLoader, EvidenceImage, ImageFailure

__all__ = ["AuditPDFRenderer", "RenderAssets", "EvidenceImageLoader", "EvidenceImage", "ImageFailure"]
