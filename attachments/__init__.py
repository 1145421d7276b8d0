"""Attachment upload and expiry tracking."""

from .tracker import AttachmentTracker, EXPIRED_PLACEHOLDER
from .upload_service import FileUploadService

__all__ = ["AttachmentTracker", "EXPIRED_PLACEHOLDER", "FileUploadService"]
