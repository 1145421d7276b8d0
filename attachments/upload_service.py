"""Attachment upload through the two-step resumable upload protocol."""

import logging
import mimetypes
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import requests

from llm.errors import ApiError, ErrorCategory
from .tracker import AttachmentTracker

logger = logging.getLogger(__name__)


class FileUploadService:
    """
    Uploads local files and returns durable handle URIs.

    Step 1 ("start") declares size and MIME type and returns an upload URL in
    the x-goog-upload-url header. Step 2 ("upload, finalize") posts the bytes
    to that URL and returns the file resource with its URI.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        api_key_header: str = "x-goog-api-key",
        tracker: Optional[AttachmentTracker] = None,
        timeout: int = 120
    ):
        """
        Initialize upload service.

        Args:
            base_url: API base URL; uploads go to {base_url}/files
            api_key: API key sent on every request
            api_key_header: Header carrying the API key
            tracker: Optional tracker recording upload times
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.api_key_header = api_key_header
        self.tracker = tracker
        self.timeout = timeout

    @property
    def upload_url(self) -> str:
        # Upload endpoints live under /upload on the public API
        parsed = urlparse(self.base_url)
        if parsed.netloc == "generativelanguage.googleapis.com":
            return f"{parsed.scheme}://{parsed.netloc}/upload{parsed.path}/files"
        return f"{self.base_url}/files"

    def _auth_headers(self) -> dict:
        return {self.api_key_header: self.api_key} if self.api_key else {}

    def upload_file(self, path: str, mime_type: Optional[str] = None) -> str:
        """
        Upload a local file.

        Args:
            path: Local file path
            mime_type: MIME type (guessed from the file name if omitted)

        Returns:
            Durable file URI

        Raises:
            ApiError: With category file_upload on any failure
        """
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as e:
            raise ApiError(
                f"Could not read attachment {path}: {e}",
                category=ErrorCategory.FILE_UPLOAD,
                details={"step": "read"}
            ) from e

        mime_type = mime_type or mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        return self.upload_bytes(data, mime_type, display_name=file_path.name)

    def upload_bytes(self, data: bytes, mime_type: str, display_name: Optional[str] = None) -> str:
        """Upload raw bytes. See upload_file."""
        try:
            upload_continuation = self._start_upload(len(data), mime_type, display_name)
            file_uri = self._finalize_upload(upload_continuation, data)
        except requests.RequestException as e:
            raise ApiError(
                f"File upload failed: {e}",
                category=ErrorCategory.FILE_UPLOAD
            ) from e

        if self.tracker:
            self.tracker.track(file_uri)

        logger.info(f"Uploaded {len(data)} bytes ({mime_type}) as {file_uri}")
        return file_uri

    def _start_upload(self, size: int, mime_type: str, display_name: Optional[str]) -> str:
        headers = {
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Header-Content-Length": str(size),
            "X-Goog-Upload-Header-Content-Type": mime_type,
            "Content-Type": "application/json",
            **self._auth_headers(),
        }
        body = {"file": {"display_name": display_name}} if display_name else {}

        response = requests.post(self.upload_url, headers=headers, json=body, timeout=self.timeout)

        if response.status_code != 200:
            raise ApiError(
                f"Failed to prepare file upload: {response.text}",
                category=ErrorCategory.FILE_UPLOAD,
                status=response.status_code,
                details={"step": "prepare"}
            )

        upload_url = response.headers.get("x-goog-upload-url")
        if not upload_url:
            raise ApiError(
                "Upload URL not found in response headers",
                category=ErrorCategory.FILE_UPLOAD,
                details={"step": "prepare"}
            )
        return upload_url

    def _finalize_upload(self, upload_url: str, data: bytes) -> str:
        # Gateways may hand back only the query string of the upload URL
        if not upload_url.startswith(("http://", "https://")):
            query = upload_url if upload_url.startswith("?") else f"?{upload_url}"
            upload_url = f"{self.upload_url}{query}"

        headers = {
            "X-Goog-Upload-Offset": "0",
            "X-Goog-Upload-Command": "upload, finalize",
            **self._auth_headers(),
        }

        response = requests.post(upload_url, headers=headers, data=data, timeout=self.timeout)

        if response.status_code != 200:
            raise ApiError(
                f"Failed to upload file: {response.text}",
                category=ErrorCategory.FILE_UPLOAD,
                status=response.status_code,
                details={"step": "upload"}
            )

        payload = response.json()
        file_uri = (payload.get("file") or {}).get("uri")
        if not file_uri:
            raise ApiError(
                "File URI not found in upload response",
                category=ErrorCategory.FILE_UPLOAD,
                details={"step": "upload", "response": payload}
            )
        return file_uri
