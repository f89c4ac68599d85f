"""Custom exceptions for vid-from-pdf.

Every error raised by the core derives from VidFromPdfError and carries a
machine-readable code plus the HTTP status the web boundary should answer with.
"""

from typing import Any, Sequence


class VidFromPdfError(Exception):
    """Base exception for all vid-from-pdf errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(VidFromPdfError):
    """Base class for resource not found errors."""

    status_code = 404


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found."""

    code = "PROJECT_NOT_FOUND"
    message = "Project not found"

    def __init__(self, project_id: str | None = None):
        message = f"Project not found: {project_id}" if project_id else self.message
        super().__init__(message)


class PageNotFoundError(ResourceNotFoundError):
    """Page index outside of the project's pages."""

    code = "PAGE_NOT_FOUND"
    message = "Page not found"

    def __init__(self, index: int | None = None, page_count: int | None = None):
        if index is not None and page_count is not None:
            message = f"Page {index} does not exist (project has {page_count} pages)"
        else:
            message = self.message
        super().__init__(message)
        self.index = index


class AssetNotFoundError(ResourceNotFoundError):
    """Asset not found."""

    code = "ASSET_NOT_FOUND"
    message = "No such asset"


# =============================================================================
# Upload Errors (4xx)
# =============================================================================


class UploadError(VidFromPdfError):
    """Malformed or unreadable input at the boundary."""

    code = "UPLOAD_ERROR"
    status_code = 400
    message = "The uploaded file could not be used"


class UnsupportedMediaTypeError(UploadError):
    code = "UNSUPPORTED_MEDIA_TYPE"
    status_code = 415
    message = "Only pdf is accepted"


class UploadTooLargeError(UploadError):
    code = "UPLOAD_TOO_LARGE"
    status_code = 413
    message = "The uploaded file is too large"


# =============================================================================
# State Errors (409)
# =============================================================================


class InvalidStateError(VidFromPdfError):
    """Illegal project state transition."""

    code = "INVALID_STATE"
    status_code = 409
    message = "Operation not allowed in the project's current state"


class AlreadyRenderingError(InvalidStateError):
    """A render job is already live for this project."""

    code = "ALREADY_RENDERING"
    message = "A render job is already in progress for this project"

    def __init__(self, project_id: str | None = None):
        message = (
            f"A render job is already in progress for project {project_id}"
            if project_id
            else self.message
        )
        super().__init__(message)


# =============================================================================
# Pipeline Errors
# =============================================================================


class RasterizationError(VidFromPdfError):
    """Page extraction failed; no page of the document was kept."""

    code = "RASTERIZATION_FAILED"
    status_code = 422
    message = "Failed to convert the pdf into page images"

    def __init__(
        self,
        backend: str,
        stage: str,
        cause: str,
        page_index: int | None = None,
    ):
        self.backend = backend
        self.stage = stage
        self.cause = cause
        self.page_index = page_index
        where = f" on page {page_index}" if page_index is not None else ""
        super().__init__(f"{backend} failed at stage '{stage}'{where}: {cause}")


class CodecUnavailableError(VidFromPdfError):
    """Negotiation yielded no usable encoder profile."""

    code = "CODEC_UNAVAILABLE"
    status_code = 503
    message = "No usable video encoder is available"


class SubprocessFailureError(VidFromPdfError):
    """External tool exited unsuccessfully."""

    code = "SUBPROCESS_FAILED"
    status_code = 500
    retryable = True

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        stderr: str = "",
        message: str | None = None,
    ):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        tool = self.args_list[0] if self.args_list else "<unknown>"
        if message is None:
            tail = stderr.strip().splitlines()[-5:]
            message = f"{tool} exited with status {returncode}"
            if tail:
                message += ": " + " | ".join(tail)
        super().__init__(message)


class ToolNotFoundError(SubprocessFailureError):
    """An external tool is not installed or not executable."""

    code = "TOOL_NOT_FOUND"
    retryable = False

    def __init__(self, tool: str, reason: str = "not found on PATH"):
        self.tool = tool
        super().__init__([tool], None, message=f"The tool `{tool}` can not be used: {reason}")


class SubprocessTimeoutError(VidFromPdfError):
    """External tool exceeded its time budget and was killed."""

    code = "SUBPROCESS_TIMEOUT"
    status_code = 504
    retryable = True

    def __init__(self, args: Sequence[str], timeout: float):
        self.args_list = list(args)
        self.timeout = timeout
        tool = self.args_list[0] if self.args_list else "<unknown>"
        super().__init__(f"{tool} did not finish within {timeout:g}s and was killed")


class SubprocessCancelledError(VidFromPdfError):
    """External tool was terminated because the caller cancelled."""

    code = "CANCELLED"
    status_code = 409
    message = "The operation was cancelled"


class RenderError(VidFromPdfError):
    """Every codec profile failed; aggregates the per-profile causes."""

    code = "RENDER_FAILED"
    status_code = 500
    retryable = True

    def __init__(self, attempts: list[tuple[str, str]]):
        self.attempts = attempts
        if attempts:
            details = "; ".join(f"{name}: {cause}" for name, cause in attempts)
            message = f"Rendering failed with every encoder ({details})"
        else:
            message = "Rendering failed"
        super().__init__(message)
