"""Domain exceptions for classroom-rag.

Every failure the service reports carries a stable ``code``, the HTTP status
the API layer should answer with, and whether the caller may simply resubmit
the same request. The API renders them as ``{"error", "detail", "retryable"}``.
"""

from __future__ import annotations


class ClassroomRagError(Exception):
    """Base class for all reported failures."""

    code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# Validation -----------------------------------------------------------------


class ValidationError(ClassroomRagError):
    code = "validation_error"
    status_code = 400


class UnsupportedMimeTypeError(ValidationError):
    code = "unsupported_mime_type"

    def __init__(self, mime_type: str) -> None:
        self.mime_type = mime_type
        super().__init__(f"File type '{mime_type}' is not allowed. Accepted formats: PDF, DOCX, DOC, TXT")


class FileTooLargeError(ValidationError):
    code = "file_too_large"
    status_code = 413

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"File is {size} bytes; the maximum is {limit} bytes ({limit // (1024 * 1024)} MB)")


class UnauthenticatedError(ClassroomRagError):
    code = "unauthenticated"
    status_code = 401


class ForbiddenError(ClassroomRagError):
    code = "forbidden"
    status_code = 403


class ForbiddenScopeError(ForbiddenError):
    code = "forbidden_scope"

    def __init__(self) -> None:
        super().__init__("Administrator rights are required to publish into the global corpus")


class NotFoundError(ClassroomRagError):
    code = "not_found"
    status_code = 404


class UploadGrantError(ClassroomRagError):
    """Upload destination is unknown, expired, already used or overrun."""

    code = "invalid_upload_grant"
    status_code = 403


# Quota ----------------------------------------------------------------------


class QuotaExceededError(ClassroomRagError):
    """A storage or monthly import budget would be exceeded."""

    code = "quota_exceeded"
    status_code = 429

    def __init__(self, kind: str, requested: int, used: int, cap: int) -> None:
        self.kind = kind
        self.requested = requested
        self.used = used
        self.cap = cap
        label = "monthly import" if kind == "monthly_import" else kind
        super().__init__(
            f"The {label} budget would be exceeded: {used} of {cap} tokens used, {requested} requested"
        )


class QuotaExhaustedError(ClassroomRagError):
    """The account's spendable token balance is empty."""

    code = "quota_exhausted"
    status_code = 402

    def __init__(self) -> None:
        super().__init__("Your token balance is exhausted. Add tokens to keep asking questions.")


# Ingestion ------------------------------------------------------------------


class ExtractionError(ClassroomRagError):
    code = "extraction_failed"
    status_code = 422


class IngestInProgressError(ClassroomRagError):
    code = "ingest_in_progress"
    status_code = 409
    retryable = True

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document {document_id} is already being processed")


# Retrieval ------------------------------------------------------------------


class EmptyCorpusError(ClassroomRagError):
    code = "empty_corpus"
    status_code = 404

    def __init__(self) -> None:
        super().__init__(
            "No ready documents are available. Upload a document and wait for it to finish processing, "
            "then ask again."
        )


# Upstream providers ---------------------------------------------------------


class ProviderError(ClassroomRagError):
    """Embedding or completion provider failed; the request may be resubmitted."""

    code = "provider_error"
    status_code = 503
    retryable = True

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} call failed: {message}")


__all__ = [
    "ClassroomRagError",
    "ValidationError",
    "UnsupportedMimeTypeError",
    "FileTooLargeError",
    "UnauthenticatedError",
    "ForbiddenError",
    "ForbiddenScopeError",
    "NotFoundError",
    "UploadGrantError",
    "QuotaExceededError",
    "QuotaExhaustedError",
    "ExtractionError",
    "IngestInProgressError",
    "EmptyCorpusError",
    "ProviderError",
]
