"""Custom exception hierarchy for the case review pipeline.

All exceptions inherit from BaseError and provide structured error information
compatible with RFC 7807 Problem Details for HTTP APIs.

Provider failures are the only errors that cross component boundaries. Per-file
and per-batch failures are caught inside the extraction job and surface as
annotations on the case report instead.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Error categories for classification and monitoring."""

    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    EXTERNAL_SERVICE = "external_service"
    CONFIGURATION = "configuration"
    BUSINESS_LOGIC = "business_logic"


class BaseError(Exception):
    """Base exception for all case review errors.

    Attributes:
        message: Human-readable error message
        error_code: Application-specific error code
        category: Error category for classification
        http_status: HTTP status code to return
        details: Additional context (dict)
        retryable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        http_status: int,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.http_status = http_status
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to RFC 7807 Problem Details format."""
        return {
            "type": f"/errors/{self.error_code}",
            "title": self.message,
            "status": self.http_status,
            "code": self.error_code,
            "detail": self.details.get("detail"),
            "category": self.category.value,
            "retryable": self.retryable,
        }


class ConfigurationError(BaseError):
    """Required configuration or credentials are missing.

    Fatal. Raised before any stage runs.

    Args:
        missing: Names of the missing environment variables
    """

    def __init__(self, missing: list[str], **kwargs):
        super().__init__(
            message="Missing required configuration",
            error_code="CONFIGURATION_ERROR",
            category=ErrorCategory.CONFIGURATION,
            http_status=500,
            details={"missing": list(missing), "detail": ", ".join(missing)},
            **kwargs,
        )
        self.missing = list(missing)


class ExternalServiceError(BaseError):
    """External provider failure (502 Bad Gateway / 504 Gateway Timeout).

    Raised when the record store, OCR, language model or search provider
    fails or times out.

    Args:
        service_name: Name of the external service
        error_type: Type of error ("timeout", "unavailable", "error", "invalid_response")
        details: Additional error context
    """

    def __init__(self, service_name: str, error_type: str, **kwargs):
        if error_type == "timeout":
            http_status = 504
        elif error_type == "rate_limit":
            http_status = 429
        else:
            http_status = 502

        additional_details = kwargs.pop("details", {})
        additional_details.update(
            {
                "service": service_name,
                "error_type": error_type,
            }
        )

        super().__init__(
            message=kwargs.pop("message", f"{service_name} service {error_type}"),
            error_code=f"{service_name.upper()}_{error_type.upper()}",
            category=ErrorCategory.EXTERNAL_SERVICE,
            http_status=http_status,
            retryable=kwargs.pop("retryable", False),
            details=additional_details,
            **kwargs,
        )
        self.service_name = service_name
        self.error_type = error_type


class RateLimitError(ExternalServiceError):
    """Provider rejected the call with a rate limit (HTTP 429).

    The only error kind retried at stage level.

    Args:
        service_name: Name of the provider
        retry_after: Provider-suggested wait in seconds, if any
    """

    def __init__(self, service_name: str, retry_after: Optional[float] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["retry_after"] = retry_after
        super().__init__(
            service_name,
            "rate_limit",
            details=details,
            retryable=True,
            **kwargs,
        )
        self.retry_after = retry_after


class ExtractionProviderError(ExternalServiceError):
    """OCR provider failure other than an out-of-range page request.

    Aborts the remaining batches of one document only.
    """

    def __init__(self, error_type: str = "error", **kwargs):
        super().__init__("OCR", error_type, **kwargs)


class ExtractionPageBoundaryError(ExternalServiceError):
    """OCR provider reported the requested pages do not exist.

    This is the expected end-of-file signal for paged documents.

    Args:
        pages: Page numbers of the rejected request
    """

    def __init__(self, pages: list[int], **kwargs):
        details = kwargs.pop("details", {})
        details["pages"] = list(pages)
        super().__init__("OCR", "invalid_pages", details=details, **kwargs)
        self.pages = list(pages)


class AttachmentFetchError(ExternalServiceError):
    """An attachment could not be downloaded from the record store.

    Args:
        content_key: Record store key of the attachment
        reason: Short machine-readable reason ("network", "http_403", "too_large")
    """

    def __init__(self, content_key: str, reason: str, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"content_key": content_key, "reason": reason})
        super().__init__("RECORD_STORE", "attachment_fetch", details=details, **kwargs)
        self.content_key = content_key
        self.reason = reason


class PipelineDefinitionError(BaseError):
    """The stage graph is invalid (unknown dependency, duplicate id or cycle)."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="PIPELINE_DEFINITION_ERROR",
            category=ErrorCategory.SERVER_ERROR,
            http_status=500,
            **kwargs,
        )
