"""
Centralized error code registry with specifications.

Provides a single source of truth for the annotation codes that appear on a
case report: skipped documents, degraded stages, ambiguous reconciliations
and scoring inputs that were missing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class ErrorSpec:
    """Specification for a single annotation type."""

    code: str
    int_code: int
    message: str
    category: str  # "client_error", "server_error" or "business_logic"
    retryable: bool


class ErrorCode(Enum):
    """Centralized error code registry.

    Usage:
        spec = ErrorCode.get_spec("ATTACHMENT_FETCH_FAILED")
        print(spec.message, spec.category, spec.retryable)
    """

    # ========================================
    # CASE LEVEL
    # ========================================
    RECORD_NOT_FOUND = ErrorSpec(
        "RECORD_NOT_FOUND",
        1,
        "Case record does not exist in the record store",
        "client_error",
        False,
    )
    REQUIRED_STAGE_FAILED = ErrorSpec(
        "REQUIRED_STAGE_FAILED",
        2,
        "A stage required for scoring failed",
        "server_error",
        True,
    )
    CASE_CANCELLED = ErrorSpec(
        "CASE_CANCELLED",
        3,
        "Case evaluation was cancelled",
        "client_error",
        False,
    )

    # ========================================
    # DOCUMENT LEVEL
    # ========================================
    ATTACHMENT_FETCH_FAILED = ErrorSpec(
        "ATTACHMENT_FETCH_FAILED",
        10,
        "Attachment could not be downloaded",
        "server_error",
        True,
    )
    UNSUPPORTED_CONTENT_TYPE = ErrorSpec(
        "UNSUPPORTED_CONTENT_TYPE",
        11,
        "Attachment content type is not supported",
        "client_error",
        False,
    )
    OCR_PROVIDER_ERROR = ErrorSpec(
        "OCR_PROVIDER_ERROR",
        12,
        "OCR provider failed; later pages were not extracted",
        "server_error",
        True,
    )
    OCR_NO_TEXT = ErrorSpec(
        "OCR_NO_TEXT",
        13,
        "No page of the document could be extracted",
        "server_error",
        True,
    )
    PAGE_LIMIT_REACHED = ErrorSpec(
        "PAGE_LIMIT_REACHED",
        14,
        "Document has more pages than the category limit",
        "business_logic",
        False,
    )

    # ========================================
    # STAGE LEVEL
    # ========================================
    STAGE_DEGRADED = ErrorSpec(
        "STAGE_DEGRADED",
        20,
        "Stage produced partial or no output",
        "server_error",
        True,
    )
    RATE_LIMIT_EXHAUSTED = ErrorSpec(
        "RATE_LIMIT_EXHAUSTED",
        21,
        "Provider rate limit persisted after all retries",
        "server_error",
        True,
    )
    STRUCTURED_OUTPUT_FALLBACK = ErrorSpec(
        "STRUCTURED_OUTPUT_FALLBACK",
        22,
        "Typed extraction unavailable; prose parsing was used",
        "server_error",
        False,
    )
    SEARCH_FAILED = ErrorSpec(
        "SEARCH_FAILED",
        23,
        "Search provider query failed",
        "server_error",
        True,
    )

    # ========================================
    # RECONCILIATION / SCORING
    # ========================================
    RECONCILIATION_AMBIGUOUS = ErrorSpec(
        "RECONCILIATION_AMBIGUOUS",
        30,
        "Several candidate combinations matched; a deterministic tie-break was applied",
        "business_logic",
        False,
    )
    REFERENCE_VALUE_MISSING = ErrorSpec(
        "REFERENCE_VALUE_MISSING",
        31,
        "Reference field has no value; the field was not reconciled",
        "business_logic",
        False,
    )
    SCORING_INPUT_MISSING = ErrorSpec(
        "SCORING_INPUT_MISSING",
        32,
        "Scoring input was missing; the worst band was applied",
        "business_logic",
        False,
    )

    # ========================================
    # FALLBACK
    # ========================================
    UNKNOWN_ERROR = ErrorSpec(
        "UNKNOWN_ERROR",
        0,
        "Unknown error",
        "server_error",
        False,
    )

    @classmethod
    def get_spec(cls, code: str) -> ErrorSpec:
        """Get error specification by code string.

        Returns:
            ErrorSpec with category, message, and retryability.
            Returns default spec for unknown codes.
        """
        for error in cls:
            if error.value.code == code:
                return error.value
        return ErrorSpec(code, 0, f"Error: {code}", "server_error", False)


def make_error(
    code: str,
    details: Optional[str] = None,
    **context: Any,
) -> dict[str, Any]:
    """Create an annotation dict with integer code, message, and details.

    Extra keyword arguments (stage_id, document_id, field) are carried as-is.
    """
    spec = ErrorCode.get_spec(code)
    annotation: dict[str, Any] = {
        "code": spec.code,
        "int_code": spec.int_code,
        "message": spec.message,
        "details": details,
    }
    annotation.update({k: v for k, v in context.items() if v is not None})
    return annotation
