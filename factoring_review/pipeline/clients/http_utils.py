"""Helpers shared by the httpx provider clients."""

from typing import Optional

import httpx

from factoring_review.pipeline.core.config import ERROR_BODY_MAX_CHARS


def parse_retry_after(response: httpx.Response) -> Optional[float]:
    """Return the Retry-After header in seconds, or None when absent or a date."""
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_message(response: httpx.Response) -> str:
    """Best-effort error message from a provider error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:ERROR_BODY_MAX_CHARS]

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:ERROR_BODY_MAX_CHARS]
        if isinstance(error, str):
            return error[:ERROR_BODY_MAX_CHARS]
        if body.get("message"):
            return str(body["message"])[:ERROR_BODY_MAX_CHARS]
    return response.text[:ERROR_BODY_MAX_CHARS]
