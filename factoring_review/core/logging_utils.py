"""
PII-safe logging utilities.

Names of applicants, representatives and counterparties never reach the logs
unmasked.
"""


def sanitize_name(name: str | None) -> str:
    """
    Sanitize a person or company name for logs.

    Rules:
    - None / empty / <4 chars → fully masked
    - Otherwise → first 2 + last 2 chars, middle masked
    """
    if not name:
        return "***"

    name = name.strip()
    if len(name) < 4:
        return "***"

    return f"{name[:2]}***{name[-2:]}"


def sanitize_case_id(case_id: int | str | None) -> str:
    """
    Normalize case ID for logs.
    """
    return str(case_id) if case_id is not None else "N/A"
