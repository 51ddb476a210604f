"""Error codes dictionary for export failures.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by the exception classes to produce
machine-readable error payloads for the caller.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_action: str


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Asset errors (caller must supply different input)
    # ==========================================================================
    "ASSET_LOAD_FAILED": {
        "retryable": False,
        "suggested_action": "replace_asset",
    },
    "ASSET_TOO_LARGE": {
        "retryable": False,
        "suggested_action": "replace_asset",
    },
    "ASSET_TIMEOUT": {
        "retryable": False,
        "suggested_action": "replace_asset",
    },
    "INVALID_LYRICS": {
        "retryable": False,
        "suggested_action": "fix_lyrics",
    },
    # ==========================================================================
    # Host capability errors (need a different configuration)
    # ==========================================================================
    "CAPABILITY_MISSING": {
        "retryable": False,
        "suggested_action": "change_output_format",
    },
    # ==========================================================================
    # Runtime errors during an export
    # ==========================================================================
    "ENCODING_FAILED": {
        "retryable": False,
        "suggested_action": "restart_export",
    },
    "PLAYBACK_FAILED": {
        "retryable": False,
        "suggested_action": "replace_asset",
    },
    # ==========================================================================
    # Lifecycle errors
    # ==========================================================================
    "EXPORT_IN_PROGRESS": {
        "retryable": True,
        "suggested_action": "wait_for_current_export",
    },
    "EXPORT_CANCELLED": {
        "retryable": True,
        "suggested_action": "restart_export",
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested action
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
