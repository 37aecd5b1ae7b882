"""
Standardized API Response Module

Provides consistent response formatting across all API endpoints.

RESPONSE FORMAT:
    Success:
        {
            "success": true,
            "data": <response data>
        }

    Error:
        {
            "success": false,
            "message": "Human-readable message",
            "code": "ERROR_CODE",
            "details": {...}  # Optional extra context
        }

ERROR CODES:
    - AUTHENTICATION_REQUIRED: No valid bearer token provided
    - AUTHORIZATION_DENIED: Actor may not view or change the booking
    - NOT_FOUND: Booking, service or staff not found in the tenant
    - VALIDATION_ERROR: Request data failed validation
    - SLOT_UNAVAILABLE: Slot taken between listing and reserving
    - STATE_CONFLICT: Status change not allowed from the current status
    - RATE_LIMITED: Too many reservation attempts
    - DATABASE_ERROR: Persistence layer unavailable
"""

from typing import Any, Optional


# ============================================================================
# COMMON ERROR CODES
# ============================================================================

class ErrorCodes:
    """Standard error codes for API responses."""

    # Authentication errors (401)
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INVALID_TOKEN = "INVALID_TOKEN"

    # Authorization errors (403)
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # Not found errors (404)
    NOT_FOUND = "NOT_FOUND"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"

    # Validation errors (400)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_RANGE = "INVALID_RANGE"
    INVALID_STATUS = "INVALID_STATUS"
    PAST_BOOKING = "PAST_BOOKING"
    STAFF_NOT_QUALIFIED = "STAFF_NOT_QUALIFIED"

    # Conflict errors (409)
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    STATE_CONFLICT = "STATE_CONFLICT"

    # Throttling (429)
    RATE_LIMITED = "RATE_LIMITED"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def success_response(data: Any) -> dict:
    """Create a standardized success response dict."""
    return {"success": True, "data": data}


def error_response(
    code: str,
    message: str,
    details: Optional[dict] = None,
) -> dict:
    """Create a standardized error response dict."""
    response = {
        "success": False,
        "message": message,
        "code": code,
    }
    if details:
        response["details"] = details
    return response
