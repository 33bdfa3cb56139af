"""
Structured Validation Error Utilities

Provides standardized error responses for malformed gate requests.
Request validation failures are answered with 400 so that 422 stays
reserved for expired permits.

Error Response Format:
{
    "success": false,
    "error": "missing_parameter" | "invalid_parameter" | "validation_error",
    "parameter": "permitNumber",
    "message": "permitNumber is required"
}
"""

from typing import Any, Dict, List, Optional, Sequence

from fastapi import status


VALIDATION_STATUS_CODE = status.HTTP_400_BAD_REQUEST


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "success": False,
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }

    @staticmethod
    def invalid_parameter(parameter: str, message: str, value: Optional[Any] = None) -> dict:
        """
        Create an invalid parameter error response.

        Args:
            parameter: Name of the invalid parameter
            message: Description of the validation error
            value: The invalid value (optional, for debugging)
        """
        response = {
            "success": False,
            "error": "invalid_parameter",
            "parameter": parameter,
            "message": message
        }
        if value is not None:
            response["received_value"] = str(value)[:100]  # Truncate for safety
        return response

    @staticmethod
    def validation_error(message: str, details: Optional[Any] = None) -> dict:
        response = {
            "success": False,
            "error": "validation_error",
            "parameter": None,
            "message": message
        }
        if details:
            response["details"] = details
        return response


def _parameter_name(loc: Sequence[Any]) -> Optional[str]:
    # ("body", "permitNumber") -> "permitNumber"
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or None


def build_request_validation_error(errors: List[Dict[str, Any]]) -> dict:
    """
    Turn FastAPI/pydantic request validation errors into one structured body.

    A single missing or invalid field is reported as such; anything else
    becomes a general validation_error with the individual problems.
    """
    if len(errors) == 1:
        error = errors[0]
        parameter = _parameter_name(error.get("loc", ()))
        if parameter:
            if error.get("type") == "missing":
                return ValidationErrorResponse.missing_parameter(parameter)
            message = str(error.get("msg", "invalid value"))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
            return ValidationErrorResponse.invalid_parameter(parameter, message, error.get("input"))

    details = [
        {"parameter": _parameter_name(e.get("loc", ())), "message": str(e.get("msg", ""))}
        for e in errors
    ]
    return ValidationErrorResponse.validation_error("Request validation failed", details)
