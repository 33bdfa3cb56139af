"""
Utils Package

Provides utility modules for:
- validation_errors: Structured 400 responses for malformed requests
"""

from .validation_errors import (
    VALIDATION_STATUS_CODE,
    ValidationErrorResponse,
    build_request_validation_error,
)

__all__ = [
    'VALIDATION_STATUS_CODE',
    'ValidationErrorResponse',
    'build_request_validation_error',
]
