"""
callsight/errors.py
Error taxonomy. Each error carries the HTTP status the API layer maps it to.
"""

from typing import Optional


class CallsightError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class AuthenticationFailure(CallsightError):
    """Callback signature mismatch. No store mutation happens."""
    status_code = 403


class NotFound(CallsightError):
    status_code = 404


class ValidationFailure(CallsightError):
    """Unknown export format, malformed query or callback payload."""
    status_code = 400


class InternalProcessingFailure(CallsightError):
    """Unexpected exception inside analytics or aggregation."""
    status_code = 500
