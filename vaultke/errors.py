"""
API Errors
Exception types raised by route handlers and turned into JSON envelopes
"""


class APIError(Exception):
    """Base class for errors that map onto an HTTP status"""
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(APIError):
    """Missing field, out-of-range value, bad enum or past timestamp"""
    status_code = 400


class BusinessRuleError(APIError):
    """Request is well formed but breaks a domain rule (stock, state)"""
    status_code = 400


class UnauthorizedError(APIError):
    status_code = 401

    def __init__(self, message='User not authenticated'):
        super().__init__(message)


class ForbiddenError(APIError):
    status_code = 403

    def __init__(self, message='Access denied'):
        super().__init__(message)


class NotFoundError(APIError):
    status_code = 404
