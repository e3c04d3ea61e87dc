"""
Error taxonomy for the action endpoint.

Every error carries its HTTP status and a client-safe message. Handlers raise
them the same way route functions raise HTTPException; the dispatcher turns
them into the ``{"error": message}`` envelope.
"""

from typing import Optional

from fastapi import HTTPException


class ApiError(HTTPException):
    status_code = 400
    message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(status_code=type(self).status_code, detail=message or type(self).message)


class ValidationError(ApiError):
    status_code = 400
    message = "Invalid request"


class AlreadyExists(ValidationError):
    message = "User already exists"


class InvalidCredentials(ValidationError):
    message = "Invalid credentials"


class EmptyCart(ValidationError):
    message = "Cart is empty"


class InvalidAction(ValidationError):
    message = "Invalid action"


class AuthRequired(ApiError):
    status_code = 401
    message = "Authentication required"


class AuthInvalid(ApiError):
    status_code = 403
    message = "Invalid or expired token"


class ForbiddenRole(ApiError):
    status_code = 403
    message = "Admin access required"


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class InternalError(ApiError):
    status_code = 500
    message = "Internal server error"


MissingToken = AuthRequired
InvalidToken = AuthInvalid
