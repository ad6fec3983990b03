"""
Application errors

Every error raised by the service layer derives from AppError and carries the
HTTP status the API answers with. main.py turns them into the standard
{"success": false, "message": ...} envelope.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "Something went wrong"):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    # invalid state transitions and stock shortages are client errors
    status_code = 400


class InternalError(AppError):
    status_code = 500
