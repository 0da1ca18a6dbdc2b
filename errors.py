"""
Error taxonomy

Every failure a caller can see is one of these. Each carries the HTTP
status the API answers with and a stable machine-readable code.
"""


class PriorityError(Exception):
    status_code = 500
    code = "Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotSignedIn(PriorityError):
    status_code = 401
    code = "NotSignedIn"


class AuthDenied(PriorityError):
    status_code = 403
    code = "AuthDenied"


class NotFound(PriorityError):
    status_code = 404
    code = "NotFound"


class AlreadyVoted(PriorityError):
    status_code = 409
    code = "AlreadyVoted"


class InvalidTransition(PriorityError):
    status_code = 409
    code = "InvalidTransition"


class ValidationFailed(PriorityError):
    status_code = 422
    code = "ValidationFailed"


class StoreUnavailable(PriorityError):
    status_code = 503
    code = "StoreUnavailable"
