"""
Error taxonomy

Every error a handler can surface maps to exactly one status code. Messages for
authentication, not-found and store failures are fixed so that responses never
reveal which underlying case occurred.
"""


class ConfigurationError(RuntimeError):
    pass


class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class ValidationError(ApiError):
    status_code = 400
    message = "Invalid request"


class AuthenticationError(ApiError):
    status_code = 401
    message = "authentication required"

    def __init__(self):
        super().__init__(self.message)


class NotFoundError(ApiError):
    status_code = 404
    message = "Not found"

    def __init__(self):
        super().__init__(self.message)


class StoreError(ApiError):
    status_code = 500
    message = "Internal server error"


def first_error(errors) -> str:
    """Readable message for the first entry of a pydantic ``errors()`` list."""
    if not errors:
        return ValidationError.message
    err = errors[0]
    fields = [str(part) for part in err.get("loc", ()) if part != "body"]
    if fields:
        return f"{fields[-1]}: {err['msg']}"
    return err["msg"]
