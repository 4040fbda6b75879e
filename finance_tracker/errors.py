class DatabaseInitError(RuntimeError):
    """Raised when the database cannot be opened or migrated."""


class AppError(Exception):
    """Base class for errors that map onto an HTTP response.

    ``kind`` is stable and meant for clients; ``message`` is for humans.
    """

    status_code = 500
    kind = "internal"

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"message": self.message, "kind": self.kind}


class ValidationError(AppError):
    status_code = 400
    kind = "validation"

    def __init__(self, message, issues=None):
        super().__init__(message)
        self.issues = list(issues or [])

    def to_dict(self):
        payload = super().to_dict()
        if self.issues:
            payload["issues"] = self.issues
        return payload


class UnauthorizedError(AppError):
    status_code = 401
    kind = "unauthorized"


class NotFoundError(AppError):
    status_code = 404
    kind = "not_found"


class ConflictError(AppError):
    status_code = 409
    kind = "conflict"
