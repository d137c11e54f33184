"""Exception taxonomy for the Automation API service.

Configuration and filesystem errors are fatal to ``start()``. Everything
deriving from :class:`ApiError` is rendered by the HTTP layer as an
``{"error": ...}`` body with the carried status code.
"""

from __future__ import annotations

from pydantic import ValidationError


class AutomationError(Exception):
    """Base class for all automation service errors."""


class AutomationConfigError(AutomationError):
    """Raised when the on-disk automation config is malformed or invalid."""


class SymlinkError(AutomationError):
    """Raised when a guarded automation path is a symbolic link."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Refusing to use symlink at {path}")
        self.path = path


class NotARegularFileError(AutomationError):
    """Raised when a guarded path exists but is not a regular file."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Refusing to read non-regular file at {path}")
        self.path = path


class AutomationStartError(AutomationError):
    """Raised when the HTTP listener cannot be brought up."""


class ApiError(AutomationError):
    """A request failure that maps onto an HTTP status code."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class PathNotAllowedError(ApiError):
    status_code = 403


class InvalidWorkingDirectoryError(ApiError):
    status_code = 400


class NoAllowedRootsError(ApiError):
    status_code = 503


class BootstrapFailedError(ApiError):
    status_code = 500


class BootstrapTimeoutError(ApiError):
    status_code = 504


class ServiceShuttingDownError(ApiError):
    status_code = 503


def describe_validation_error(exc: ValidationError) -> str:
    """Render the first error of a pydantic ``ValidationError`` as one line.

    Unknown keys are reported ahead of anything else. Messages raised from
    our own validators are passed through verbatim; pydantic's built-in
    errors are prefixed with the offending key.
    """
    errors = exc.errors()
    extra = [e for e in errors if e["type"] == "extra_forbidden"]
    error = extra[0] if extra else errors[0]
    loc = ".".join(str(part) for part in error["loc"])
    if error["type"] == "extra_forbidden":
        return f"unknown key '{loc}'"
    if error["type"] == "missing":
        return f"{loc} is required"
    ctx_error = error.get("ctx", {}).get("error")
    if isinstance(ctx_error, ValueError):
        return str(ctx_error)
    return f"{loc}: {error['msg']}" if loc else error["msg"]
