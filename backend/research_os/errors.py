from __future__ import annotations

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

# purpose: structured error taxonomy shared by the lifecycle core and routers
# status: active


class LifecycleError(HTTPException):
    """Base error carrying a machine-readable ``kind`` next to the message."""

    kind = "Error"
    status_code = 500

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.kind)


class Unauthorized(LifecycleError):
    kind = "Unauthorized"
    status_code = 401

    def __init__(self, detail: str | None = None):
        super().__init__(detail or "Not authenticated")
        self.headers = {"WWW-Authenticate": "Bearer"}


class Forbidden(LifecycleError):
    kind = "Forbidden"
    status_code = 403

    def __init__(self, detail: str | None = None):
        super().__init__(detail or "Not authorized")


class NotFound(LifecycleError):
    kind = "NotFound"
    status_code = 404

    def __init__(self, detail: str | None = None):
        super().__init__(detail or "Not found")


class InvalidArgument(LifecycleError):
    kind = "InvalidArgument"
    status_code = 400


class Conflict(LifecycleError):
    kind = "Conflict"
    status_code = 409


class ArchiveAborted(Conflict):
    """A cascading archive stopped part-way; ``archived_count`` rows were written."""

    def __init__(self, archived_count: int, detail: str | None = None):
        super().__init__(detail or f"Archive aborted after {archived_count} entities")
        self.archived_count = archived_count


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    body: dict = {"kind": exc.kind, "detail": exc.detail}
    if isinstance(exc, ArchiveAborted):
        body["archived_count"] = exc.archived_count
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))
