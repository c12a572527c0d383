from __future__ import annotations

from fastapi import HTTPException


def bad_request(code: str, message: str):
    raise HTTPException(status_code=400, detail={"code": code, "message": message})


def unauthorized(code: str, message: str):
    raise HTTPException(status_code=401, detail={"code": code, "message": message})


def forbidden(code: str, message: str):
    raise HTTPException(status_code=403, detail={"code": code, "message": message})


def not_found(code: str, message: str):
    raise HTTPException(status_code=404, detail={"code": code, "message": message})


def conflict(code: str, message: str):
    raise HTTPException(status_code=409, detail={"code": code, "message": message})


def service_unavailable(code: str, message: str):
    raise HTTPException(status_code=503, detail={"code": code, "message": message})


# ──────────────────────────────────────────────────────────────
# Store-level errors (raised by services, mapped to HTTP by the app exception handler)
# ──────────────────────────────────────────────────────────────

class CommunityStoreError(ValueError):
    code = "store_error"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code:
            self.code = code


class ValidationError(CommunityStoreError):
    code = "validation_error"


class NotFoundError(CommunityStoreError):
    code = "not_found"


class PermissionDeniedError(CommunityStoreError):
    code = "forbidden"


class ConflictError(CommunityStoreError):
    code = "conflict"


def status_code_for(exc: CommunityStoreError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, ConflictError):
        return 409
    return 400
