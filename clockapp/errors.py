from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class RemoteStoreError(Exception):
    """The remote document store could not be read or written."""


class BlobSinkError(Exception):
    """A photo could not be uploaded to the remote blob sink."""


class PhotoStagingError(Exception):
    """Captured photo bytes could not be staged as a local file."""


class ActionResolutionError(Exception):
    """The next clock action could not be derived from remote history."""


class SyncRunError(Exception):
    """A synchronizer run failed as a whole and should be retried."""


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
