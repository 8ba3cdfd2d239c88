"""Maps hub exceptions to HTTP responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import (
    ConnectorError,
    ConnectorNotFound,
    HubError,
    InvalidState,
    NotFound,
    ValidationError,
)


STATUS_BY_ERROR = [
    (ValidationError, 422),
    (NotFound, 404),
    (ConnectorNotFound, 404),
    (InvalidState, 409),
    (ConnectorError, 502),
]


def status_for(exc: HubError) -> int:
    for error_cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


async def hub_error_handler(request: Request, exc: HubError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HubError, hub_error_handler)
