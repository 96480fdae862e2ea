"""Translate engine ``Err`` values into HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from smartpick_api.services.messages import render_message, resolve_locale
from smartpick_api.services.results import Err, ErrorKind


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_CLAIMED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_LIFTED: status.HTTP_409_CONFLICT,
    ErrorKind.RACE_LOST: status.HTTP_409_CONFLICT,
    ErrorKind.SUSPENDED: status.HTTP_423_LOCKED,
    ErrorKind.IN_COOLDOWN: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.LIMIT_REACHED: status.HTTP_429_TOO_MANY_REQUESTS,
}


class EngineErrorResponse(Exception):
    """Raised by endpoints to short-circuit with a rendered ``Err``."""

    def __init__(self, error: Err) -> None:
        super().__init__(error.key)
        self.error = error


def raise_for_err(error: Err) -> None:
    raise EngineErrorResponse(error)


async def _engine_error_handler(request: Request, exc: EngineErrorResponse) -> JSONResponse:
    error = exc.error
    locale = resolve_locale(request.headers.get("accept-language"))
    payload: dict[str, object] = {
        "success": False,
        "error": error.kind.value,
        "code": error.key,
        "message": render_message(error.key, locale, **error.params),
    }
    if error.params:
        payload["details"] = {key: str(value) for key, value in error.params.items()}
    return JSONResponse(status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST), content=payload)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EngineErrorResponse, _engine_error_handler)


__all__ = ["EngineErrorResponse", "STATUS_BY_KIND", "install_error_handlers", "raise_for_err"]
