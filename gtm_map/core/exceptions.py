"""Application exception types and the handlers that render them."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException


logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        super().__init__(message or self.public_message)
        self.context = context

    def response_body(self) -> Dict[str, Any]:
        return {"message": self.public_message}


class ConfigurationError(AppError):
    """Required configuration is missing or inconsistent."""


class UnknownPlan(AppError):
    """A plan identifier has no catalog entry."""

    def __init__(self, plan_id: Optional[str]) -> None:
        super().__init__(f"Unknown plan: {plan_id!r}", plan_id=plan_id)
        self.plan_id = plan_id


class NotFound(AppError):
    """Subscription or usage rows are missing for an authenticated user."""

    status_code = status.HTTP_409_CONFLICT
    public_message = "Account setup incomplete"

    def __init__(self, user_id: Any, what: str) -> None:
        super().__init__(f"No {what} row for user {user_id}", user_id=str(user_id))
        self.user_id = user_id
        self.what = what


class AlreadyExists(AppError):
    """A one-time record (e.g. the trial) was already provisioned."""

    status_code = status.HTTP_409_CONFLICT
    public_message = "Subscription already exists"

    def __init__(self, user_id: Any) -> None:
        super().__init__(f"Subscription already exists for {user_id}", user_id=str(user_id))
        self.user_id = user_id


class ProviderError(AppError):
    """An upstream payment or AI provider call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    public_message = "Upstream provider unavailable, please retry"

    def __init__(self, provider: str, detail: str) -> None:
        super().__init__(f"{provider}: {detail}", provider=provider)
        self.provider = provider
        self.detail = detail


class InvalidWebhookSignature(AppError):
    """The webhook payload failed signature verification."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid signature"


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if isinstance(exc, NotFound):
        logger.warning(
            f"Provisioning gap on {request.url.path}: {exc} (user_id={exc.user_id})"
        )
    elif isinstance(exc, ProviderError):
        logger.error(f"Provider failure on {request.url.path}: {exc}")
    elif isinstance(exc, InvalidWebhookSignature):
        logger.warning(f"Rejected webhook on {request.url.path}: {exc}")
    elif exc.status_code >= 500:
        logger.error(f"Internal error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.response_body())


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"message": "Invalid input data", "details": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the JSON error renderers used across the API."""

    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
