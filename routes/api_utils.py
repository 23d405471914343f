"""Shared helpers for API routes (error handling and logging)."""

from __future__ import annotations

import inspect
import json
from functools import wraps
from typing import Any, Callable, TypeVar

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

F = TypeVar("F", bound=Callable[..., Any])


class APIError(Exception):
    """Base class for API errors that includes an HTTP status code."""

    status_code: int = 500
    message: str = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    def to_dict(self) -> dict[str, Any]:
        data = {"error": self.message}
        data.update(self.payload)
        return data


class BadRequestError(APIError):
    status_code = 400
    message = "Invalid request."


class NotFoundError(APIError):
    status_code = 404
    message = "Resource not found."


class ConfigurationError(APIError):
    status_code = 500
    message = "Server is missing required configuration."


class UpstreamServiceError(APIError):
    status_code = 502
    message = "Upstream service unavailable."


def _collect_request_context() -> dict[str, Any]:
    context: dict[str, Any] = {
        "route": request.path,
        "endpoint": request.endpoint,
        "method": request.method,
        "view_args": dict(request.view_args or {}),
        "args": _redact(request.args.to_dict(flat=False)),
    }

    json_payload = request.get_json(silent=True)
    if json_payload is not None:
        context["json"] = json_payload

    return context


def _redact(args: dict[str, Any]) -> dict[str, Any]:
    if "key" in args:
        args["key"] = ["***"]
    return args


def _serialize_context(context: dict[str, Any]) -> str:
    try:
        return json.dumps(context, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(context)


def _log_api_error(exc: Exception, *, status_code: int, handled: bool) -> None:
    context = _collect_request_context()
    context["status_code"] = status_code
    context_str = _serialize_context(context)
    if handled and status_code < 500:
        current_app.logger.warning(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str
        )
        return
    if handled:
        current_app.logger.error(
            "Handled API error (%s): %s | context=%s", status_code, exc, context_str,
            exc_info=exc,
        )
        return
    current_app.logger.exception(
        "Unhandled API error (%s): %s | context=%s", status_code, exc, context_str
    )


def _error_response(exc: Exception):
    if isinstance(exc, APIError):
        _log_api_error(exc, status_code=exc.status_code, handled=True)
        return jsonify(exc.to_dict()), exc.status_code
    if isinstance(exc, HTTPException):
        status_code = exc.code or 500
        api_error = APIError(message=exc.description or str(exc), status_code=status_code)
        _log_api_error(exc, status_code=status_code, handled=True)
        return jsonify(api_error.to_dict()), status_code
    _log_api_error(exc, status_code=500, handled=False)
    return jsonify({"error": "Internal server error"}), 500


def handle_api_errors(func: F) -> F:
    """Decorator that centralizes API error handling and logging.

    Works for both regular and ``async def`` views.
    """

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any):
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                return _error_response(exc)

        return async_wrapper  # type: ignore[return-value]

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            return _error_response(exc)

    return wrapper  # type: ignore[return-value]


__all__ = [
    "APIError",
    "BadRequestError",
    "ConfigurationError",
    "NotFoundError",
    "UpstreamServiceError",
    "handle_api_errors",
]
