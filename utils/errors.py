"""
Error Taxonomy - Application Exceptions

Every error raised inside the ingestion pipeline derives from AppError so
callers can tell retryable failures (ExternalServiceError) from bad input
(ValidationError) and from bugs (InternalError).

Usage:
    from utils.errors import NotFoundError

    raise NotFoundError("Article", article_id)
"""

from typing import Any


class AppError(Exception):
    """Base class for application errors carrying an HTTP-ish status code."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(AppError):
    """Bad input. Not retryable."""

    status_code = 400

    def __init__(self, message: str, fields: dict[str, str] | None = None) -> None:
        super().__init__(message, {"fields": fields or {}})
        self.fields = fields or {}


class NotFoundError(AppError):
    """Missing article, tag or user."""

    status_code = 404

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        super().__init__(f"{resource} not found", {"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class ExternalServiceError(AppError):
    """Fetch, extraction or LLM failure. Retryable by the retry sweep."""

    status_code = 503
    retryable = True

    def __init__(
        self,
        service: str,
        detail: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        message = f"{service}: {detail}" if detail else f"External service error: {service}"
        super().__init__(
            message,
            {
                "service": service,
                "original_message": str(original) if original is not None else None,
            },
        )
        self.service = service


class SSRFError(ExternalServiceError):
    """Target URL points at a private, loopback, link-local or metadata address."""

    def __init__(self, detail: str) -> None:
        super().__init__("SSRF protection", detail)


class FetchTimeoutError(ExternalServiceError):
    """The fetch exceeded its wall-clock budget."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            "Request timeout",
            f"failed to fetch URL within {timeout_seconds:g} seconds",
        )
        self.timeout_seconds = timeout_seconds


class InternalError(AppError):
    """Unexpected state or a bug. Logged at error level."""

    status_code = 500

    def __init__(
        self,
        message: str = "Internal server error",
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)


class InvalidTransitionError(InternalError):
    """An article status change that the state machine does not allow."""

    def __init__(self, source: str, target: str) -> None:
        super().__init__(
            f"Invalid status transition: {source} -> {target}",
            {"source": source, "target": target},
        )
        self.source = source
        self.target = target
