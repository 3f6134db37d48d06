"""
Workbench exception hierarchy.

Services raise these; blueprints register handlers against them once and
map them to consistent HTTP responses. Per-item problems inside the
classification / archive core are never raised (they degrade to skips or
fallback placement), so these only cover request-level failures.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Workspace", resource_id=42)
    raise ValidationError("Unknown category", details={"category": "..."})
"""


class NotFoundError(Exception):
    """Raised when a workspace, item, tree node or spec does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Workspace", "UploadedItem").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown (field name → problem).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class GenerationError(Exception):
    """Raised when the LLM call for a specification fails after all retries.

    Maps to HTTP 502. The underlying provider error is kept for logging only.
    """

    def __init__(self, message: str, provider: str | None = None, cause: Exception | None = None) -> None:
        self.provider = provider
        self.cause = cause
        super().__init__(message)
