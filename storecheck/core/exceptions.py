"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Three of them classify failures inside the evaluation and sync paths:

  TransientIOError      network/persistence failure. Sync retries the whole
                        submission on the next drain; evaluators log and skip.
  DataIntegrityGap      a field, condition or response a rule expected is
                        missing. Skipped, never fatal.
  ConfigurationMissing  no document-number field, no job function, no TTL
                        setting. Treated as an intentional no-op or default.

Usage:
    from storecheck.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ActionPlan", resource_id=42)
    raise ValidationError("template_id is required", details={"template_id": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Checklist").
        resource_id: The PK that was looked up.
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
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class TransientIOError(Exception):
    """Network or persistence failure that is expected to go away on retry.

    Maps to HTTP 503.
    """


class OfflineError(TransientIOError):
    """Raised when an operation needs connectivity and the device is offline."""


class DataIntegrityGap(Exception):
    """A field, condition or response expected by a rule is missing."""


class ConfigurationMissing(Exception):
    """Optional configuration is absent; callers fall back to a default or no-op."""
