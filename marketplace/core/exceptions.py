"""
Lifecycle exception hierarchy.

Every error the lifecycle engine lets escape to a caller derives from
``LifecycleError`` and carries:
  - a human-readable message (``str(exc)``)
  - a machine-discriminable ``kind`` string

The app factory registers one handler per kind, so callers never need to
import service modules to map an error to an HTTP status.

Usage:
    from marketplace.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id="5Gx...")
    raise ValidationError("Title is required", details={"title": "must not be empty"})
"""


class LifecycleError(Exception):
    """Base class for every error surfaced by the lifecycle engine."""

    kind = "lifecycle_error"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self)}


class NotFoundError(LifecycleError):
    """Raised when a project, milestone, client, developer or draft does not exist.

    Terminal for the request; maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Milestone").
        resource_id: The id that was looked up (adapter address or surrogate id).
    """

    kind = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(LifecycleError):
    """Raised when input fails field-level validation on a create/update path.

    Recoverable: the user corrects the fields and retries. Maps to HTTP 422.

    Args:
        message: Human-readable summary.
        details: Field name -> error description. One entry per failing field.
    """

    kind = "validation"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["details"] = self.details
        return body


class RemoteUnavailableError(LifecycleError):
    """Raised when the adapter cannot be reached, times out, or answers 5xx.

    Write paths in the lifecycle service catch this and fall back to the
    shadow store. Read paths propagate it (retryable by the user).

    Args:
        operation: Gateway operation name (e.g. "coordinator_reject").
        target_id: Project/milestone id the call was about, if any.
        status_code: HTTP status when the adapter answered, None on network failure.
        reason: Short description of the failure.
    """

    kind = "remote_unavailable"

    def __init__(
        self,
        operation: str,
        target_id: int | str | None = None,
        status_code: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.operation = operation
        self.target_id = target_id
        self.status_code = status_code
        self.reason = reason
        msg = f"Adapter unavailable during {operation}"
        if target_id is not None:
            msg += f" (id={target_id})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(LifecycleError):
    """Raised when an operation conflicts with existing state.

    Examples: starting a second scope draft in the same session, or an
    invalid reorder. Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The field that conflicts.
        value: The conflicting value.
    """

    kind = "conflict"

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} conflict on {field}={value!r}"
        super().__init__(msg)


class IndexOutOfRangeError(ConflictError):
    """Raised when a draft index does not address an existing entry."""

    kind = "index_out_of_range"

    def __init__(self, index: int, size: int) -> None:
        super().__init__("ScopeDraft", "index", index)
        self.index = index
        self.size = size
        self.args = (f"Draft index {index} out of range (size={size})",)


class UnsupportedTransitionError(LifecycleError):
    """Raised when a workflow operation has no handler for the current state.

    Signals a workflow-sequencing bug or an operation the adapter does not
    implement yet. Maps to HTTP 409 and is logged at ERROR.

    Args:
        operation: The requested workflow operation.
        state: The state the target was in (derived or raw), if known.
    """

    kind = "unsupported_transition"

    def __init__(self, operation: str, state: str | None = None) -> None:
        self.operation = operation
        self.state = state
        msg = f"Cannot '{operation}'"
        if state is not None:
            msg += f" from state '{state}'"
        super().__init__(msg)
