"""Standardised API error responses.

Usage
-----
    from marketplace.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Project not found")
    return api_error(E.VALIDATION_INVALID, "Invalid milestone", details={"budget": "must be >= 0"})
    return error_response(exc)   # any LifecycleError
"""

from __future__ import annotations

from flask import jsonify

from marketplace.core.exceptions import LifecycleError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every lifecycle error
    """

    # Validation – HTTP 422
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    INDEX_OUT_OF_RANGE = "ERR_INDEX_OUT_OF_RANGE"
    UNSUPPORTED_TRANSITION = "ERR_UNSUPPORTED_TRANSITION"

    # Remote adapter – HTTP 503
    REMOTE_UNAVAILABLE = "ERR_REMOTE_UNAVAILABLE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.INDEX_OUT_OF_RANGE: 409,
    E.UNSUPPORTED_TRANSITION: 409,
    E.REMOTE_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}

# LifecycleError.kind -> error code
KIND_CODES: dict[str, str] = {
    "validation": E.VALIDATION_INVALID,
    "not_found": E.NOT_FOUND,
    "conflict": E.CONFLICT_STATE,
    "index_out_of_range": E.INDEX_OUT_OF_RANGE,
    "unsupported_transition": E.UNSUPPORTED_TRANSITION,
    "remote_unavailable": E.REMOTE_UNAVAILABLE,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    kind: str | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    kind : str, optional
        ``LifecycleError.kind`` of the originating exception.
    details : dict, optional
        Extra structured payload (field errors, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if kind:
        body["kind"] = kind
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_response(exc: LifecycleError):
    """Render any LifecycleError with the code matching its ``kind``."""
    code = KIND_CODES.get(exc.kind, E.INTERNAL)
    return api_error(code, str(exc), kind=exc.kind, details=getattr(exc, "details", None))
