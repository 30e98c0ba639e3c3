"""
Scope draft — the consultant's unpublished, ordered list of milestone proposals.

The draft lives in a caller-supplied mutable mapping (a Flask ``session`` in
production, a plain dict in tests) under the ``"scope"`` key:

    {"project_id": "5Gx...", "milestones": [{...}, {...}]}

This module never owns session storage: every operation takes the store
explicitly. A store holds at most one draft, so a consultant scopes one
project at a time.

Ordering is the list index. The only reordering primitive is a pairwise
swap; callers must not cache indices across calls because ``remove_entry``
shifts later entries down.

Concurrency: no locking. Two requests from the same session mutating the
same draft race, last write wins.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping

from marketplace.core.exceptions import (
    ConflictError,
    IndexOutOfRangeError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from marketplace.integrations.adapter_gateway import AdapterGateway, adapter_gateway
from marketplace.utils.helpers import parse_budget

logger = logging.getLogger(__name__)

DRAFT_KEY = "scope"

# Keys that only exist once a milestone is persisted remotely
_REMOTE_ONLY_KEYS = ("id", "_id", "__v", "state", "createdAt", "updatedAt")


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _touch(store: MutableMapping) -> None:
    # Flask sessions do not notice in-place mutation of nested values
    if hasattr(store, "modified"):
        store.modified = True


def _require_draft(store: MutableMapping, project_id: str) -> dict:
    draft = store.get(DRAFT_KEY)
    if not draft or str(draft.get("project_id")) != str(project_id):
        raise NotFoundError("ScopeDraft", project_id)
    return draft


def _check_index(draft: dict, index: int) -> None:
    size = len(draft["milestones"])
    if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < size:
        raise IndexOutOfRangeError(index, size)


def validate_entry(entry: dict) -> dict:
    """Validate a milestone proposal and return a clean copy.

    Rules:
      - title: required, non-blank
      - budget: optional; when present must be numeric and >= 0

    Raises:
        ValidationError: one ``details`` entry per failing field.
    """
    errors: dict[str, str] = {}

    title = entry.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        errors["title"] = "is required"

    budget = entry.get("budget")
    if budget not in (None, ""):
        try:
            if parse_budget(budget) < 0:
                errors["budget"] = "must be greater than or equal to 0"
        except ValueError:
            errors["budget"] = "must be a number"

    if errors:
        raise ValidationError("Invalid milestone proposal", details=errors)

    clean = {k: v for k, v in entry.items() if k not in _REMOTE_ONLY_KEYS}
    clean["title"] = title
    return clean


# ═════════════════════════════════════════════════════════════════════════════
# Draft operations
# ═════════════════════════════════════════════════════════════════════════════


def start_draft(store: MutableMapping, project_id: str) -> dict:
    """Open an empty draft for ``project_id``.

    Restarting the draft for the same project resets it to an empty list.

    Raises:
        ConflictError: a draft for a different project already exists.
    """
    current = store.get(DRAFT_KEY)
    if current and str(current.get("project_id")) != str(project_id):
        raise ConflictError("ScopeDraft", "project_id", current.get("project_id"))

    draft = {"project_id": str(project_id), "milestones": []}
    store[DRAFT_KEY] = draft
    _touch(store)
    logger.info("Scope draft started", extra={"operation": "start_draft", "project_id": str(project_id)})
    return draft


def get_draft(store: MutableMapping, project_id: str | None = None) -> dict | None:
    """Return the store's draft, or None. With ``project_id``, only a matching draft."""
    draft = store.get(DRAFT_KEY)
    if not draft:
        return None
    if project_id is not None and str(draft.get("project_id")) != str(project_id):
        return None
    return draft


def append_entry(store: MutableMapping, project_id: str, entry: dict) -> dict:
    """Validate and append a milestone proposal. Returns the stored entry."""
    draft = _require_draft(store, project_id)
    clean = validate_entry(entry)
    draft["milestones"].append(clean)
    _touch(store)
    return clean


def swap_entries(store: MutableMapping, project_id: str, index_a: int, index_b: int) -> list[dict]:
    """Exchange two entries in place. Returns the reordered list."""
    draft = _require_draft(store, project_id)
    _check_index(draft, index_a)
    _check_index(draft, index_b)
    entries = draft["milestones"]
    entries[index_a], entries[index_b] = entries[index_b], entries[index_a]
    _touch(store)
    return entries


def update_entry(store: MutableMapping, project_id: str, index: int, entry: dict) -> dict:
    """Replace the entry at ``index`` with a validated copy, keeping its position."""
    draft = _require_draft(store, project_id)
    _check_index(draft, index)
    clean = validate_entry(entry)
    draft["milestones"][index] = clean
    _touch(store)
    return clean


def remove_entry(store: MutableMapping, project_id: str, index: int) -> dict:
    """Remove one entry; later entries shift down. Returns the removed entry."""
    draft = _require_draft(store, project_id)
    _check_index(draft, index)
    removed = draft["milestones"].pop(index)
    _touch(store)
    return removed


def discard_draft(store: MutableMapping, project_id: str) -> None:
    """Abandon the draft without publishing anything."""
    _require_draft(store, project_id)
    store.pop(DRAFT_KEY, None)
    _touch(store)
    logger.info("Scope draft discarded", extra={"operation": "discard_draft", "project_id": str(project_id)})


def flush_draft(
    store: MutableMapping,
    project_id: str,
    token: str,
    gateway: AdapterGateway | None = None,
) -> list[dict]:
    """Create every draft entry remotely, in order, then clear the draft.

    All-or-nothing from the draft's point of view: if any create fails the
    draft is left exactly as it was, milestones already created during this
    flush are deleted again (best effort, logged), and the original error is
    re-raised.

    Returns:
        The adapter payloads of the created milestones, in draft order.
    """
    gateway = gateway or adapter_gateway
    draft = _require_draft(store, project_id)
    entries = [dict(entry) for entry in draft["milestones"]]

    created: list[dict] = []
    try:
        for entry in entries:
            created.append(gateway.create_milestone(project_id, entry, token))
    except LifecycleError as exc:
        logger.warning(
            "Scope flush failed after %d/%d milestones: %s", len(created), len(entries), exc,
            extra={"operation": "flush_draft", "project_id": str(project_id), "error_kind": exc.kind},
        )
        _compensate(gateway, project_id, created, token)
        raise

    store.pop(DRAFT_KEY, None)
    _touch(store)
    logger.info(
        "Scope draft flushed: %d milestones created", len(created),
        extra={"operation": "flush_draft", "project_id": str(project_id)},
    )
    return created


def _compensate(gateway: AdapterGateway, project_id: str, created: list[dict], token: str) -> None:
    """Delete milestones created by a failed flush, newest first."""
    for milestone in reversed(created):
        milestone_id = milestone.get("_id") or milestone.get("id") if isinstance(milestone, dict) else None
        if milestone_id is None:
            logger.error(
                "Cannot roll back created milestone without id",
                extra={"operation": "flush_draft", "project_id": str(project_id)},
            )
            continue
        try:
            gateway.delete_milestone(project_id, milestone_id, token)
        except LifecycleError as exc:
            logger.error(
                "Rollback of milestone %s failed: %s", milestone_id, exc,
                extra={"operation": "flush_draft", "project_id": str(project_id),
                       "milestone_id": str(milestone_id)},
            )
