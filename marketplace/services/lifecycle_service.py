"""
Lifecycle Service — workflow operations over projects and milestones.

Every write follows the same pattern:
  1. Call the adapter through `adapter_gateway`.
  2. On success return its result; the next read re-derives the new state.
  3. On RemoteUnavailableError ONLY: log a WARNING naming the operation and
     ids, then apply the equivalent mutation to the shadow store, writing the
     workflow state (ProjectState / MilestoneState) directly.
All other errors propagate unchanged. Reads never fall back.

Consistency hazard: a shadow write leaves the adapter's raw state as it
was. A later read through the aggregator shows the OLD state while the
shadow store shows the NEW one. Nothing reconciles the two.

Every write returns:
    {"source": "remote" | "shadow", "operation": str, "projectId": ..., "data": ...}

Direct `requests` usage is FORBIDDEN in this module.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, MutableMapping
from typing import Any

from flask import current_app

from marketplace.core.exceptions import (
    NotFoundError,
    RemoteUnavailableError,
    UnsupportedTransitionError,
    ValidationError,
)
from marketplace.core.state import MilestoneState, ProjectState, derive_milestone_state, is_invalid
from marketplace.integrations.adapter_gateway import adapter_gateway
from marketplace.services import project_aggregator, scope_draft, shadow_store
from marketplace.utils.helpers import parse_budget, parse_datetime

logger = logging.getLogger(__name__)

SOURCE_REMOTE = "remote"
SOURCE_SHADOW = "shadow"

_PROPOSAL_FIELDS = (
    "title", "summary", "description", "url", "projectType",
    "budget", "deliveryTime", "deliveryDate",
)


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _setting(key: str, default):
    return current_app.config.get(key, default)


def _result(source: str, operation: str, project_id, data: Any, milestone_id=None) -> dict:
    result = {"source": source, "operation": operation, "projectId": project_id, "data": data}
    if milestone_id is not None:
        result["milestoneId"] = milestone_id
    return result


def _with_fallback(
    operation: str,
    remote: Callable[[], Any],
    shadow: Callable[[], Any],
    *,
    project_id,
    milestone_id=None,
) -> dict:
    """Run ``remote``; on RemoteUnavailableError run ``shadow`` instead."""
    try:
        data = remote()
    except RemoteUnavailableError as exc:
        logger.warning(
            "Adapter write %s failed (project=%s milestone=%s); writing to shadow store: %s",
            operation, project_id, milestone_id, exc,
            extra={
                "operation": operation,
                "project_id": str(project_id) if project_id is not None else None,
                "milestone_id": str(milestone_id) if milestone_id is not None else None,
                "source": SOURCE_SHADOW,
                "status": exc.status_code,
            },
        )
        return _result(SOURCE_SHADOW, operation, project_id, shadow(), milestone_id)

    logger.info(
        "Adapter write %s ok (project=%s milestone=%s)", operation, project_id, milestone_id,
        extra={"operation": operation, "source": SOURCE_REMOTE},
    )
    return _result(SOURCE_REMOTE, operation, project_id, data, milestone_id)


def _validate_proposal(data: Mapping, *, partial: bool = False) -> dict:
    """Check proposal fields and return the subset the adapter accepts.

    Raises:
        ValidationError: one ``details`` entry per failing field.
    """
    errors: dict[str, str] = {}

    if not partial or "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors["title"] = "is required"

    budget = data.get("budget")
    if budget not in (None, ""):
        try:
            if parse_budget(budget) < 0:
                errors["budget"] = "must be greater than or equal to 0"
        except ValueError:
            errors["budget"] = "must be a number"

    delivery_date = data.get("deliveryDate")
    if delivery_date not in (None, "") and parse_datetime(delivery_date) is None:
        errors["deliveryDate"] = "must be an ISO 8601 date"

    if errors:
        raise ValidationError("Invalid proposal", details=errors)

    fields = {key: data[key] for key in _PROPOSAL_FIELDS if key in data}
    if isinstance(fields.get("title"), str):
        fields["title"] = fields["title"].strip()
    return fields


def _not_adapted(operation: str, project_id, milestone_id) -> UnsupportedTransitionError:
    logger.error(
        "%s has no adapter handler (project=%s milestone=%s)", operation, project_id, milestone_id,
        extra={"operation": operation, "error_kind": UnsupportedTransitionError.kind},
    )
    return UnsupportedTransitionError(operation)


def _report_anomalies(view: Mapping) -> None:
    project_id = view.get("id")
    if is_invalid(view.get("projectState")):
        logger.warning(
            "Project %s has unmapped raw state %r", project_id, view.get("state"),
            extra={"operation": "derive_project_state", "project_id": str(project_id)},
        )
    for milestone in view.get("milestones", []):
        if is_invalid(milestone.get("milestoneState")):
            logger.warning(
                "Milestone %s of project %s has unmapped raw state %r",
                milestone.get("id"), project_id, milestone.get("state"),
                extra={"operation": "derive_milestone_state", "project_id": str(project_id),
                       "milestone_id": str(milestone.get("id"))},
            )


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def get_project(project_id, draft: Mapping | None = None) -> dict:
    """Denormalised project view with derived states. Never falls back."""
    view = project_aggregator.get_project(project_id, draft=draft)
    _report_anomalies(view)
    return view


def list_projects(client_id=None, developer_id=None, draft: Mapping | None = None) -> list[dict]:
    views = project_aggregator.list_projects(client_id=client_id, developer_id=developer_id, draft=draft)
    for view in views:
        _report_anomalies(view)
    return views


# ═════════════════════════════════════════════════════════════════════════════
# Proposal
# ═════════════════════════════════════════════════════════════════════════════


def submit_proposal(client_id, data: Mapping, token: str) -> dict:
    """Client creates a proposal. The adapter answers with the new project id."""
    fields = _validate_proposal(data)
    version = _setting("PROJECT_CONTRACT_VERSION", "v5")

    def remote():
        return adapter_gateway.deploy_project(version, fields, client_id, token)

    def shadow():
        return shadow_store.create_project(
            {**fields, "clientId": client_id}, state=ProjectState.ProposalPending,
        )

    result = _with_fallback("submit_proposal", remote, shadow, project_id=None)
    if result["source"] == SOURCE_REMOTE:
        result["projectId"] = (result["data"] or {}).get("projectId")
    else:
        result["projectId"] = result["data"]["id"]
    return result


def update_proposal(project_id, data: Mapping, token: str) -> dict:
    fields = _validate_proposal(data, partial=True)
    return _with_fallback(
        "update_proposal",
        lambda: adapter_gateway.update_project(project_id, fields, token),
        lambda: shadow_store.update_project_fields(project_id, fields),
        project_id=project_id,
    )


def publish_proposal(project_id) -> dict:
    """Publish a proposal held in the shadow store.

    - not yet published       -> ProposalPending
    - rejected by coordinator -> WaitingForProposalApproval (republished)
    - anything else           -> UnsupportedTransitionError
    """
    current = shadow_store.find_project(project_id)
    if current is None:
        raise NotFoundError("ShadowProject", project_id)

    state = current["projectState"]
    if state is None:
        target = ProjectState.ProposalPending
    elif state == ProjectState.ProposalRejected:
        target = ProjectState.WaitingForProposalApproval
    else:
        raise UnsupportedTransitionError("publish_proposal", getattr(state, "value", state))

    view = shadow_store.set_project_state(project_id, target)
    return _result(SOURCE_SHADOW, "publish_proposal", project_id, view)


def assign_coordinator(project_id, token: str, consultant_id) -> dict:
    """Consultant takes the proposal.

    The adapter resolves the consultant from the token; ``consultant_id`` is
    what the shadow store records if the adapter is down, so the fallback row
    derives the same state the adapter would.

    Raises:
        ValidationError: ``consultant_id`` is missing.
    """
    if consultant_id in (None, ""):
        raise ValidationError("Consultant is required", details={"consultantId": "is required"})
    return _with_fallback(
        "assign_coordinator",
        lambda: adapter_gateway.assign_coordinator(project_id, token),
        lambda: shadow_store.set_project_consultant(project_id, consultant_id),
        project_id=project_id,
    )


def approve_proposal(project_id, store: MutableMapping) -> dict:
    """Consultant approves the proposal and starts scoping.

    The adapter has no approval endpoint: approval is the opening of a scope
    draft, which makes the project derive to ScopingInProgress.
    """
    draft = scope_draft.start_draft(store, project_id)
    return _result("session", "approve_proposal", project_id, draft)


def reject_proposal(project_id, reason: str, token: str) -> dict:
    return _with_fallback(
        "reject_proposal",
        lambda: adapter_gateway.coordinator_reject(project_id, reason or "", token),
        lambda: shadow_store.set_project_state(
            project_id, ProjectState.ProposalRejected, proposalRejectionReason=reason,
        ),
        project_id=project_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Scope
# ═════════════════════════════════════════════════════════════════════════════


def submit_scope(project_id, store: MutableMapping, token: str, consultant_comment: str = "") -> dict:
    """Publish the consultant's draft as the project's scope.

    The draft is flushed first (milestone creates; any failure propagates and
    leaves the draft intact). Only the final propose step falls back to the
    shadow store.
    """
    draft = scope_draft.get_draft(store, project_id)
    if draft is None:
        raise NotFoundError("ScopeDraft", project_id)
    if not draft["milestones"]:
        raise ValidationError("Scope has no milestones", details={"milestones": "at least one is required"})

    created = scope_draft.flush_draft(store, project_id, token)

    percentage = _setting("SCOPE_ADVANCE_PAYMENT_PERCENTAGE", 10)
    document_hash = _setting("SCOPE_DOCUMENT_HASH", "")

    def shadow():
        view = shadow_store.set_project_state(project_id, ProjectState.ScopeValidationNeeded)
        if consultant_comment:
            shadow_store.add_scope_comment(project_id, consultant_comment)
            view = shadow_store.get_project(project_id)
        return view

    result = _with_fallback(
        "submit_scope",
        lambda: adapter_gateway.propose_scope(project_id, created, percentage, document_hash, token),
        shadow,
        project_id=project_id,
    )
    result["milestones"] = created
    return result


def accept_scope(project_id, client_response: str, token: str) -> dict:
    """Client approves every milestone of the proposed scope."""

    def remote():
        milestone_ids = [m.get("id", m.get("_id")) for m in adapter_gateway.get_all_tasks(project_id)]
        return adapter_gateway.approve_scope(project_id, milestone_ids, token)

    def shadow():
        shadow_store.answer_latest_scope_comment(project_id, client_response)
        return shadow_store.set_project_state(project_id, ProjectState.WaitingForTeamAssignment)

    return _with_fallback("accept_scope", remote, shadow, project_id=project_id)


def reject_scope(project_id, client_response: str, token: str) -> dict:
    def shadow():
        shadow_store.answer_latest_scope_comment(project_id, client_response)
        return shadow_store.set_project_state(project_id, ProjectState.ScopeRejected)

    return _with_fallback(
        "reject_scope",
        lambda: adapter_gateway.reject_scope(project_id, client_response or "", token),
        shadow,
        project_id=project_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Project execution
# ═════════════════════════════════════════════════════════════════════════════


def assign_team(project_id, token: str, team_size: int | None = None) -> dict:
    size = team_size if team_size is not None else _setting("DEFAULT_TEAM_SIZE", 2)
    return _with_fallback(
        "assign_team",
        lambda: adapter_gateway.assign_team(project_id, size, token),
        lambda: shadow_store.set_project_state(project_id, ProjectState.ProjectInProgress),
        project_id=project_id,
    )


def mark_completed(project_id, ratings: list | None, token: str) -> dict:
    return _with_fallback(
        "mark_completed",
        lambda: adapter_gateway.mark_completed(project_id, ratings, token),
        lambda: shadow_store.set_project_state(project_id, ProjectState.Completed),
        project_id=project_id,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Milestones
# ═════════════════════════════════════════════════════════════════════════════


def assign_milestone_developer(project_id, milestone_id, developer_id, token: str) -> dict:
    """Consultant assigns (or, with ``developer_id=None``, unassigns) a milestone's developer."""
    return _with_fallback(
        "assign_milestone_developer",
        lambda: adapter_gateway.update_milestone(
            project_id, milestone_id, {"developerId": developer_id}, token,
        ),
        lambda: shadow_store.set_milestone_developer(project_id, milestone_id, developer_id),
        project_id=project_id,
        milestone_id=milestone_id,
    )


def submit_milestone_for_review(
    project_id,
    milestone_id,
    token: str,
    documentation: str = "",
    links: str = "",
) -> dict:
    """Developer delivers a milestone; documentation/links travel with the submission."""

    def remote():
        if documentation or links:
            adapter_gateway.update_milestone(
                project_id, milestone_id, {"documentation": documentation, "links": links}, token,
            )
        return adapter_gateway.submit_task_for_review(project_id, milestone_id, token)

    return _with_fallback(
        "submit_milestone_for_review",
        remote,
        lambda: shadow_store.set_milestone_state(
            project_id, milestone_id, MilestoneState.WaitingClientAcceptSubmission,
            documentation=documentation, links=links,
        ),
        project_id=project_id,
        milestone_id=milestone_id,
    )


def accept_submission(project_id, milestone_id, token: str) -> dict:
    return _with_fallback(
        "accept_submission",
        lambda: adapter_gateway.complete_task(project_id, milestone_id, token),
        lambda: shadow_store.set_milestone_state(project_id, milestone_id, MilestoneState.MilestoneCompleted),
        project_id=project_id,
        milestone_id=milestone_id,
    )


def reject_submission(project_id, milestone_id, reason: str, token: str) -> dict:
    return _with_fallback(
        "reject_submission",
        lambda: adapter_gateway.reject_task(project_id, milestone_id, reason or "", token),
        lambda: shadow_store.set_milestone_state(
            project_id, milestone_id, MilestoneState.SubmissionRejectedByClient,
        ),
        project_id=project_id,
        milestone_id=milestone_id,
    )


def mark_paid(project_id, milestone_id, token: str) -> dict:
    """Release the remaining payment of a completed milestone.

    Raises:
        UnsupportedTransitionError: the milestone is not MilestoneCompleted.
    """
    milestone = adapter_gateway.get_milestone(project_id, milestone_id)
    state = derive_milestone_state(milestone)
    if state != MilestoneState.MilestoneCompleted:
        logger.error(
            "mark_paid rejected for milestone %s in state %s", milestone_id, state.value,
            extra={"operation": "mark_paid", "project_id": str(project_id),
                   "milestone_id": str(milestone_id)},
        )
        raise UnsupportedTransitionError("mark_paid", state.value)

    return _with_fallback(
        "mark_paid",
        lambda: adapter_gateway.update_milestone(project_id, milestone_id, {"state": "paid"}, token),
        lambda: shadow_store.set_milestone_state(project_id, milestone_id, MilestoneState.Paid),
        project_id=project_id,
        milestone_id=milestone_id,
    )


def developer_accept_milestone(project_id, milestone_id, token: str | None = None) -> dict:
    raise _not_adapted("developer_accept_milestone", project_id, milestone_id)


def developer_reject_milestone(project_id, milestone_id, token: str | None = None) -> dict:
    raise _not_adapted("developer_reject_milestone", project_id, milestone_id)


def rollback_rejected_submission(project_id, milestone_id, token: str | None = None) -> dict:
    raise _not_adapted("rollback_rejected_submission", project_id, milestone_id)
