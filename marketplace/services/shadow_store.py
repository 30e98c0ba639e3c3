"""
Shadow store service — local fallback writes.

Only the lifecycle service calls into this module, and only after the
adapter failed a write with RemoteUnavailableError. Rows store workflow
states (``ProjectState`` / ``MilestoneState`` values) directly.

Projects are addressed by their adapter id (``external_id``). Projects that
were created while the adapter was down have no adapter id; they are
addressed by their integer surrogate id instead.

There is no reconciliation back to the adapter: a shadow write leaves the
remote raw state untouched. Every write goes through this module so an
outbox/replay job can be attached here later without touching callers.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from marketplace.core.exceptions import NotFoundError, ValidationError
from marketplace.core.state import MilestoneState, ProjectState
from marketplace.models import db
from marketplace.models.shadow import (
    MILESTONE_STATES,
    PROJECT_STATES,
    ShadowMilestone,
    ShadowProject,
    ShadowScopeComment,
)
from marketplace.utils.helpers import db_commit_or_raise, parse_budget, parse_datetime

logger = logging.getLogger(__name__)

# camelCase input key -> column name
_PROJECT_FIELDS = {
    "title": "title",
    "summary": "summary",
    "description": "description",
    "url": "url",
    "budget": "budget",
    "deliveryTime": "delivery_time",
    "deliveryDate": "delivery_date",
    "clientId": "client_id",
    "consultantId": "consultant_id",
    "proposalRejectionReason": "proposal_rejection_reason",
}

_MILESTONE_FIELDS = {
    "title": "title",
    "description": "description",
    "budget": "budget",
    "deliveryTime": "delivery_time",
    "deliveryDate": "delivery_date",
    "developerId": "developer_id",
    "documentation": "documentation",
    "links": "links",
}


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _state_value(state, allowed: set[str]) -> str:
    value = state.value if hasattr(state, "value") else state
    if value not in allowed:
        raise ValidationError("Unknown workflow state", details={"state": str(value)})
    return value


def _coerce(column: str, value):
    if column == "delivery_date":
        return parse_datetime(value)
    if column in ("client_id", "consultant_id", "developer_id") and value is not None:
        return str(value)
    return value


def _apply_fields(row, data: dict, mapping: dict[str, str]) -> None:
    for key, column in mapping.items():
        if key in data:
            setattr(row, column, _coerce(column, data[key]))
        elif column in data:
            setattr(row, column, _coerce(column, data[column]))


def _find_project(project_id) -> ShadowProject | None:
    stmt = select(ShadowProject).where(ShadowProject.external_id == str(project_id))
    row = db.session.execute(stmt).scalar_one_or_none()
    if row is None and str(project_id).isdigit():
        # Surrogate ids only address rows created offline; adapter ids may be all digits too
        candidate = db.session.get(ShadowProject, int(project_id))
        if candidate is not None and candidate.external_id is None:
            row = candidate
    return row


def _require_project(project_id) -> ShadowProject:
    row = _find_project(project_id)
    if row is None:
        raise NotFoundError("ShadowProject", project_id)
    return row


def _find_milestone(project: ShadowProject, milestone_id) -> ShadowMilestone | None:
    stmt = select(ShadowMilestone).where(
        ShadowMilestone.project_id == project.id,
        ShadowMilestone.external_id == str(milestone_id),
    )
    row = db.session.execute(stmt).scalar_one_or_none()
    if row is None and str(milestone_id).isdigit():
        candidate = db.session.get(ShadowMilestone, int(milestone_id))
        if candidate is not None and candidate.project_id == project.id and candidate.external_id is None:
            row = candidate
    return row


def _next_display_order(project: ShadowProject) -> int:
    stmt = select(func.max(ShadowMilestone.display_order)).where(
        ShadowMilestone.project_id == project.id,
    )
    current = db.session.execute(stmt).scalar()
    return 0 if current is None else current + 1


def _ensure_milestone(project_id, milestone_id, title=None) -> ShadowMilestone:
    """Return the shadow row for an adapter milestone, opening a placeholder when missing."""
    project = ensure_project(project_id)
    row = _find_milestone(project, milestone_id)
    if row is None:
        row = ShadowMilestone(
            project_id=project.id,
            external_id=str(milestone_id),
            title=title or f"Milestone {milestone_id}",
            display_order=_next_display_order(project),
        )
        db.session.add(row)
    return row


def _project_view(row: ShadowProject) -> dict:
    view = row.to_dict()
    view["source"] = "shadow"
    if row.state is None:
        view["projectState"] = None
    elif row.state in PROJECT_STATES:
        view["projectState"] = ProjectState(row.state)
    else:
        view["projectState"] = ProjectState.Invalid
    for milestone in view["milestones"]:
        state = milestone["state"]
        milestone["milestoneState"] = (
            MilestoneState(state) if state in MILESTONE_STATES else MilestoneState.Invalid
        )
    return view


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


def ensure_project(external_id, **fields) -> ShadowProject:
    """Return the shadow row for an adapter project, creating it when missing.

    Does NOT commit; the caller owns the transaction.
    """
    row = _find_project(external_id)
    if row is None:
        row = ShadowProject(external_id=str(external_id))
        _apply_fields(row, fields, _PROJECT_FIELDS)
        db.session.add(row)
        db.session.flush()
        logger.debug("Shadow row opened for project %s", external_id,
                     extra={"project_id": str(external_id)})
    return row


def create_project(data: dict, *, state=None, external_id=None) -> dict:
    """Insert a project that the adapter could not create.

    Args:
        data: camelCase project fields (title, summary, budget, clientId, ...).
        state: Initial ProjectState, or None for an unpublished proposal.
        external_id: Adapter id when already known.
    """
    row = ShadowProject(external_id=str(external_id) if external_id is not None else None)
    _apply_fields(row, data, _PROJECT_FIELDS)
    if state is not None:
        row.state = _state_value(state, PROJECT_STATES)
    db.session.add(row)
    db_commit_or_raise("ShadowProject")
    logger.info("Shadow project %s created", row.id, extra={"project_id": str(row.id), "source": "shadow"})
    return _project_view(row)


def update_project_fields(project_id, data: dict) -> dict:
    row = ensure_project(project_id)
    _apply_fields(row, data, _PROJECT_FIELDS)
    db_commit_or_raise("ShadowProject")
    return _project_view(row)


def set_project_state(project_id, state, **extra) -> dict:
    """Record a workflow transition locally; ``extra`` holds camelCase fields to set alongside."""
    row = ensure_project(project_id)
    row.state = _state_value(state, PROJECT_STATES)
    _apply_fields(row, extra, _PROJECT_FIELDS)
    db_commit_or_raise("ShadowProject")
    logger.info("Shadow project %s -> %s", project_id, row.state,
                extra={"project_id": str(project_id), "source": "shadow"})
    return _project_view(row)


def set_project_consultant(project_id, consultant_id, state=ProjectState.WaitingForProposalApproval) -> dict:
    return set_project_state(project_id, state, consultantId=consultant_id)


def get_project(project_id) -> dict:
    """Return the shadow view of a project; ``projectState`` is the stored state."""
    return _project_view(_require_project(project_id))


def find_project(project_id) -> dict | None:
    row = _find_project(project_id)
    return _project_view(row) if row is not None else None


def list_projects(client_id=None, consultant_id=None) -> list[dict]:
    """Return shadow projects, most recently created first."""
    stmt = select(ShadowProject)
    if client_id is not None:
        stmt = stmt.where(ShadowProject.client_id == str(client_id))
    if consultant_id is not None:
        stmt = stmt.where(ShadowProject.consultant_id == str(consultant_id))
    stmt = stmt.order_by(ShadowProject.created_at.desc(), ShadowProject.id.desc())
    return [_project_view(row) for row in db.session.execute(stmt).scalars()]


def destroy_project(project_id) -> None:
    row = _require_project(project_id)
    db.session.delete(row)
    db_commit_or_raise("ShadowProject")
    logger.info("Shadow project %s destroyed", project_id, extra={"project_id": str(project_id)})


# ═════════════════════════════════════════════════════════════════════════════
# Milestones
# ═════════════════════════════════════════════════════════════════════════════


def create_milestone(project_id, data: dict, *, state=None, external_id=None) -> dict:
    """Insert a milestone at the end of the project's display order.

    Raises:
        ValidationError: missing title or negative/non-numeric budget.
    """
    title = (data.get("title") or "").strip() if isinstance(data.get("title"), str) else ""
    if not title:
        raise ValidationError("Invalid milestone", details={"title": "is required"})
    budget = data.get("budget")
    if budget not in (None, ""):
        try:
            budget = parse_budget(budget)
        except ValueError:
            raise ValidationError("Invalid milestone", details={"budget": "must be a number"})
        if budget < 0:
            raise ValidationError("Invalid milestone", details={"budget": "must be greater than or equal to 0"})

    project = ensure_project(project_id)
    row = ShadowMilestone(
        project_id=project.id,
        external_id=str(external_id) if external_id is not None else None,
        display_order=_next_display_order(project),
    )
    _apply_fields(row, {**data, "title": title, "budget": budget if budget != "" else None},
                  _MILESTONE_FIELDS)
    if state is not None:
        row.state = _state_value(state, MILESTONE_STATES)
    db.session.add(row)
    db_commit_or_raise("ShadowMilestone")
    return row.to_dict()


def set_milestone_state(project_id, milestone_id, state, **extra) -> dict:
    """Record a milestone transition locally, opening a placeholder row when needed."""
    row = _ensure_milestone(project_id, milestone_id, extra.pop("title", None))
    row.state = _state_value(state, MILESTONE_STATES)
    _apply_fields(row, extra, _MILESTONE_FIELDS)
    db_commit_or_raise("ShadowMilestone")
    logger.info("Shadow milestone %s -> %s", milestone_id, row.state,
                extra={"project_id": str(project_id), "milestone_id": str(milestone_id),
                       "source": "shadow"})
    return row.to_dict()


def set_milestone_developer(project_id, milestone_id, developer_id) -> dict:
    """Replace the milestone's developer assignment; ``None`` clears it."""
    row = _ensure_milestone(project_id, milestone_id)
    row.developer_id = str(developer_id) if developer_id else None
    db_commit_or_raise("ShadowMilestone")
    logger.info("Shadow milestone %s developer -> %s", milestone_id, row.developer_id,
                extra={"project_id": str(project_id), "milestone_id": str(milestone_id),
                       "source": "shadow"})
    return row.to_dict()


def swap_milestone_order(project_id, milestone_a, milestone_b) -> list[dict]:
    """Exchange the display order of two milestones of the same project."""
    project = _require_project(project_id)
    first = _find_milestone(project, milestone_a)
    second = _find_milestone(project, milestone_b)
    if first is None:
        raise NotFoundError("ShadowMilestone", milestone_a)
    if second is None:
        raise NotFoundError("ShadowMilestone", milestone_b)
    first.display_order, second.display_order = second.display_order, first.display_order
    db_commit_or_raise("ShadowMilestone")
    db.session.refresh(project)
    return [m.to_dict() for m in project.milestones]


def destroy_milestone(project_id, milestone_id) -> None:
    project = _require_project(project_id)
    row = _find_milestone(project, milestone_id)
    if row is None:
        raise NotFoundError("ShadowMilestone", milestone_id)
    db.session.delete(row)
    db_commit_or_raise("ShadowMilestone")


# ═════════════════════════════════════════════════════════════════════════════
# Scope comments
# ═════════════════════════════════════════════════════════════════════════════


def add_scope_comment(project_id, consultant_comment: str) -> dict:
    project = ensure_project(project_id)
    comment = ShadowScopeComment(project_id=project.id, consultant_comment=consultant_comment)
    db.session.add(comment)
    db_commit_or_raise("ShadowScopeComment")
    return comment.to_dict()


def answer_latest_scope_comment(project_id, client_response: str) -> dict:
    """Attach the client's response to the most recent consultant comment.

    Opens a new comment holding only the response when the project has none.
    """
    project = ensure_project(project_id)
    stmt = (
        select(ShadowScopeComment)
        .where(ShadowScopeComment.project_id == project.id)
        .order_by(ShadowScopeComment.id.desc())
        .limit(1)
    )
    comment = db.session.execute(stmt).scalar_one_or_none()
    if comment is None:
        comment = ShadowScopeComment(project_id=project.id)
        db.session.add(comment)
    comment.client_response = client_response
    db_commit_or_raise("ShadowScopeComment")
    return comment.to_dict()
