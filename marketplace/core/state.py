"""
Workflow state model for projects and milestones.

The adapter is authoritative for a project's raw ``state`` string, but the
workflow states the application reasons about are richer. They are never
stored: every read re-derives them from the raw fields (plus, for projects,
the consultant's in-session scope draft).

Raw strings are parsed at the boundary into ``RawProjectStatus`` /
``RawMilestoneStatus`` members, or ``UnknownStatus`` for values the adapter
introduced that this module does not know. Derivation is total: anything
unmapped becomes ``Invalid``, never ``None``.

Two raw values go beyond the core workflow table and would otherwise fall
into ``Invalid``: the adapter's ``scope_rejected`` project status maps to
``ProjectState.ScopeRejected`` and its ``paid`` milestone status maps to
``MilestoneState.Paid``. Both are emitted by the adapter's mock backend.

Usage:
    from marketplace.core.state import derive_project_state, ProjectState

    state = derive_project_state(raw_project, draft=session.get("scope"))
    if state is ProjectState.Invalid:
        logger.warning(...)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ProjectState(str, Enum):
    ProposalPending = "ProposalPending"
    WaitingForProposalApproval = "WaitingForProposalApproval"
    ProposalRejected = "ProposalRejected"
    ScopingInProgress = "ScopingInProgress"
    ScopeValidationNeeded = "ScopeValidationNeeded"
    ScopeRejected = "ScopeRejected"
    WaitingForTeamAssignment = "WaitingForTeamAssignment"
    ProjectInProgress = "ProjectInProgress"
    Completed = "Completed"
    Invalid = "Invalid"


class MilestoneState(str, Enum):
    CreatingMilestone = "CreatingMilestone"
    WaitingDeveloperAssignment = "WaitingDeveloperAssignment"
    MilestoneInProgress = "MilestoneInProgress"
    WaitingClientAcceptSubmission = "WaitingClientAcceptSubmission"
    MilestoneCompleted = "MilestoneCompleted"
    SubmissionRejectedByClient = "SubmissionRejectedByClient"
    Paid = "Paid"
    Invalid = "Invalid"


# ── Raw adapter vocabulary ───────────────────────────────────────────────────


class RawProjectStatus(str, Enum):
    """Project ``state`` strings the adapter is known to emit."""
    DRAFT = "draft"
    DEPLOYED = "deployed"
    REJECTED_BY_COORDINATOR = "rejected_by_coordinator"
    SCOPE_PROPOSED = "scope_proposed"
    SCOPE_REJECTED = "scope_rejected"
    SCOPE_ACCEPTED = "scope_accepted"
    TEAM_ASSIGNED = "team_assigned"
    COMPLETED = "completed"


class RawMilestoneStatus(str, Enum):
    """Milestone ``state`` strings the adapter is known to emit."""
    PENDING = "pending"
    TASK_IN_PROGRESS = "task_in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    REJECTED = "rejected"
    PAID = "paid"


@dataclass(frozen=True)
class UnknownStatus:
    """A raw status string outside the known vocabulary."""

    value: str


def parse_project_status(value: Any) -> RawProjectStatus | UnknownStatus | None:
    """Wrap a raw project ``state``; None when the field is absent."""
    if value is None:
        return None
    try:
        return RawProjectStatus(value)
    except ValueError:
        return UnknownStatus(str(value))


def parse_milestone_status(value: Any) -> RawMilestoneStatus | UnknownStatus | None:
    """Wrap a raw milestone ``state``; None when the field is absent."""
    if value is None:
        return None
    try:
        return RawMilestoneStatus(value)
    except ValueError:
        return UnknownStatus(str(value))


# ── Derivation ───────────────────────────────────────────────────────────────

# Straight raw -> workflow mappings once the consultant/rejection/deployed
# rules have been evaluated.
_PROJECT_STATUS_MAP: dict[RawProjectStatus, ProjectState] = {
    RawProjectStatus.SCOPE_REJECTED: ProjectState.ScopeRejected,
    RawProjectStatus.SCOPE_ACCEPTED: ProjectState.WaitingForTeamAssignment,
    RawProjectStatus.TEAM_ASSIGNED: ProjectState.ProjectInProgress,
    RawProjectStatus.COMPLETED: ProjectState.Completed,
}

_MILESTONE_STATUS_MAP: dict[RawMilestoneStatus, MilestoneState] = {
    RawMilestoneStatus.PENDING: MilestoneState.WaitingDeveloperAssignment,
    RawMilestoneStatus.TASK_IN_PROGRESS: MilestoneState.MilestoneInProgress,
    RawMilestoneStatus.IN_REVIEW: MilestoneState.WaitingClientAcceptSubmission,
    RawMilestoneStatus.COMPLETED: MilestoneState.MilestoneCompleted,
    RawMilestoneStatus.REJECTED: MilestoneState.SubmissionRejectedByClient,
    RawMilestoneStatus.PAID: MilestoneState.Paid,
}


def project_identity(project: Mapping) -> str | None:
    """Return the project's id whichever shape it arrives in (raw or shaped)."""
    for key in ("id", "_id", "contractAddress"):
        value = project.get(key)
        if value is not None:
            return str(value)
    return None


def draft_targets(draft: Mapping | None, project: Mapping) -> bool:
    """True when ``draft`` is a scope draft for ``project``."""
    if not draft:
        return False
    draft_project = draft.get("project_id")
    return draft_project is not None and str(draft_project) == project_identity(project)


def _rejection_reason(project: Mapping) -> str | None:
    return project.get("proposalRejectionReason") or project.get("rejectionReason")


def derive_project_state(project: Mapping, draft: Mapping | None = None) -> ProjectState:
    """Compute the workflow state of a project.

    Rules are evaluated in order; the first match wins:
      1. no consultant assigned                   -> ProposalPending
      2. ``rejected_by_coordinator``              -> ProposalRejected
      3. ``deployed`` without coordinator status  -> ScopingInProgress if a draft
                                                     for this project exists, else
                                                     WaitingForProposalApproval
      4. ``scope_proposed``                       -> ScopeValidationNeeded, or
                                                     Invalid when a rejection
                                                     reason is attached
      5. ``scope_rejected`` / ``scope_accepted`` /
         ``team_assigned`` / ``completed``        -> see _PROJECT_STATUS_MAP
      6. anything else                            -> Invalid

    Never raises and performs no I/O.
    """
    if project.get("consultantId") is None:
        return ProjectState.ProposalPending

    status = parse_project_status(project.get("state"))

    if status is RawProjectStatus.REJECTED_BY_COORDINATOR:
        return ProjectState.ProposalRejected

    if status is RawProjectStatus.DEPLOYED:
        if project.get("coordinatorApprovalStatus") is None:
            if draft_targets(draft, project):
                return ProjectState.ScopingInProgress
            return ProjectState.WaitingForProposalApproval
        return ProjectState.Invalid

    if status is RawProjectStatus.SCOPE_PROPOSED:
        # The rejected-scope-proposal branch has no defined target state.
        if _rejection_reason(project):
            return ProjectState.Invalid
        return ProjectState.ScopeValidationNeeded

    if isinstance(status, RawProjectStatus):
        return _PROJECT_STATUS_MAP.get(status, ProjectState.Invalid)

    return ProjectState.Invalid


def derive_milestone_state(milestone: Mapping) -> MilestoneState:
    """Compute the workflow state of a milestone.

    A milestone without a raw ``state`` is still a draft entry
    (CreatingMilestone). Unknown strings map to Invalid.
    """
    status = parse_milestone_status(milestone.get("state"))
    if status is None:
        return MilestoneState.CreatingMilestone
    if isinstance(status, UnknownStatus):
        return MilestoneState.Invalid
    return _MILESTONE_STATUS_MAP[status]


def is_invalid(state: ProjectState | MilestoneState) -> bool:
    return state in (ProjectState.Invalid, MilestoneState.Invalid)
