"""
Project aggregator — denormalised project views over the adapter.

The adapter has no relational joins, so a project view is assembled from
independent calls:
  - the raw project
  - its milestones (only once the contract is deployed, creationStatus == "created")
  - the full client roster
  - the full developer roster

Relations (client, consultant, each milestone's developer) are resolved by
linear lookup against those rosters. An id without a roster match resolves
to None instead of failing the read.

Roster fetches are O(all clients + all developers) on every call, and
``list_projects`` issues one milestone fetch per project. Both costs come
from the adapter's API surface.

All outbound HTTP: delegated to `marketplace.integrations.adapter_gateway.adapter_gateway`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from marketplace.core.state import (
    MilestoneState,
    derive_milestone_state,
    derive_project_state,
    draft_targets,
)
from marketplace.integrations.adapter_gateway import adapter_gateway
from marketplace.utils.helpers import parse_budget, parse_datetime

logger = logging.getLogger(__name__)

_PERSON_INTERNAL_KEYS = ("_id", "__v", "imageData", "imageMimeType", "projects", "createdAt", "updatedAt")
_MILESTONE_INTERNAL_KEYS = ("_id", "__v", "createdAt", "updatedAt")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Shaping
# ═════════════════════════════════════════════════════════════════════════════


def _find_by_id(items: list[dict], ref) -> dict | None:
    if ref is None:
        return None
    return next((item for item in items if str(item.get("id")) == str(ref)), None)


def clean_person(raw: Mapping) -> dict:
    """Strip adapter-internal fields from a client/developer record."""
    person = dict(raw)
    if person.get("id") is None and person.get("_id") is not None:
        person["id"] = person["_id"]
    for key in _PERSON_INTERNAL_KEYS:
        person.pop(key, None)
    return person


def shape_milestone(raw: Mapping, developers: list[dict]) -> dict:
    milestone = dict(raw)
    if milestone.get("id") is None and milestone.get("_id") is not None:
        milestone["id"] = milestone["_id"]
    for key in _MILESTONE_INTERNAL_KEYS:
        milestone.pop(key, None)
    if "deliveryDate" in milestone:
        milestone["deliveryDate"] = parse_datetime(milestone["deliveryDate"])
    milestone["developer"] = _find_by_id(developers, milestone.get("developerId"))
    milestone["milestoneState"] = derive_milestone_state(milestone)
    return milestone


def shape_project(
    raw: Mapping,
    clients: list[dict],
    developers: list[dict],
    milestones: list[dict],
) -> dict:
    """Translate an adapter project into the application's view.

    ``_id`` becomes ``id``, ``deliveryDate`` becomes an aware UTC datetime,
    client/consultant/milestone developers are resolved from the rosters and
    ``__v`` is dropped. ``projectState`` is NOT attached here; see
    ``attach_project_state``.
    """
    project = dict(raw)
    if project.get("_id") is not None:
        project["id"] = project["_id"]
    project.pop("_id", None)
    project.pop("__v", None)

    project["deliveryDate"] = parse_datetime(project.get("deliveryDate"))
    project["client"] = _find_by_id(clients, project.get("clientId"))
    project["consultant"] = _find_by_id(developers, project.get("consultantId"))
    project["milestones"] = [shape_milestone(m, developers) for m in milestones]
    project["objectives"] = []
    project["constraints"] = []
    return project


def attach_project_state(view: dict, draft: Mapping | None = None) -> dict:
    """Derive ``projectState``; while a draft for the project exists its entries replace the milestones."""
    if draft_targets(draft, view):
        view["milestones"] = [
            {**entry, "displayOrder": position, "milestoneState": MilestoneState.CreatingMilestone}
            for position, entry in enumerate(draft.get("milestones", []))
        ]
    view["projectState"] = derive_project_state(view, draft)
    return view


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


def _rosters() -> tuple[list[dict], list[dict]]:
    clients = [clean_person(c) for c in adapter_gateway.list_clients()]
    developers = [clean_person(d) for d in adapter_gateway.list_developers()]
    return clients, developers


def _project_milestones(raw: Mapping, project_id) -> list[dict]:
    if raw.get("creationStatus") != "created":
        return []
    return adapter_gateway.get_all_tasks(project_id)


def get_project(project_id, draft: Mapping | None = None) -> dict:
    """Return the denormalised view of one project.

    Raises:
        NotFoundError:          the adapter does not know the project.
        RemoteUnavailableError: the adapter could not be reached.
    """
    raw = adapter_gateway.get_project_info(project_id)
    clients, developers = _rosters()
    milestones = _project_milestones(raw, raw.get("_id", project_id))
    view = shape_project(raw, clients, developers, milestones)
    return attach_project_state(view, draft)


def _created_at(view: Mapping) -> datetime:
    return parse_datetime(view.get("createdAt")) or _EPOCH


def list_projects(client_id=None, developer_id=None, draft: Mapping | None = None) -> list[dict]:
    """Return project views, most recently created first.

    - no filter:     union of every client's and developer's projects, de-duplicated by id
    - client_id:     the adapter's projects-for-client call
    - developer_id:  the union, restricted to projects where the developer is the
                     consultant or is assigned at least one milestone
    """
    clients, developers = _rosters()

    if client_id is not None:
        raw_projects = adapter_gateway.get_client_projects(client_id)
    else:
        raw_projects = []
        seen: set[str] = set()
        sources = [adapter_gateway.get_client_projects(c["id"]) for c in clients]
        sources += [adapter_gateway.get_developer_projects(d["id"]) for d in developers]
        for batch in sources:
            for raw in batch:
                key = str(raw.get("_id"))
                if key not in seen:
                    seen.add(key)
                    raw_projects.append(raw)

        if developer_id is not None:
            assigned = {
                str((m.get("project") or {}).get("_id"))
                for m in adapter_gateway.get_developer_milestones(developer_id)
            }
            raw_projects = [
                raw for raw in raw_projects
                if str(raw.get("consultantId")) == str(developer_id) or str(raw.get("_id")) in assigned
            ]

    views = []
    for raw in raw_projects:
        milestones = _project_milestones(raw, raw.get("_id"))
        views.append(attach_project_state(shape_project(raw, clients, developers, milestones), draft))

    # Stable sort: projects without createdAt keep the adapter's relative order, last
    views.sort(key=_created_at, reverse=True)
    logger.debug("Listed %d projects (client=%s developer=%s)", len(views), client_id, developer_id)
    return views


# ═════════════════════════════════════════════════════════════════════════════
# Payments
# ═════════════════════════════════════════════════════════════════════════════

_ADVANCE_PAID_STATES = {
    MilestoneState.MilestoneInProgress,
    MilestoneState.WaitingClientAcceptSubmission,
    MilestoneState.MilestoneCompleted,
    MilestoneState.SubmissionRejectedByClient,
}


def _budget(milestone: Mapping) -> float:
    try:
        return parse_budget(milestone.get("budget"))
    except ValueError:
        return 0.0


def payment_summary(view: Mapping, advance_payment_percentage: float) -> dict:
    """Group a project's milestones by payment status and total the amounts.

    - zero-paid:     not started (CreatingMilestone, WaitingDeveloperAssignment)
    - advance-paid:  in progress through completed-but-unpaid; the advance
                     percentage of the budget has been released
    - fully-paid:    Paid
    """
    advance, paid = [], []
    for milestone in view.get("milestones", []):
        state = milestone.get("milestoneState") or derive_milestone_state(milestone)
        if state in _ADVANCE_PAID_STATES:
            advance.append(milestone)
        elif state == MilestoneState.Paid:
            paid.append(milestone)

    total = round(sum(_budget(m) for m in view.get("milestones", [])), 2)
    in_advance = round(sum(_budget(m) * advance_payment_percentage / 100 for m in advance), 2)
    for_completed = round(sum(_budget(m) for m in paid), 2)
    return {
        "projectId": view.get("id"),
        "totalBudgetFunded": total,
        "paymentInAdvance": in_advance,
        "paymentForCompleted": for_completed,
        "fundsRemaining": round(total - in_advance - for_completed, 2),
        "awaitingPaymentCount": len(advance),
        "paidCount": len(paid),
    }
