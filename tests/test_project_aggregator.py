"""Unit tests for marketplace.services.project_aggregator.

The module-level adapter_gateway singleton is patched per test; no adapter
runs. Roster data mirrors what the adapter returns (Mongo-style records).
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

import marketplace.integrations.adapter_gateway as gw_module
from marketplace.core.exceptions import NotFoundError, RemoteUnavailableError
from marketplace.core.state import MilestoneState, ProjectState
from marketplace.services import project_aggregator

PID = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
PID_2 = "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"

CLIENTS = [
    {"_id": "obj-c1", "id": 1, "name": "Acme", "email": "ops@acme.test", "__v": 0,
     "imageData": "b64", "imageMimeType": "image/png", "projects": [PID],
     "createdAt": "2026-01-01", "updatedAt": "2026-01-02"},
]
DEVELOPERS = [
    {"_id": "obj-d7", "id": 7, "name": "Dana", "email": "dana@dev.test", "__v": 0},
    {"_id": "obj-d8", "id": 8, "name": "Lee", "email": "lee@dev.test", "__v": 0},
]


def _raw_project(pid=PID, **overrides) -> dict:
    project = {
        "_id": pid,
        "__v": 0,
        "title": "Booking platform",
        "clientId": 1,
        "consultantId": 7,
        "state": "team_assigned",
        "creationStatus": "created",
        "deliveryDate": "2026-11-30T12:00:00Z",
        "createdAt": "2026-03-01T10:00:00Z",
    }
    project.update(overrides)
    return project


def _raw_milestone(mid: str, state="task_in_progress", developer_id=8, budget=1000) -> dict:
    return {
        "_id": f"obj-{mid}", "id": mid, "__v": 0, "title": f"Milestone {mid}",
        "budget": budget, "state": state, "developerId": developer_id,
        "deliveryDate": "2026-06-01T00:00:00Z",
        "createdAt": "2026-03-02", "updatedAt": "2026-03-03",
    }


def _patch_gateway(**methods):
    """Patch several adapter_gateway methods at once; keyword -> return value or side effect."""
    patchers = []
    for name, value in methods.items():
        kwargs = {"side_effect": value} if callable(value) or isinstance(value, Exception) else {"return_value": value}
        patchers.append(patch.object(gw_module.adapter_gateway, name, **kwargs))
    return patchers


class _Patched:
    def __init__(self, **methods):
        self._patchers = _patch_gateway(
            list_clients=methods.pop("list_clients", CLIENTS),
            list_developers=methods.pop("list_developers", DEVELOPERS),
            **methods,
        )
        self.mocks = {}

    def __enter__(self):
        for patcher in self._patchers:
            mock = patcher.start()
            self.mocks[patcher.attribute] = mock
        return self.mocks

    def __exit__(self, *exc):
        for patcher in self._patchers:
            patcher.stop()
        return False


class TestGetProject:

    def test_shapes_project_view(self):
        with _Patched(
            get_project_info=_raw_project(),
            get_all_tasks=[_raw_milestone("m-1")],
        ):
            view = project_aggregator.get_project(PID)

        assert view["id"] == PID
        assert "_id" not in view and "__v" not in view
        assert view["deliveryDate"] == datetime(2026, 11, 30, 12, 0, tzinfo=timezone.utc)
        assert view["objectives"] == [] and view["constraints"] == []
        assert view["client"] == {"id": 1, "name": "Acme", "email": "ops@acme.test"}
        assert view["consultant"]["name"] == "Dana"
        assert view["projectState"] is ProjectState.ProjectInProgress

        milestone = view["milestones"][0]
        assert milestone["id"] == "m-1"
        assert not {"_id", "__v", "createdAt", "updatedAt"} & milestone.keys()
        assert milestone["developer"]["name"] == "Lee"
        assert milestone["milestoneState"] is MilestoneState.MilestoneInProgress
        assert milestone["deliveryDate"].tzinfo is not None

    def test_unmatched_relations_resolve_to_none(self):
        with _Patched(
            get_project_info=_raw_project(clientId=99, consultantId=None, state="deployed",
                                          creationStatus="pending"),
        ):
            view = project_aggregator.get_project(PID)

        assert view["client"] is None
        assert view["consultant"] is None
        assert view["projectState"] is ProjectState.ProposalPending

    def test_milestones_not_fetched_before_contract_created(self):
        with _Patched(get_project_info=_raw_project(creationStatus="pending"), get_all_tasks=[]) as mocks:
            view = project_aggregator.get_project(PID)

        mocks["get_all_tasks"].assert_not_called()
        assert view["milestones"] == []

    def test_draft_entries_replace_milestones(self):
        """Given a deployed project with a consultant and a draft for it
        When:  the project is read
        Then:  it is ScopingInProgress and shows the draft entries in order
        """
        draft = {"project_id": PID, "milestones": [{"title": "Design"}, {"title": "Build"}]}
        with _Patched(
            get_project_info=_raw_project(state="deployed", creationStatus="created"),
            get_all_tasks=[_raw_milestone("m-1")],
        ):
            view = project_aggregator.get_project(PID, draft=draft)

        assert view["projectState"] is ProjectState.ScopingInProgress
        assert [m["title"] for m in view["milestones"]] == ["Design", "Build"]
        assert [m["displayOrder"] for m in view["milestones"]] == [0, 1]
        assert all(m["milestoneState"] is MilestoneState.CreatingMilestone for m in view["milestones"])
        assert draft["milestones"] == [{"title": "Design"}, {"title": "Build"}]

    def test_not_found_propagates(self):
        with _Patched(get_project_info=NotFoundError("Project", PID)):
            with pytest.raises(NotFoundError):
                project_aggregator.get_project(PID)

    def test_remote_unavailable_propagates(self):
        with _Patched(
            get_project_info=_raw_project(),
            list_clients=RemoteUnavailableError("list_clients"),
        ):
            with pytest.raises(RemoteUnavailableError):
                project_aggregator.get_project(PID)


class TestListProjects:

    def test_union_is_deduplicated_and_newest_first(self):
        older = _raw_project(PID, createdAt="2026-01-01T00:00:00Z", creationStatus="pending")
        newer = _raw_project(PID_2, createdAt="2026-05-01T00:00:00Z", creationStatus="pending")
        with _Patched(
            get_client_projects=[older, newer],
            get_developer_projects=lambda developer_id: [newer] if developer_id == 7 else [],
        ):
            views = project_aggregator.list_projects()

        assert [v["id"] for v in views] == [PID_2, PID]

    def test_client_filter_uses_client_projects(self):
        with _Patched(get_client_projects=[_raw_project(creationStatus="pending")]) as mocks:
            views = project_aggregator.list_projects(client_id=1)

        mocks["get_client_projects"].assert_called_once_with(1)
        assert [v["id"] for v in views] == [PID]

    def test_developer_filter_keeps_consultant_and_assigned_projects(self):
        consulting = _raw_project(PID, consultantId=8, creationStatus="pending")
        assigned = _raw_project(PID_2, consultantId=7, creationStatus="pending")
        unrelated = _raw_project("5Other", consultantId=7, creationStatus="pending")
        with _Patched(
            get_client_projects=[consulting, assigned, unrelated],
            get_developer_projects=[],
            get_developer_milestones=[{"id": "m-3", "project": {"_id": PID_2}}],
        ):
            views = project_aggregator.list_projects(developer_id=8)

        assert {v["id"] for v in views} == {PID, PID_2}

    def test_projects_without_created_at_sort_last(self):
        dated = _raw_project(PID, creationStatus="pending")
        undated = _raw_project(PID_2, creationStatus="pending", createdAt=None)
        with _Patched(get_client_projects=[undated, dated], get_developer_projects=[]):
            views = project_aggregator.list_projects()

        assert [v["id"] for v in views] == [PID, PID_2]


class TestPaymentSummary:

    def test_groups_and_totals(self):
        view = {
            "id": PID,
            "milestones": [
                {"budget": 1000, "state": "pending"},
                {"budget": 2000, "state": "task_in_progress"},
                {"budget": 500, "state": "completed"},
                {"budget": 1500, "state": "paid"},
            ],
        }

        summary = project_aggregator.payment_summary(view, advance_payment_percentage=10)

        assert summary == {
            "projectId": PID,
            "totalBudgetFunded": 5000.0,
            "paymentInAdvance": 250.0,
            "paymentForCompleted": 1500.0,
            "fundsRemaining": 3250.0,
            "awaitingPaymentCount": 2,
            "paidCount": 1,
        }

    def test_empty_project(self):
        summary = project_aggregator.payment_summary({"id": PID, "milestones": []}, 10)
        assert summary["totalBudgetFunded"] == 0
        assert summary["fundsRemaining"] == 0
