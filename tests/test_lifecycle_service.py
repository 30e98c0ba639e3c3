"""Unit tests for marketplace.services.lifecycle_service.

Test strategy
-------------
Adapter calls are patched on the module-level ``adapter_gateway`` singleton.
Fallback paths make the patched call raise RemoteUnavailableError and then
assert on the shadow store (real SQLite, reset per test by conftest).
The end-to-end test drives a small in-memory adapter through the whole
proposal -> scope -> acceptance flow.
"""

from contextlib import ExitStack
from unittest.mock import patch

import pytest

import marketplace.integrations.adapter_gateway as gw_module
from marketplace.core.exceptions import (
    ConflictError,
    NotFoundError,
    RemoteUnavailableError,
    UnsupportedTransitionError,
    ValidationError,
)
from marketplace.core.state import MilestoneState, ProjectState
from marketplace.services import lifecycle_service, scope_draft, shadow_store

PID = "5HpG9w8EBLe5XCrbczpwq5TSXvedjrBGCwqxK1iQ7qUsSWFc"
TOKEN = "tok-user"


def _down(operation="adapter_call"):
    return RemoteUnavailableError(operation, PID, 503, "Service Unavailable")


def _gw(name, **kwargs):
    return patch.object(gw_module.adapter_gateway, name, **kwargs)


def _deployed_project(**overrides) -> dict:
    project = {"_id": PID, "title": "Booking", "clientId": 1, "consultantId": 7,
               "state": "deployed", "creationStatus": "pending"}
    project.update(overrides)
    return project


class TestWithFallback:

    def test_remote_success_returns_remote_result(self):
        with _gw("assign_team", return_value={"ok": True}) as assign:
            result = lifecycle_service.assign_team(PID, TOKEN)

        assign.assert_called_once_with(PID, 2, TOKEN)
        assert result == {"source": "remote", "operation": "assign_team", "projectId": PID,
                          "data": {"ok": True}}
        assert shadow_store.find_project(PID) is None

    def test_remote_unavailable_writes_shadow(self, caplog):
        with _gw("assign_team", side_effect=_down("assign_team")):
            with caplog.at_level("WARNING", logger="marketplace.services.lifecycle_service"):
                result = lifecycle_service.assign_team(PID, TOKEN, team_size=4)

        assert result["source"] == "shadow"
        assert result["data"]["projectState"] is ProjectState.ProjectInProgress
        assert any("assign_team" in r.getMessage() and r.levelname == "WARNING" for r in caplog.records)

    @pytest.mark.parametrize("error", [
        ValidationError("bad ratings"),
        NotFoundError("Project", PID),
        ConflictError("Project", "state", "completed"),
    ])
    def test_other_errors_propagate_without_shadow_write(self, error):
        with _gw("mark_completed", side_effect=error):
            with pytest.raises(type(error)):
                lifecycle_service.mark_completed(PID, [], TOKEN)

        assert shadow_store.find_project(PID) is None


class TestProposal:

    def test_submit_proposal_remote(self):
        with _gw("deploy_project", return_value={"projectId": PID}) as deploy:
            result = lifecycle_service.submit_proposal(1, {"title": " Booking ", "budget": "5000"}, TOKEN)

        deploy.assert_called_once_with("v5", {"title": "Booking", "budget": "5000"}, 1, TOKEN)
        assert result["source"] == "remote"
        assert result["projectId"] == PID

    def test_submit_proposal_shadow(self):
        with _gw("deploy_project", side_effect=_down("deploy_project")):
            result = lifecycle_service.submit_proposal(1, {"title": "Booking"}, TOKEN)

        assert result["source"] == "shadow"
        assert result["data"]["projectState"] is ProjectState.ProposalPending
        assert shadow_store.get_project(result["projectId"])["clientId"] == "1"

    def test_submit_proposal_validates_before_any_call(self):
        with _gw("deploy_project") as deploy:
            with pytest.raises(ValidationError) as exc_info:
                lifecycle_service.submit_proposal(1, {"budget": "-3", "deliveryDate": "soon"}, TOKEN)

        deploy.assert_not_called()
        assert set(exc_info.value.details) == {"title", "budget", "deliveryDate"}

    def test_reject_proposal_fallback_leaves_remote_state_stale(self):
        """Given the adapter is down for the rejection
        When:  reject_proposal runs
        Then:  the shadow store shows ProposalRejected while a read through the
               adapter still shows WaitingForProposalApproval (no reconciliation)
        """
        with _gw("coordinator_reject", side_effect=_down("coordinator_reject")):
            result = lifecycle_service.reject_proposal(PID, "Budget too low", TOKEN)

        assert result["source"] == "shadow"
        shadow_view = shadow_store.get_project(PID)
        assert shadow_view["projectState"] is ProjectState.ProposalRejected
        assert shadow_view["proposalRejectionReason"] == "Budget too low"

        with _gw("get_project_info", return_value=_deployed_project()), \
                _gw("list_clients", return_value=[]), _gw("list_developers", return_value=[]):
            remote_view = lifecycle_service.get_project(PID)

        assert remote_view["projectState"] is ProjectState.WaitingForProposalApproval

    def test_publish_unpublished_proposal(self):
        created = shadow_store.create_project({"title": "Offline"})
        result = lifecycle_service.publish_proposal(created["id"])
        assert result["source"] == "shadow"
        assert result["data"]["projectState"] is ProjectState.ProposalPending

    def test_republish_rejected_proposal(self):
        shadow_store.set_project_state(PID, ProjectState.ProposalRejected)
        result = lifecycle_service.publish_proposal(PID)
        assert result["data"]["projectState"] is ProjectState.WaitingForProposalApproval

    def test_publish_from_other_state_is_unsupported(self):
        shadow_store.set_project_state(PID, ProjectState.ProjectInProgress)
        with pytest.raises(UnsupportedTransitionError, match="ProjectInProgress"):
            lifecycle_service.publish_proposal(PID)

    def test_publish_unknown_project(self):
        with pytest.raises(NotFoundError):
            lifecycle_service.publish_proposal("missing")

    def test_approve_proposal_opens_draft(self, draft_store):
        result = lifecycle_service.approve_proposal(PID, draft_store)
        assert result["source"] == "session"
        assert draft_store["scope"]["project_id"] == PID

    def test_assign_coordinator_shadow_records_consultant(self):
        with _gw("assign_coordinator", side_effect=_down("assign_coordinator")):
            result = lifecycle_service.assign_coordinator(PID, TOKEN, consultant_id=7)

        assert result["data"]["consultantId"] == "7"
        assert result["data"]["projectState"] is ProjectState.WaitingForProposalApproval

    def test_assign_coordinator_requires_consultant(self):
        """Without a consultant the fallback row would derive differently from the adapter."""
        with _gw("assign_coordinator") as assign:
            with pytest.raises(ValidationError) as exc_info:
                lifecycle_service.assign_coordinator(PID, TOKEN, consultant_id=None)

        assign.assert_not_called()
        assert "consultantId" in exc_info.value.details
        assert shadow_store.find_project(PID) is None


class TestScope:

    def _draft(self, store, *titles):
        scope_draft.start_draft(store, PID)
        for title in titles:
            scope_draft.append_entry(store, PID, {"title": title, "budget": 100})

    def test_submit_scope_without_draft(self, draft_store):
        with pytest.raises(NotFoundError):
            lifecycle_service.submit_scope(PID, draft_store, TOKEN)

    def test_submit_empty_scope(self, draft_store):
        self._draft(draft_store)
        with pytest.raises(ValidationError):
            lifecycle_service.submit_scope(PID, draft_store, TOKEN)
        assert "scope" in draft_store

    def test_submit_scope_remote(self, draft_store):
        self._draft(draft_store, "Design", "Build")
        created = [{"id": "m-1", "title": "Design"}, {"id": "m-2", "title": "Build"}]
        with _gw("create_milestone", side_effect=created), \
                _gw("propose_scope", return_value={"ok": True}) as propose:
            result = lifecycle_service.submit_scope(PID, draft_store, TOKEN)

        propose.assert_called_once()
        args = propose.call_args.args
        assert args[0] == PID and args[1] == created and args[2] == 10 and args[4] == TOKEN
        assert result["source"] == "remote"
        assert result["milestones"] == created
        assert "scope" not in draft_store

    def test_submit_scope_propose_falls_back_with_comment(self, draft_store):
        self._draft(draft_store, "Design")
        with _gw("create_milestone", return_value={"id": "m-1"}), \
                _gw("propose_scope", side_effect=_down("propose_scope")):
            result = lifecycle_service.submit_scope(PID, draft_store, TOKEN, consultant_comment="Two phases")

        assert result["source"] == "shadow"
        assert result["data"]["projectState"] is ProjectState.ScopeValidationNeeded
        assert result["data"]["comments"][0]["consultantComment"] == "Two phases"

    def test_flush_failure_propagates_without_fallback(self, draft_store):
        self._draft(draft_store, "Design")
        with _gw("create_milestone", side_effect=_down("create_milestone")), \
                _gw("propose_scope") as propose:
            with pytest.raises(RemoteUnavailableError):
                lifecycle_service.submit_scope(PID, draft_store, TOKEN)

        propose.assert_not_called()
        assert shadow_store.find_project(PID) is None
        assert len(draft_store["scope"]["milestones"]) == 1

    def test_accept_scope_approves_every_milestone(self):
        with _gw("get_all_tasks", return_value=[{"id": "m-1"}, {"_id": "m-2"}]), \
                _gw("approve_scope", return_value={}) as approve:
            result = lifecycle_service.accept_scope(PID, "Agreed", TOKEN)

        approve.assert_called_once_with(PID, ["m-1", "m-2"], TOKEN)
        assert result["source"] == "remote"

    def test_accept_scope_fallback_answers_comment(self):
        shadow_store.add_scope_comment(PID, "Please review")
        with _gw("get_all_tasks", side_effect=_down("get_all_tasks")):
            result = lifecycle_service.accept_scope(PID, "Agreed", TOKEN)

        assert result["data"]["projectState"] is ProjectState.WaitingForTeamAssignment
        assert result["data"]["comments"][0]["clientResponse"] == "Agreed"

    def test_reject_scope_fallback(self):
        with _gw("reject_scope", side_effect=_down("reject_scope")):
            result = lifecycle_service.reject_scope(PID, "Too long", TOKEN)
        assert result["data"]["projectState"] is ProjectState.ScopeRejected


class TestMilestones:

    def test_submit_for_review_sends_documentation_first(self):
        with _gw("update_milestone", return_value={}) as update, \
                _gw("submit_task_for_review", return_value={}) as submit:
            result = lifecycle_service.submit_milestone_for_review(
                PID, "m-1", TOKEN, documentation="README", links="https://git.example.com/pr/4",
            )

        update.assert_called_once_with(
            PID, "m-1", {"documentation": "README", "links": "https://git.example.com/pr/4"}, TOKEN,
        )
        submit.assert_called_once_with(PID, "m-1", TOKEN)
        assert result["milestoneId"] == "m-1"

    def test_submit_for_review_without_docs_skips_update(self):
        with _gw("update_milestone") as update, _gw("submit_task_for_review", return_value={}):
            lifecycle_service.submit_milestone_for_review(PID, "m-1", TOKEN)
        update.assert_not_called()

    def test_accept_submission_fallback(self):
        with _gw("complete_task", side_effect=_down("complete_task")):
            result = lifecycle_service.accept_submission(PID, "m-1", TOKEN)
        assert result["source"] == "shadow"
        assert result["data"]["state"] == MilestoneState.MilestoneCompleted.value

    def test_assign_milestone_developer_remote(self):
        with _gw("update_milestone", return_value={"id": "m-1", "developerId": 8}) as update:
            result = lifecycle_service.assign_milestone_developer(PID, "m-1", 8, TOKEN)

        update.assert_called_once_with(PID, "m-1", {"developerId": 8}, TOKEN)
        assert result["source"] == "remote"
        assert result["milestoneId"] == "m-1"

    def test_assign_milestone_developer_fallback(self):
        with _gw("update_milestone", side_effect=_down("update_milestone")):
            result = lifecycle_service.assign_milestone_developer(PID, "m-1", 8, TOKEN)

        assert result["source"] == "shadow"
        assert result["data"]["developerId"] == "8"

    def test_reject_submission_remote(self):
        with _gw("reject_task", return_value={}) as reject:
            lifecycle_service.reject_submission(PID, "m-1", "Tests fail", TOKEN)
        reject.assert_called_once_with(PID, "m-1", "Tests fail", TOKEN)

    def test_mark_paid_requires_completed(self):
        with _gw("get_milestone", return_value={"id": "m-1", "state": "in_review"}), \
                _gw("update_milestone") as update:
            with pytest.raises(UnsupportedTransitionError, match="WaitingClientAcceptSubmission"):
                lifecycle_service.mark_paid(PID, "m-1", TOKEN)
        update.assert_not_called()

    def test_mark_paid_fallback(self):
        with _gw("get_milestone", return_value={"id": "m-1", "state": "completed"}), \
                _gw("update_milestone", side_effect=_down("update_milestone")):
            result = lifecycle_service.mark_paid(PID, "m-1", TOKEN)

        assert result["source"] == "shadow"
        assert result["data"]["state"] == "Paid"

    @pytest.mark.parametrize("operation", [
        "developer_accept_milestone",
        "developer_reject_milestone",
        "rollback_rejected_submission",
    ])
    def test_operations_without_adapter_handler(self, operation):
        with pytest.raises(UnsupportedTransitionError):
            getattr(lifecycle_service, operation)(PID, "m-1", TOKEN)


class _FakeAdapter:
    """In-memory adapter holding one project and its milestones."""

    def __init__(self):
        self.project = {"_id": PID, "title": "Booking", "clientId": 1, "consultantId": None,
                        "state": "deployed", "creationStatus": "created"}
        self.milestones: list[dict] = []

    def get_project_info(self, project_id):
        return dict(self.project)

    def list_clients(self):
        return [{"id": 1, "name": "Acme"}]

    def list_developers(self):
        return [{"id": 7, "name": "Dana"}]

    def get_all_tasks(self, project_id):
        return [dict(m) for m in self.milestones]

    def assign_coordinator(self, project_id, token):
        self.project["consultantId"] = 7
        return {"ok": True}

    def create_milestone(self, project_id, data, token):
        milestone = {**data, "id": f"m-{len(self.milestones) + 1}", "state": "pending"}
        self.milestones.append(milestone)
        return milestone

    def delete_milestone(self, project_id, milestone_id, token):
        self.milestones = [m for m in self.milestones if m["id"] != milestone_id]

    def propose_scope(self, project_id, tasks, percentage, document_hash, token):
        self.project["state"] = "scope_proposed"
        return {"ok": True}

    def approve_scope(self, project_id, task_ids, token):
        assert task_ids == [m["id"] for m in self.milestones]
        self.project["state"] = "scope_accepted"
        return {"ok": True}


class TestEndToEnd:

    def test_proposal_to_accepted_scope(self, draft_store):
        fake = _FakeAdapter()
        with ExitStack() as stack:
            for name in ("get_project_info", "list_clients", "list_developers", "get_all_tasks",
                         "assign_coordinator", "create_milestone", "delete_milestone",
                         "propose_scope", "approve_scope"):
                stack.enter_context(_gw(name, side_effect=getattr(fake, name)))

            def read():
                return lifecycle_service.get_project(PID, draft=scope_draft.get_draft(draft_store))

            assert read()["projectState"] is ProjectState.ProposalPending

            lifecycle_service.assign_coordinator(PID, TOKEN, consultant_id=7)
            assert read()["projectState"] is ProjectState.WaitingForProposalApproval

            lifecycle_service.approve_proposal(PID, draft_store)
            assert read()["projectState"] is ProjectState.ScopingInProgress

            scope_draft.append_entry(draft_store, PID, {"title": "Design", "budget": 1000})
            scope_draft.append_entry(draft_store, PID, {"title": "Build", "budget": 4000})
            scope_draft.swap_entries(draft_store, PID, 0, 1)
            lifecycle_service.submit_scope(PID, draft_store, TOKEN)

            assert scope_draft.get_draft(draft_store) is None
            view = read()
            assert view["projectState"] is ProjectState.ScopeValidationNeeded
            assert [m["title"] for m in view["milestones"]] == ["Build", "Design"]
            assert all(m["milestoneState"] is MilestoneState.WaitingDeveloperAssignment
                       for m in view["milestones"])

            lifecycle_service.accept_scope(PID, "Agreed", TOKEN)
            assert read()["projectState"] is ProjectState.WaitingForTeamAssignment
