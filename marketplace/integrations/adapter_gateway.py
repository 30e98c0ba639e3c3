"""
Adapter Integration Gateway.

All outbound HTTP calls to the blockchain-backed adapter service go through
this class. Direct `requests` calls in services are FORBIDDEN.

Call policy:
  - Bearer token injected for state-mutating calls only; reads are anonymous
  - Timeout: 160 s by default (configurable via ADAPTER_TIMEOUT_SECONDS)
  - Exactly one attempt per call. No retry, no circuit breaker: a failed
    write must reach the lifecycle service's fallback immediately.
  - Failures are raised as typed errors carrying operation name + target id

Responses are returned in the adapter's native JSON shape (``_id``,
``__v``, ...); reshaping belongs to the project aggregator.

Testability: pass a mock `session` to AdapterGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from marketplace.core.exceptions import (
    ConflictError,
    NotFoundError,
    RemoteUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://localhost:4000"
_API_PREFIX = "/adapter/v1"
_DEFAULT_TIMEOUT = 160


class GatewayResult:
    """Outcome of a single adapter call.

    Attributes:
        ok:           True on HTTP 2xx with no transport exception.
        status_code:  HTTP status code (None on network-level failure).
        data:         Parsed JSON body (dict or list), else None.
        error:        Human-readable error message or None.
        duration_ms:  Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self) -> str:
        return f"<GatewayResult ok={self.ok} status={self.status_code} {self.duration_ms}ms>"


def _error_message(resp: requests.Response) -> str:
    """Extract the adapter's ``message`` field, falling back to raw text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return resp.text[:500]


class AdapterGateway:
    """HTTP client over the adapter's project/milestone/client/developer API.

    Instantiate once at module level (module-level singleton pattern); the
    app factory calls ``configure()`` with the configured URL and timeout.

    Usage:
        from marketplace.integrations.adapter_gateway import adapter_gateway
        raw = adapter_gateway.get_project_info("5GrwvaEF...")
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        base_url: str = _DEFAULT_BASE_URL,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> None:
        self._session: requests.Session | None = session
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def configure(self, base_url: str | None = None, timeout: int | None = None) -> None:
        if base_url:
            self.base_url = base_url.rstrip("/")
        if timeout:
            self.timeout = timeout

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}{_API_PREFIX}{path}"

    def _do_request(
        self,
        method: str,
        url: str,
        headers: dict,
        *,
        json_body: dict | list | None = None,
        params: dict | None = None,
    ) -> requests.Response:
        """Execute a single HTTP request."""
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params
        return self.session.request(method, url, **kwargs)

    def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        token: str | None = None,
        json_body: dict | list | None = None,
        params: dict | None = None,
    ) -> tuple[GatewayResult, requests.Response | None]:
        """Execute one adapter call. Never raises; callers inspect the result."""
        url = self._url(path)
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        t0 = time.perf_counter()
        try:
            resp = self._do_request(method, url, headers, json_body=json_body, params=params)
        except requests.Timeout:
            logger.warning("Adapter %s timed out after %ss url=%s", operation, self.timeout, url)
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=f"Request timed out after {self.timeout}s",
                duration_ms=int(self.timeout * 1000),
            ), None
        except requests.RequestException as exc:
            logger.warning("Adapter %s network error url=%s error=%s", operation, url, exc)
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error=str(exc)[:500],
                duration_ms=int((time.perf_counter() - t0) * 1000),
            ), None

        duration_ms = int((time.perf_counter() - t0) * 1000)
        if resp.ok:
            try:
                data = resp.json() if resp.content else {}
            except ValueError:
                data = {}
            logger.debug(
                "Adapter %s ok status=%d", operation, resp.status_code,
                extra={"operation": operation, "duration_ms": duration_ms},
            )
            return GatewayResult(
                ok=True, status_code=resp.status_code, data=data,
                error=None, duration_ms=duration_ms,
            ), resp

        logger.warning(
            "Adapter %s failed status=%d url=%s", operation, resp.status_code, url,
            extra={"operation": operation, "status": resp.status_code, "duration_ms": duration_ms},
        )
        return GatewayResult(
            ok=False, status_code=resp.status_code, data=None,
            error=_error_message(resp), duration_ms=duration_ms,
        ), resp

    def call(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        resource: str,
        target_id: int | str | None = None,
        token: str | None = None,
        json_body: dict | list | None = None,
        params: dict | None = None,
    ) -> Any:
        """Execute one adapter call and return its JSON body, raising typed errors.

        Raises:
            RemoteUnavailableError: transport failure, timeout, 5xx, or any
                other status the lifecycle cannot interpret.
            NotFoundError:          404.
            ValidationError:        400 / 422 (adapter rejected the fields).
            ConflictError:          409.
        """
        result, _ = self.request(
            method, path,
            operation=operation, token=token,
            json_body=json_body, params=params,
        )
        if result.ok:
            return result.data

        status = result.status_code
        if status is None or status >= 500:
            raise RemoteUnavailableError(operation, target_id, status, result.error)
        if status == 404:
            raise NotFoundError(resource, target_id)
        if status in (400, 422):
            raise ValidationError(result.error or f"{resource} rejected by adapter")
        if status == 409:
            raise ConflictError(resource, "state", result.error)
        raise RemoteUnavailableError(operation, target_id, status, result.error)

    def _mutate(self, method: str, path: str, *, operation: str, resource: str,
                target_id: int | str | None, token: str, json_body: dict | None = None) -> Any:
        if not token:
            raise ValidationError(
                f"{operation} requires an access token",
                details={"token": "required for state-mutating adapter calls"},
            )
        return self.call(
            method, path,
            operation=operation, resource=resource, target_id=target_id,
            token=token, json_body=json_body if json_body is not None else {},
        )

    # ── Clients ───────────────────────────────────────────────────────────────

    def list_clients(self) -> list[dict]:
        data = self.call("GET", "/clients", operation="list_clients", resource="Client")
        return data.get("clients", []) if isinstance(data, dict) else data

    def get_client(self, client_id: int | str) -> dict:
        data = self.call(
            "GET", f"/clients/{client_id}",
            operation="get_client", resource="Client", target_id=client_id,
        )
        client = data.get("client", data) if isinstance(data, dict) else data
        if not client:
            raise NotFoundError("Client", client_id)
        return client

    def create_client(self, data: dict, token: str) -> dict:
        return self._mutate("POST", "/clients", operation="create_client",
                            resource="Client", target_id=None, token=token, json_body=data)

    def update_client(self, client_id: int | str, data: dict, token: str) -> dict:
        return self._mutate("PUT", f"/clients/{client_id}", operation="update_client",
                            resource="Client", target_id=client_id, token=token, json_body=data)

    def find_client_by_email(self, email: str) -> dict | None:
        return next((c for c in self.list_clients() if c.get("email") == email), None)

    def get_client_projects(self, client_id: int | str) -> list[dict]:
        data = self.call(
            "GET", f"/clients/{client_id}/projects",
            operation="get_client_projects", resource="Client", target_id=client_id,
        )
        return data.get("projects", []) if isinstance(data, dict) else data

    # ── Developers ────────────────────────────────────────────────────────────

    def list_developers(self) -> list[dict]:
        data = self.call("GET", "/developers", operation="list_developers", resource="Developer")
        return data.get("developers", []) if isinstance(data, dict) else data

    def get_developer(self, developer_id: int | str) -> dict:
        data = self.call(
            "GET", f"/developers/{developer_id}",
            operation="get_developer", resource="Developer", target_id=developer_id,
        )
        developer = data.get("developer", data) if isinstance(data, dict) else data
        if not developer:
            raise NotFoundError("Developer", developer_id)
        return developer

    def create_developer(self, data: dict, token: str) -> dict:
        return self._mutate("POST", "/developers", operation="create_developer",
                            resource="Developer", target_id=None, token=token, json_body=data)

    def update_developer(self, developer_id: int | str, data: dict, token: str) -> dict:
        return self._mutate("PUT", f"/developers/{developer_id}", operation="update_developer",
                            resource="Developer", target_id=developer_id, token=token, json_body=data)

    def find_developer_by_email(self, email: str) -> dict | None:
        return next((d for d in self.list_developers() if d.get("email") == email), None)

    def get_developer_projects(self, developer_id: int | str) -> list[dict]:
        data = self.call(
            "GET", f"/developers/{developer_id}/projects",
            operation="get_developer_projects", resource="Developer", target_id=developer_id,
        )
        return data.get("projects", []) if isinstance(data, dict) else data

    def get_developer_milestones(self, developer_id: int | str) -> list[dict]:
        data = self.call(
            "GET", f"/developers/{developer_id}/milestones",
            operation="get_developer_milestones", resource="Developer", target_id=developer_id,
        )
        return data.get("milestones", []) if isinstance(data, dict) else data

    # ── Projects ──────────────────────────────────────────────────────────────

    def deploy_project(self, version: str, project_data: dict, client_id: int | str, token: str) -> dict:
        """Create a proposal; the adapter deploys its contract asynchronously.

        Returns:
            {"projectId": str}
        """
        return self._mutate(
            "POST", f"/projects/deploy/{version}", operation="deploy_project",
            resource="Project", target_id=None, token=token,
            json_body={**project_data, "clientId": client_id},
        )

    def update_project(self, project_id: str, data: dict, token: str) -> dict:
        return self._mutate("PUT", f"/projects/{project_id}", operation="update_project",
                            resource="Project", target_id=project_id, token=token, json_body=data)

    def get_project_info(self, project_id: str) -> dict:
        data = self.call(
            "GET", f"/projects/{project_id}/get_project_info",
            operation="get_project_info", resource="Project", target_id=project_id,
        )
        if not data:
            raise NotFoundError("Project", project_id)
        return data

    def assign_coordinator(self, project_id: str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/assign_coordinator",
                            operation="assign_coordinator", resource="Project",
                            target_id=project_id, token=token)

    def coordinator_reject(self, project_id: str, rejection_reason: str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/coordinator_reject",
                            operation="coordinator_reject", resource="Project",
                            target_id=project_id, token=token,
                            json_body={"rejectionReason": rejection_reason})

    def assign_team(self, project_id: str, team_size: int, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/assign_team",
                            operation="assign_team", resource="Project",
                            target_id=project_id, token=token,
                            json_body={"_team_size": team_size})

    def mark_completed(self, project_id: str, ratings: list | None, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/mark_completed",
                            operation="mark_completed", resource="Project",
                            target_id=project_id, token=token,
                            json_body={"ratings": ratings or []})

    def propose_scope(
        self,
        project_id: str,
        tasks: list[dict],
        advance_payment_percentage: int,
        document_hash: str,
        token: str,
    ) -> dict:
        return self._mutate(
            "POST", f"/projects/{project_id}/propose_scope",
            operation="propose_scope", resource="Project", target_id=project_id, token=token,
            json_body={
                "tasks": tasks,
                "advance_payment_percentage": advance_payment_percentage,
                "document_hash": document_hash,
            },
        )

    def approve_scope(self, project_id: str, approved_task_ids: list, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/approve_scope",
                            operation="approve_scope", resource="Project",
                            target_id=project_id, token=token,
                            json_body={"approved_task_ids": approved_task_ids})

    def reject_scope(self, project_id: str, client_response: str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/reject_scope",
                            operation="reject_scope", resource="Project",
                            target_id=project_id, token=token,
                            json_body={"clientResponse": client_response})

    def get_team(self, project_id: str) -> dict:
        return self.call("GET", f"/projects/{project_id}/get_team",
                         operation="get_team", resource="Project", target_id=project_id)

    def get_scope_info(self, project_id: str) -> dict:
        return self.call("GET", f"/projects/{project_id}/get_scope_info",
                         operation="get_scope_info", resource="Project", target_id=project_id)

    def get_all_tasks(self, project_id: str) -> list[dict]:
        data = self.call("GET", f"/projects/{project_id}/get_all_tasks",
                         operation="get_all_tasks", resource="Project", target_id=project_id)
        return data.get("milestones", []) if isinstance(data, dict) else data

    # ── Milestones ────────────────────────────────────────────────────────────

    def list_milestones(self, project_id: str) -> list[dict]:
        data = self.call("GET", f"/projects/{project_id}/milestones",
                         operation="list_milestones", resource="Project", target_id=project_id)
        return data.get("milestones", []) if isinstance(data, dict) else data

    def get_milestone(self, project_id: str, milestone_id: int | str) -> dict:
        data = self.call("GET", f"/projects/{project_id}/milestones/{milestone_id}",
                         operation="get_milestone", resource="Milestone", target_id=milestone_id)
        return data.get("milestone", data) if isinstance(data, dict) else data

    def create_milestone(self, project_id: str, milestone_data: dict, token: str) -> dict:
        data = self._mutate("POST", f"/projects/{project_id}/milestones",
                            operation="create_milestone", resource="Milestone",
                            target_id=project_id, token=token, json_body=milestone_data)
        return data.get("milestone", data) if isinstance(data, dict) else data

    def update_milestone(self, project_id: str, milestone_id: int | str, data: dict, token: str) -> dict:
        body = self._mutate("PUT", f"/projects/{project_id}/milestones/{milestone_id}",
                            operation="update_milestone", resource="Milestone",
                            target_id=milestone_id, token=token, json_body=data)
        return body.get("milestone", body) if isinstance(body, dict) else body

    def delete_milestone(self, project_id: str, milestone_id: int | str, token: str) -> dict:
        return self._mutate("DELETE", f"/projects/{project_id}/milestones/{milestone_id}",
                            operation="delete_milestone", resource="Milestone",
                            target_id=milestone_id, token=token)

    # ── Tasks (milestone review cycle) ────────────────────────────────────────

    def submit_task_for_review(self, project_id: str, task_id: int | str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/submit_task_for_review",
                            operation="submit_task_for_review", resource="Milestone",
                            target_id=task_id, token=token, json_body={"task_id": task_id})

    def complete_task(self, project_id: str, task_id: int | str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/complete_task",
                            operation="complete_task", resource="Milestone",
                            target_id=task_id, token=token, json_body={"task_id": task_id})

    def reject_task(self, project_id: str, task_id: int | str, reason: str, token: str) -> dict:
        return self._mutate("POST", f"/projects/{project_id}/milestones/{task_id}/reject",
                            operation="reject_task", resource="Milestone",
                            target_id=task_id, token=token,
                            json_body={"rejectionReason": reason})


# Module-level singleton; services import this instance.
# In tests, override via:
#   from marketplace.integrations import adapter_gateway as gw_module
#   patch.object(gw_module.adapter_gateway, "get_project_info", ...)
adapter_gateway = AdapterGateway()
