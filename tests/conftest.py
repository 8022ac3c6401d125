import json
import re
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Ensure `src` is on sys.path for tests when not installed editable.
ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from n8n_prompt_chains.engine_client import N8nClient  # noqa: E402
from n8n_prompt_chains.models.execution import (  # noqa: E402
    TERMINAL_STATUSES,
    ExecutionMetrics,
    ExecutionRecord,
    ExecutionStatus,
)
from n8n_prompt_chains.models.graph import Workflow, parse_workflow  # noqa: E402

BASE_URL = "http://n8n.test"


class FakeN8n:
    """In-memory n8n REST API served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.workflows: Dict[str, Dict[str, Any]] = {}
        self.credentials: Dict[str, Dict[str, Any]] = {}
        self.executions: Dict[str, Dict[str, Any]] = {}
        self.requests: List[Tuple[str, str, Any]] = []
        self.executed: List[Tuple[str, Any]] = []
        # Scripted GET /executions/{id} responses, consumed in order.
        self.poll_results: List[Dict[str, Any]] = []
        # Response body for POST /workflows/{id}/execute (id assigned if missing).
        self.execute_result: Optional[Dict[str, Any]] = None
        # (method, api path) -> (status, body) forced failures
        self.failures: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self.healthy = True
        self._next_id = 1

    def _new_id(self) -> str:
        value = str(self._next_id)
        self._next_id += 1
        return value

    def calls(self, method: str, path: Optional[str] = None) -> List[Tuple[str, str, Any]]:
        return [r for r in self.requests if r[0] == method and (path is None or r[1] == path)]

    def add_workflow(self, name: str, **extra: Any) -> str:
        wf_id = self._new_id()
        self.workflows[wf_id] = {"id": wf_id, "name": name, "nodes": [], "connections": {}, **extra}
        return wf_id

    def client(self) -> N8nClient:
        return N8nClient(BASE_URL, "admin", "secret", transport=httpx.MockTransport(self.handler))

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        body = json.loads(request.content) if request.content else None

        if path == "/healthz":
            return httpx.Response(200 if self.healthy else 503, json={"status": "ok"})

        assert path.startswith("/api/v1"), path
        api_path = path[len("/api/v1"):]
        self.requests.append((method, api_path, body))
        if (method, api_path) in self.failures:
            status, text = self.failures[(method, api_path)]
            return httpx.Response(status, text=text)

        if api_path == "/workflows":
            if method == "GET":
                return httpx.Response(200, json={"data": list(self.workflows.values()), "nextCursor": None})
            if method == "POST":
                wf_id = self._new_id()
                self.workflows[wf_id] = {**body, "id": wf_id}
                return httpx.Response(200, json=self.workflows[wf_id])

        match = re.fullmatch(r"/workflows/([^/]+)/execute", api_path)
        if match and method == "POST":
            wf_id = match.group(1)
            if wf_id not in self.workflows:
                return httpx.Response(404, text='{"message":"Workflow not found"}')
            self.executed.append((wf_id, body))
            result = dict(self.execute_result or {"finished": False, "mode": "manual"})
            result.setdefault("id", self._new_id())
            result.setdefault("workflowId", wf_id)
            self.executions[str(result["id"])] = result
            return httpx.Response(200, json=result)

        match = re.fullmatch(r"/workflows/([^/]+)", api_path)
        if match:
            wf_id = match.group(1)
            if wf_id not in self.workflows:
                return httpx.Response(404, text='{"message":"Workflow not found"}')
            if method == "GET":
                return httpx.Response(200, json=self.workflows[wf_id])
            if method == "PATCH":
                self.workflows[wf_id].update(body or {})
                return httpx.Response(200, json=self.workflows[wf_id])
            if method == "DELETE":
                return httpx.Response(200, json=self.workflows.pop(wf_id))

        if api_path == "/executions" and method == "GET":
            rows = list(self.executions.values())
            workflow_id = request.url.params.get("workflowId")
            if workflow_id:
                rows = [r for r in rows if r.get("workflowId") == workflow_id]
            return httpx.Response(200, json={"data": rows})

        match = re.fullmatch(r"/executions/([^/]+)", api_path)
        if match and method == "GET":
            if self.poll_results:
                return httpx.Response(200, json=self.poll_results.pop(0))
            execution = self.executions.get(match.group(1))
            if execution is None:
                return httpx.Response(404, text='{"message":"Execution not found"}')
            return httpx.Response(200, json=execution)

        if api_path == "/credentials":
            if method == "GET":
                return httpx.Response(200, json={"data": list(self.credentials.values())})
            if method == "POST":
                cred_id = self._new_id()
                self.credentials[cred_id] = {**body, "id": cred_id}
                return httpx.Response(200, json=self.credentials[cred_id])

        match = re.fullmatch(r"/credentials/([^/]+)", api_path)
        if match:
            cred_id = match.group(1)
            if cred_id not in self.credentials:
                return httpx.Response(404, text='{"message":"Credential not found"}')
            if method == "PATCH":
                self.credentials[cred_id].update(body or {})
                return httpx.Response(200, json=self.credentials[cred_id])
            if method == "DELETE":
                return httpx.Response(200, json=self.credentials.pop(cred_id))

        return httpx.Response(404, text=f"no route for {method} {api_path}")


class FakeStore:
    """In-memory execution store with the same contract as PostgresStore."""

    def __init__(self) -> None:
        self.profiles: Dict[str, str] = {}
        self.workflows: Dict[str, Workflow] = {}
        self.executions: Dict[str, ExecutionRecord] = {}
        self.hourly: Dict[Tuple[str, datetime], Dict[str, Any]] = {}
        self.terminal_writes: Dict[str, int] = {}

    def add_workflow(self, workflow: Workflow) -> None:
        self.workflows[workflow.id] = workflow

    async def get_profile_org(self, user_id: str) -> Optional[str]:
        return self.profiles.get(user_id)

    async def get_workflow(self, chain_id: str, org_id: str) -> Optional[Workflow]:
        workflow = self.workflows.get(chain_id)
        if workflow is None or workflow.org_id != org_id:
            return None
        return workflow

    async def insert_execution(self, chain_id, org_id, input_data, started_at) -> ExecutionRecord:
        record = ExecutionRecord(
            id=f"exec-{len(self.executions) + 1}",
            chain_id=chain_id,
            org_id=org_id,
            status=ExecutionStatus.PENDING,
            input_data=input_data,
            started_at=started_at,
        )
        self.executions[record.id] = record
        return record

    async def mark_running(self, execution_id: str, n8n_execution_id: Optional[str] = None) -> None:
        record = self.executions[execution_id]
        self.executions[execution_id] = record.model_copy(
            update={"status": ExecutionStatus.RUNNING, "n8n_execution_id": n8n_execution_id}
        )

    async def complete_execution(
        self,
        execution_id: str,
        *,
        status: ExecutionStatus,
        output_data: Any,
        metrics: ExecutionMetrics,
        cost_data: Optional[Dict[str, Any]],
        error_details: Optional[Dict[str, Any]],
        completed_at: datetime,
    ) -> None:
        record = self.executions[execution_id]
        assert record.status not in TERMINAL_STATUSES, "terminal state written twice"
        self.terminal_writes[execution_id] = self.terminal_writes.get(execution_id, 0) + 1
        self.executions[execution_id] = record.model_copy(
            update={
                "status": status,
                "output_data": output_data,
                "metrics": metrics,
                "cost_data": cost_data,
                "error_details": error_details,
                "completed_at": completed_at,
            }
        )

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        return self.executions.get(execution_id)

    async def upsert_hourly_metrics(self, chain_id, org_id, hour, *, cost, latency_ms, failed) -> None:
        row = self.hourly.setdefault(
            (chain_id, hour),
            {"org_id": org_id, "executions": 0, "total_cost": 0.0, "avg_latency_ms": 0, "error_count": 0},
        )
        row["executions"] += 1
        row["total_cost"] += cost
        row["avg_latency_ms"] = latency_ms
        row["error_count"] += 1 if failed else 0
        row["success_rate"] = (row["executions"] - row["error_count"]) * 100.0 / row["executions"]


def make_chain(
    nodes: List[Dict[str, Any]],
    edges: Optional[List[Dict[str, Any]]] = None,
    *,
    chain_id: str = "chain-1",
    name: str = "Support triage",
    org_id: Optional[str] = "org-a",
) -> Workflow:
    return parse_workflow(
        {
            "id": chain_id,
            "name": name,
            "org_id": org_id,
            "config": {"nodes": nodes, "edges": edges or []},
        }
    )


def prompt_node(node_id: str = "prompt-1", **data: Any) -> Dict[str, Any]:
    payload = {"label": "Summarize", "prompt": "{{input}}", "model": "gpt-3.5-turbo"}
    payload.update(data)
    return {"id": node_id, "type": "prompt", "position": {"x": 250, "y": 100}, "data": payload}


def finished_execution(
    execution_id: str = "101",
    run_data: Optional[Dict[str, Any]] = None,
    *,
    error: Optional[Dict[str, Any]] = None,
    status: str = "success",
    duration_ms: int = 1500,
) -> Dict[str, Any]:
    started = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    body: Dict[str, Any] = {
        "id": execution_id,
        "finished": True,
        "mode": "manual",
        "status": status,
        "startedAt": started.isoformat(),
        "stoppedAt": (started + timedelta(milliseconds=duration_ms)).isoformat(),
        "data": {"resultData": {"runData": run_data or {}}},
    }
    if error is not None:
        body["error"] = error
    return body


def node_run(json_payload: Dict[str, Any], start_time: int) -> Dict[str, Any]:
    return {
        "startTime": start_time,
        "executionTime": 5,
        "data": {"main": [[{"json": json_payload}]]},
    }


@pytest.fixture
def fake_n8n() -> FakeN8n:
    return FakeN8n()


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def chain() -> Workflow:
    return make_chain([prompt_node()])
