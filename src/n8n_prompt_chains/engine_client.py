"""Async client for the n8n REST API (`/api/v1`).

Thin wrapper over `httpx.AsyncClient` with basic authentication (plus the
optional `X-N8N-API-KEY` header). Every data call funnels through
`_request`, which turns any non-2xx response into `RemoteEngineError`
carrying the status code and body text, and wraps transport failures the same
way with `status_code=None`. No retries happen here; callers decide.

Endpoints consumed:
    workflows      POST /workflows, PATCH|GET|DELETE /workflows/{id}, GET /workflows
    activation     PATCH /workflows/{id} {"active": true|false}
    execution      POST /workflows/{id}/execute, GET /executions/{id}, GET /executions
    credentials    GET|POST /credentials, PATCH|DELETE /credentials/{id}
    health         GET /healthz (outside /api/v1; never raises)

List endpoints follow n8n's `nextCursor` pagination until exhausted.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .errors import RemoteEngineError
from .models.n8n import EngineExecution, N8nCredential, N8nWorkflow

logger = logging.getLogger(__name__)

__all__ = ["N8nClient"]

API_PREFIX = "/api/v1"


class N8nClient:
    def __init__(
        self,
        base_url: str,
        user: str,
        password: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base = base_url.rstrip("/")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["X-N8N-API-KEY"] = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base,
            auth=(user, password),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "N8nClient":
        return cls(
            settings.N8N_BASE_URL,
            settings.N8N_BASIC_AUTH_USER,
            settings.N8N_BASIC_AUTH_PASSWORD,
            api_key=settings.N8N_API_KEY,
            timeout=settings.N8N_API_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "N8nClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{API_PREFIX}{path}"
        try:
            resp = await self._client.request(method, url, json=json, params=params)
        except httpx.HTTPError as e:
            raise RemoteEngineError(None, f"request failed: {e}", method=method, path=path) from e
        if not 200 <= resp.status_code < 300:
            raise RemoteEngineError(resp.status_code, resp.text, method=method, path=path)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteEngineError(
                resp.status_code, f"invalid JSON: {resp.text[:500]}", method=method, path=path
            ) from e

    async def _list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = dict(params or {})
        items: List[Dict[str, Any]] = []
        while True:
            page = await self._request("GET", path, params=query or None)
            if isinstance(page, list):
                items.extend(page)
                break
            page = page or {}
            items.extend(page.get("data") or [])
            cursor = page.get("nextCursor")
            if not cursor:
                break
            query["cursor"] = cursor
        return items

    # ---------------- Workflows -----------------

    async def create_workflow(self, workflow: N8nWorkflow) -> N8nWorkflow:
        logger.info("Creating n8n workflow: %s", workflow.name)
        body = await self._request("POST", "/workflows", json=workflow.to_payload())
        return N8nWorkflow.model_validate(body or {})

    async def update_workflow(self, workflow_id: str, changes: Dict[str, Any] | N8nWorkflow) -> N8nWorkflow:
        logger.info("Updating n8n workflow: %s", workflow_id)
        payload = changes.to_payload() if isinstance(changes, N8nWorkflow) else changes
        body = await self._request("PATCH", f"/workflows/{workflow_id}", json=payload)
        return N8nWorkflow.model_validate(body or {})

    async def get_workflow(self, workflow_id: str) -> N8nWorkflow:
        body = await self._request("GET", f"/workflows/{workflow_id}")
        return N8nWorkflow.model_validate(body or {})

    async def delete_workflow(self, workflow_id: str) -> bool:
        await self._request("DELETE", f"/workflows/{workflow_id}")
        return True

    async def list_workflows(self) -> List[N8nWorkflow]:
        return [N8nWorkflow.model_validate(w) for w in await self._list("/workflows")]

    async def activate_workflow(self, workflow_id: str) -> N8nWorkflow:
        return await self.update_workflow(workflow_id, {"active": True})

    async def deactivate_workflow(self, workflow_id: str) -> N8nWorkflow:
        return await self.update_workflow(workflow_id, {"active": False})

    # ---------------- Executions -----------------

    async def execute_workflow(
        self, workflow_id: str, input_data: Optional[Dict[str, Any]] = None
    ) -> EngineExecution:
        logger.info("Executing n8n workflow: %s", workflow_id)
        body: Dict[str, Any] = {}
        if input_data is not None:
            body["data"] = input_data
        result = await self._request("POST", f"/workflows/{workflow_id}/execute", json=body)
        return EngineExecution.model_validate(result or {})

    async def get_execution(self, execution_id: str) -> EngineExecution:
        result = await self._request(
            "GET", f"/executions/{execution_id}", params={"includeData": "true"}
        )
        return EngineExecution.model_validate(result or {})

    async def list_executions(
        self, workflow_id: Optional[str] = None, limit: int = 20
    ) -> List[EngineExecution]:
        params: Dict[str, Any] = {"limit": limit}
        if workflow_id:
            params["workflowId"] = workflow_id
        page = await self._request("GET", "/executions", params=params)
        rows = page.get("data") if isinstance(page, dict) else page
        return [EngineExecution.model_validate(r) for r in rows or []]

    # ---------------- Credentials -----------------

    async def list_credentials(self) -> List[N8nCredential]:
        return [N8nCredential.model_validate(c) for c in await self._list("/credentials")]

    async def create_credential(self, credential: N8nCredential) -> N8nCredential:
        logger.info("Creating n8n credential: %s", credential.name)
        body = await self._request(
            "POST", "/credentials", json=credential.model_dump(exclude={"id"})
        )
        return N8nCredential.model_validate(body or credential.model_dump())

    async def update_credential(self, credential_id: str, credential: N8nCredential) -> N8nCredential:
        logger.info("Updating n8n credential: %s", credential_id)
        body = await self._request(
            "PATCH", f"/credentials/{credential_id}", json=credential.model_dump(exclude={"id"})
        )
        return N8nCredential.model_validate(body or credential.model_dump())

    async def delete_credential(self, credential_id: str) -> bool:
        await self._request("DELETE", f"/credentials/{credential_id}")
        return True

    # ---------------- Health -----------------

    async def health_check(self) -> Dict[str, str]:
        try:
            resp = await self._client.get("/healthz")
        except httpx.HTTPError as e:
            logger.error("n8n health check failed: %s", e)
            return {"status": "error"}
        if 200 <= resp.status_code < 300:
            return {"status": "ok"}
        return {"status": "error"}
