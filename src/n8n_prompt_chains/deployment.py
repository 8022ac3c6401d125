"""Deployment cache: prompt chain id -> deployed n8n workflow id.

`ensure_deployed` is the only way the orchestrator obtains an n8n workflow id.

Resolution order on each call:
    1. In-process cache hit -> return immediately, no network call.
    2. Persisted registry record -> update that n8n workflow in place by id
       (falls through to 3 if n8n answers 404 for it).
    3. Name lookup over all n8n workflows:
         0 matches  -> create
         1 match    -> update in place (keeps n8n execution history)
         >1 matches -> AmbiguousDeployment
    4. Activate unconditionally, then populate cache and registry.

Any remote failure propagates and leaves the cache untouched for that id.

Concurrency: the lock guards only the dict; it is never held across an await.
Two concurrent cold misses for the same chain may both deploy; both converge on
the same n8n workflow via update-by-name, and the last insert wins.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .deployment_registry import load_deployments, store_deployment
from .engine_client import N8nClient
from .errors import AmbiguousDeployment, RemoteEngineError
from .models.graph import Workflow
from .models.n8n import N8nWorkflow
from .translation.rules import RuleTranspiler
from .translator import translate_workflow

logger = logging.getLogger(__name__)

__all__ = ["DeploymentCache"]


class DeploymentCache:
    def __init__(
        self,
        client: N8nClient,
        *,
        registry_path: Optional[str] = None,
        transpiler: Optional[RuleTranspiler] = None,
    ):
        self._client = client
        self._registry_path = registry_path
        self._transpiler = transpiler
        self._lock = threading.Lock()
        self._ids: Dict[str, str] = {}

    def get(self, workflow_id: str) -> Optional[str]:
        with self._lock:
            return self._ids.get(workflow_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def invalidate(self, workflow_id: Optional[str] = None) -> None:
        """Forget one cached id, or all of them when `workflow_id` is None.

        The persisted registry is kept; it still names the right n8n workflow
        and the next deploy updates it in place.
        """
        with self._lock:
            if workflow_id is None:
                self._ids.clear()
            else:
                self._ids.pop(workflow_id, None)
        logger.info("Cleared deployment cache for %s", workflow_id or "all workflows")

    async def ensure_deployed(self, workflow: Workflow, org_id: Optional[str] = None) -> str:
        cached = self.get(workflow.id)
        if cached:
            logger.debug("Deployment cache hit: %s -> %s", workflow.id, cached)
            return cached

        logger.info("Deployment cache miss for workflow %s (%s)", workflow.id, workflow.name)
        # Compile before any network call; compile errors leave n8n untouched.
        definition = translate_workflow(workflow, org_id, transpiler=self._transpiler)

        remote_id = await self._update_registered(workflow.id, definition)
        if remote_id is None:
            remote_id = await self._upsert_by_name(definition)

        await self._client.activate_workflow(remote_id)
        logger.info("Activated n8n workflow %s for %s", remote_id, workflow.id)

        with self._lock:
            self._ids[workflow.id] = remote_id
        if self._registry_path:
            try:
                store_deployment(self._registry_path, workflow.id, remote_id)
            except OSError as e:
                logger.warning("Could not persist deployment %s -> %s: %s", workflow.id, remote_id, e)
        return remote_id

    async def _update_registered(self, workflow_id: str, definition: N8nWorkflow) -> Optional[str]:
        remote_id = load_deployments(self._registry_path).get(workflow_id)
        if not remote_id:
            return None
        try:
            updated = await self._client.update_workflow(remote_id, definition)
        except RemoteEngineError as e:
            if e.status_code == 404:
                logger.warning(
                    "Registered n8n workflow %s for %s no longer exists; falling back to name lookup",
                    remote_id,
                    workflow_id,
                )
                return None
            raise
        logger.info("Updated registered n8n workflow %s", remote_id)
        return updated.id or remote_id

    async def _upsert_by_name(self, definition: N8nWorkflow) -> str:
        remote = await self._client.list_workflows()
        matches = [w for w in remote if w.name == definition.name and w.id]
        if len(matches) > 1:
            raise AmbiguousDeployment(definition.name, [str(w.id) for w in matches])
        if matches:
            existing_id = str(matches[0].id)
            logger.info("Updating existing n8n workflow %s (%s)", existing_id, definition.name)
            updated = await self._client.update_workflow(existing_id, definition)
            return updated.id or existing_id
        created = await self._client.create_workflow(definition)
        if not created.id:
            raise RemoteEngineError(None, "create workflow response carried no id", method="POST", path="/workflows")
        logger.info("Created n8n workflow %s (%s)", created.id, definition.name)
        return created.id
