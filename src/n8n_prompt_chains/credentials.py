"""Best-effort propagation of organization credentials into n8n.

The surrounding system stores an org's provider secret first; pushing it into
n8n happens afterwards as an independent asyncio task. A failed push is logged
and appended to `CredentialPropagator.failures`, never raised to the caller
whose local store already succeeded. Compiled workflows reference these
credentials by the name `org_<orgId>_<service>`.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import Settings
from .engine_client import N8nClient
from .errors import RemoteEngineError
from .models.n8n import N8nCredential
from .translation.credential_refs import SERVICE_CREDENTIAL_TYPES, credential_name

logger = logging.getLogger(__name__)

__all__ = ["CredentialSyncFailure", "CredentialPropagator", "credential_data"]

API_KEY_SERVICES = frozenset({"openai", "anthropic", "google"})


class CredentialSyncFailure(BaseModel):
    org_id: str
    service: str
    operation: str  # "store" | "delete"
    error: str
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def credential_data(service: str, secret: str) -> Dict[str, str]:
    """n8n credential `data` for a service: API key or OAuth access token."""
    if service in API_KEY_SERVICES:
        return {"apiKey": secret}
    return {"accessToken": secret}


class CredentialPropagator:
    def __init__(
        self,
        client: N8nClient,
        *,
        max_attempts: int = 3,
        services: Optional[List[str]] = None,
        retry_wait_max: float = 8.0,
    ):
        self._client = client
        self.max_attempts = max(1, max_attempts)
        self.services = set(services or SERVICE_CREDENTIAL_TYPES)
        self._retry_wait_max = retry_wait_max
        self.failures: List[CredentialSyncFailure] = []
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings, client: N8nClient) -> "CredentialPropagator":
        return cls(
            client,
            max_attempts=settings.CREDENTIAL_SYNC_MAX_ATTEMPTS,
            services=settings.CREDENTIAL_SERVICES or None,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, max=self._retry_wait_max),
            retry=retry_if_exception_type(RemoteEngineError),
        )

    def _supported(self, service: str) -> bool:
        if service not in SERVICE_CREDENTIAL_TYPES or service not in self.services:
            logger.warning("Unknown or disabled credential service: %s", service)
            return False
        return True

    async def _find(self, name: str) -> Optional[N8nCredential]:
        for existing in await self._client.list_credentials():
            if existing.name == name and existing.id:
                return existing
        return None

    async def store(self, org_id: str, service: str, secret: str) -> bool:
        """Create or update `org_<org>_<service>` in n8n; False on failure."""
        if not self._supported(service):
            return False
        credential = N8nCredential(
            name=credential_name(service, org_id),
            type=SERVICE_CREDENTIAL_TYPES[service],
            data=credential_data(service, secret),
        )
        try:
            async for attempt in self._retrying():
                with attempt:
                    existing = await self._find(credential.name)
                    if existing is not None:
                        await self._client.update_credential(str(existing.id), credential)
                    else:
                        await self._client.create_credential(credential)
        except RemoteEngineError as e:
            self._record_failure(org_id, service, "store", e)
            return False
        logger.info("Propagated credential %s to n8n", credential.name)
        return True

    async def delete(self, org_id: str, service: str) -> bool:
        """Delete `org_<org>_<service>` from n8n if present; False on failure."""
        name = credential_name(service, org_id)
        try:
            async for attempt in self._retrying():
                with attempt:
                    existing = await self._find(name)
                    if existing is not None:
                        await self._client.delete_credential(str(existing.id))
        except RemoteEngineError as e:
            self._record_failure(org_id, service, "delete", e)
            return False
        return True

    def _record_failure(self, org_id: str, service: str, operation: str, error: Exception) -> None:
        logger.error("Failed to %s n8n credential for org %s service %s: %s", operation, org_id, service, error)
        self.failures.append(
            CredentialSyncFailure(org_id=org_id, service=service, operation=operation, error=str(error))
        )

    def _spawn(self, coro) -> "asyncio.Task[bool]":
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule_store(self, org_id: str, service: str, secret: str) -> "asyncio.Task[bool]":
        """Run `store` as a background task; the caller need not await it."""
        return self._spawn(self.store(org_id, service, secret))

    def schedule_delete(self, org_id: str, service: str) -> "asyncio.Task[bool]":
        return self._spawn(self.delete(org_id, service))

    async def drain(self) -> None:
        """Wait for every scheduled propagation task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
