"""Reppo catalog client: agent identities and pod metadata."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .errors import is_retryable_error
from .logger import get_logger
from .models import AgentSession, PodMetadata
from .retry import with_retry
from .storage import Document, DocumentStore

logger = get_logger(__name__)


class ReppoCatalog:
    def __init__(
        self,
        base_url: str,
        *,
        session_store: DocumentStore,
        buyer_store: DocumentStore,
        client: Optional[httpx.AsyncClient] = None,
        attempts: int = 3,
        base_delay: float = 1.0,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=httpx.Timeout(30.0))
        self.session_store = session_store
        self.buyer_store = buyer_store
        self.session: Optional[AgentSession] = None
        self.attempts = attempts
        self.base_delay = base_delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, label: str, **kwargs: Any) -> Any:
        async def _call() -> Any:
            response = await self._client.request(method, path, **kwargs)
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}: {response.text}", request=response.request, response=response
                )
            try:
                return response.json()
            except ValueError:
                return response.text

        return await with_retry(
            _call, label, attempts=self.attempts, base_delay=self.base_delay, should_retry=is_retryable_error
        )

    async def _register(self, name: str, description: str, label: str) -> AgentSession:
        body = await self._request(
            "POST", "/agents/register", label, json={"name": name, "description": description}
        )
        data = (body.get("data") if isinstance(body, dict) else None) or {}
        session = AgentSession.from_dict(data)
        if session is None:
            raise ValueError(f"Unexpected register response: {body}")
        return session

    async def register_agent(self, name: str, description: str) -> AgentSession:
        """Load the service identity from disk, registering it on first start."""
        existing = AgentSession.from_dict(await self.session_store.read())
        if existing is not None:
            logger.info("already registered", agent_id=existing.agent_id)
            self.session = existing
            return existing

        logger.info("registering agent with reppo", name=name)
        session = await self._register(name, description, "registerAgent")
        await self.session_store.update(lambda _state: session.to_dict())
        logger.info("registered successfully", agent_id=session.agent_id, wallet_address=session.wallet_address)
        self.session = session
        return session

    async def get_buyer_session(self, buyer_id: str) -> Optional[AgentSession]:
        sessions = await self.buyer_store.read()
        raw = sessions.get(buyer_id)
        return AgentSession.from_dict(raw) if isinstance(raw, dict) else None

    async def get_or_create_buyer_agent(
        self, buyer_id: str, name: Optional[str], description: Optional[str]
    ) -> Optional[AgentSession]:
        existing = await self.get_buyer_session(buyer_id)
        if existing is not None:
            logger.info("buyer already registered", buyer_id=buyer_id, agent_id=existing.agent_id)
            return existing
        if not name:
            logger.info("no agentName provided, skipping profile creation", buyer_id=buyer_id)
            return None

        logger.info("registering buyer agent", buyer_id=buyer_id, name=name)
        session = await self._register(name, description or name, "registerBuyerAgent")

        def _apply(state: Document) -> None:
            state[buyer_id] = session.to_dict()

        await self.buyer_store.update(_apply)
        logger.info("buyer registered successfully", buyer_id=buyer_id, agent_id=session.agent_id)
        return session

    async def publish(self, session: AgentSession, metadata: PodMetadata) -> Dict[str, Any]:
        logger.info("submitting metadata to reppo", agent_id=session.agent_id, subnet=metadata.category)
        body = await self._request(
            "POST",
            f"/agents/{session.agent_id}/pods",
            "submitPodMetadata",
            headers={"Authorization": f"Bearer {session.access_token}"},
            json=metadata.to_payload(),
        )
        pod = body.get("data") if isinstance(body, dict) else None
        logger.info("metadata submitted", catalog_pod_id=pod.get("id") if isinstance(pod, dict) else None)
        return body if isinstance(body, dict) else {"data": body}
