"""Contracts for the collaborators the job engine talks to."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence

from .models import AgentSession, Deliverable, MintResult, PodMetadata, TweetData


class JobHandle(Protocol):
    id: str
    phase: Any
    memos: Sequence[Any]
    price: Optional[float]

    async def accept(self, message: str) -> None: ...

    async def create_requirement(self, message: str) -> None: ...

    async def reject(self, reason: str) -> None: ...

    async def deliver(self, deliverable: Deliverable) -> None: ...

    async def evaluate(self, approved: bool, reason: str) -> None: ...


class ProtocolClient(Protocol):
    async def get_job(self, job_id: str) -> Optional[JobHandle]: ...

    async def get_active_jobs(self) -> List[JobHandle]: ...


class ContentFetcher(Protocol):
    async def fetch(self, tweet_id: str) -> TweetData: ...


class Minter(Protocol):
    address: str

    async def mint(self) -> MintResult: ...


class Catalog(Protocol):
    session: Optional[AgentSession]

    async def publish(self, session: AgentSession, metadata: PodMetadata) -> Dict[str, Any]: ...

    async def get_or_create_buyer_agent(
        self, buyer_id: str, name: Optional[str], description: Optional[str]
    ) -> Optional[AgentSession]: ...
