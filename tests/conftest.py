from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import orjson
import pytest

from pod_publisher.context import EngineContext
from pod_publisher.controller import PhaseController
from pod_publisher.errors import InsufficientFundsError
from pod_publisher.models import AgentSession, Deliverable, MintResult, PodMetadata, TweetData
from pod_publisher.pipeline import ExecutionPipeline
from pod_publisher.recovery import RecoveryRunner

POST_URL = "https://x.com/reppo/status/1234567890"
TWEET_ID = "1234567890"


def make_memo(post_url: Optional[str] = POST_URL, subnets: Any = ("crypto", "defi"), **extra: Any) -> Dict[str, Any]:
    requirement: Dict[str, Any] = dict(extra)
    if post_url is not None:
        requirement["postUrl"] = post_url
    if subnets is not None:
        requirement["subnets"] = list(subnets) if isinstance(subnets, tuple) else subnets
    return {"content": orjson.dumps({"requirement": requirement}).decode()}


class FakeJob:
    def __init__(
        self,
        job_id: str = "101",
        phase: int = 0,
        memos: Optional[List[Any]] = None,
        price: Optional[float] = 10.0,
        client_address: Optional[str] = "0xbuyer",
    ):
        self.id = job_id
        self.phase = phase
        self.memos = memos if memos is not None else [make_memo()]
        self.price = price
        self.client_address = client_address
        self.accepted: List[str] = []
        self.requirements: List[str] = []
        self.rejections: List[str] = []
        self.deliveries: List[Dict[str, Any]] = []
        self.evaluations: List[tuple] = []
        self.deliver_error: Optional[Exception] = None

    def at_phase(self, phase: int) -> "FakeJob":
        clone = FakeJob(self.id, phase, self.memos, self.price, self.client_address)
        clone.deliver_error = self.deliver_error
        return clone

    async def accept(self, message: str) -> None:
        self.accepted.append(message)

    async def create_requirement(self, message: str) -> None:
        self.requirements.append(message)

    async def reject(self, reason: str) -> None:
        self.rejections.append(reason)

    async def deliver(self, deliverable: Deliverable) -> None:
        if self.deliver_error is not None:
            raise self.deliver_error
        self.deliveries.append(deliverable.to_payload())

    async def evaluate(self, approved: bool, reason: str) -> None:
        self.evaluations.append((approved, reason))


class FakeFetcher:
    def __init__(self) -> None:
        self.calls: List[str] = []
        self.error: Optional[Exception] = None
        self.hold: Optional[asyncio.Event] = None

    async def fetch(self, tweet_id: str) -> TweetData:
        self.calls.append(tweet_id)
        if self.hold is not None:
            await self.hold.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return TweetData(
            id=tweet_id,
            text="This is a test tweet about AI agents",
            author_id="111",
            author_username="testuser",
            media_urls=["https://pbs.twimg.com/media/test.jpg"],
        )


class FakeMinter:
    address = "0xservice"

    def __init__(self) -> None:
        self.calls = 0
        self.error: Optional[Exception] = None

    async def mint(self) -> MintResult:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return MintResult(tx_hash=f"0xabc{self.calls}", pod_id=41 + self.calls)

    def run_dry(self) -> None:
        self.error = InsufficientFundsError("Insufficient REPPO balance. Need 10, have 0")


class FakeCatalog:
    def __init__(self) -> None:
        self.session: Optional[AgentSession] = AgentSession(agent_id="service-agent", access_token="token")
        self.published: List[PodMetadata] = []
        self.publishers: List[str] = []
        self.fail_categories: set = set()
        self.buyer_sessions: Dict[str, AgentSession] = {}

    async def publish(self, session: AgentSession, metadata: PodMetadata) -> Dict[str, Any]:
        await asyncio.sleep(0)
        if metadata.category in self.fail_categories:
            raise RuntimeError(f"HTTP 400: subnet {metadata.category} rejected")
        self.published.append(metadata)
        self.publishers.append(session.agent_id)
        return {"data": {"id": f"pod-{len(self.published)}"}}

    async def get_or_create_buyer_agent(
        self, buyer_id: str, name: Optional[str], description: Optional[str]
    ) -> Optional[AgentSession]:
        if buyer_id in self.buyer_sessions:
            return self.buyer_sessions[buyer_id]
        if not name:
            return None
        session = AgentSession(agent_id=f"buyer-{name}", access_token="buyer-token")
        self.buyer_sessions[buyer_id] = session
        return session

    @property
    def categories(self) -> List[str]:
        return [item.category for item in self.published]


class FakeProtocol:
    def __init__(self) -> None:
        self.jobs: Dict[str, FakeJob] = {}
        self.lookups: List[str] = []

    def add(self, job: FakeJob) -> FakeJob:
        self.jobs[str(job.id)] = job
        return job

    async def get_job(self, job_id: str) -> Optional[FakeJob]:
        self.lookups.append(job_id)
        return self.jobs.get(str(job_id))

    async def get_active_jobs(self) -> List[FakeJob]:
        return list(self.jobs.values())


@pytest.fixture
def context() -> EngineContext:
    return EngineContext.in_memory()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def minter() -> FakeMinter:
    return FakeMinter()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def protocol() -> FakeProtocol:
    return FakeProtocol()


@pytest.fixture
def pipeline(context, fetcher, minter, catalog) -> ExecutionPipeline:
    return ExecutionPipeline(context, fetcher, minter, catalog)


@pytest.fixture
def controller(context, pipeline) -> PhaseController:
    return PhaseController(context, pipeline, min_fare=5.0)


@pytest.fixture
def recovery(context, pipeline, protocol) -> RecoveryRunner:
    return RecoveryRunner(context, pipeline, protocol)
