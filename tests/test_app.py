from __future__ import annotations

import asyncio
from typing import List

from aiohttp.test_utils import TestClient, TestServer
from conftest import FakeJob, FakeProtocol

from pod_publisher.app import JobDispatcher, poll_jobs
from pod_publisher.health import HealthServer, RuntimeState
from pod_publisher.models import JobPhase


class RecordingController:
    def __init__(self) -> None:
        self.handled: List[str] = []
        self.evaluated: List[str] = []

    async def handle_job(self, job) -> None:
        self.handled.append(job.id)

    async def handle_evaluate(self, job) -> None:
        self.evaluated.append(job.id)


def test_dispatcher_evaluates_each_job_once():
    controller = RecordingController()
    dispatcher = JobDispatcher(controller)

    async def scenario() -> None:
        dispatcher.dispatch(FakeJob(job_id="1", phase=JobPhase.REQUEST))
        dispatcher.dispatch(FakeJob(job_id="2", phase=JobPhase.EVALUATION))
        dispatcher.dispatch(FakeJob(job_id="2", phase=JobPhase.EVALUATION))
        await dispatcher.drain()

    asyncio.run(scenario())

    assert controller.handled == ["1"]
    assert controller.evaluated == ["2"]
    assert len(dispatcher) == 0


def test_dispatcher_forgets_oldest_evaluations_past_the_cap():
    controller = RecordingController()
    dispatcher = JobDispatcher(controller, max_evaluated=2)

    async def scenario() -> None:
        for job_id in ("1", "2", "3", "1"):
            dispatcher.dispatch(FakeJob(job_id=job_id, phase=JobPhase.EVALUATION))
        await dispatcher.drain()

    asyncio.run(scenario())

    assert controller.evaluated == ["1", "2", "3", "1"]
    assert len(dispatcher._evaluated) == 2


def test_poll_jobs_dispatches_and_stops():
    controller = RecordingController()
    dispatcher = JobDispatcher(controller)
    state = RuntimeState()

    class OneShotProtocol(FakeProtocol):
        async def get_active_jobs(self):
            stop.set()
            return await super().get_active_jobs()

    protocol = OneShotProtocol()
    protocol.add(FakeJob(job_id="1", phase=JobPhase.TRANSACTION))
    protocol.add(FakeJob(job_id="2", phase=JobPhase.NEGOTIATION))
    stop = asyncio.Event()

    async def scenario() -> None:
        await poll_jobs(protocol, dispatcher, state, 60, stop)
        await dispatcher.drain()

    asyncio.run(scenario())

    assert sorted(controller.handled) == ["1", "2"]
    assert state.active_jobs == 2
    assert state.last_poll is not None


def test_health_endpoints_follow_runtime_state():
    state = RuntimeState()
    server = HealthServer("127.0.0.1", 0, state, lambda: 12)

    async def scenario() -> dict:
        results = {}
        async with TestClient(TestServer(server.build_app())) as client:
            response = await client.get("/healthz")
            results["starting"] = (response.status, await response.json())
            response = await client.get("/ready")
            results["not_ready"] = response.status
            state.healthy = True
            response = await client.get("/health")
            results["healthy"] = (response.status, await response.json())
            response = await client.get("/ready")
            results["ready"] = (response.status, await response.text())
        return results

    results = asyncio.run(scenario())

    assert results["starting"][0] == 503
    assert results["starting"][1]["status"] == "starting"
    assert results["not_ready"] == 503
    status, body = results["healthy"]
    assert status == 200
    assert body["status"] == "healthy"
    assert body["processedTweets"] == 12
    assert results["ready"] == (200, "ready")
