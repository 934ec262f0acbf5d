from __future__ import annotations

import asyncio
import signal
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Set

from .acp import AcpHttpClient
from .catalog import ReppoCatalog
from .chain import PodMinter
from .config import Settings, get_settings
from .context import EngineContext
from .controller import PhaseController
from .health import HealthServer, RuntimeState
from .logger import configure_logging, get_logger
from .models import JobPhase
from .pipeline import ExecutionPipeline
from .ports import JobHandle, ProtocolClient
from .recovery import RecoveryRunner
from .storage import FileDocumentStore
from .twitter import XClient

logger = get_logger(__name__)

MAX_EVALUATED = 1_000


class JobDispatcher:
    """Fans protocol notifications out to the controller, one task per notification."""

    def __init__(self, controller: PhaseController, max_evaluated: int = MAX_EVALUATED):
        self.controller = controller
        self.max_evaluated = max_evaluated
        self._tasks: Set[asyncio.Task] = set()
        self._evaluated: "OrderedDict[str, None]" = OrderedDict()

    def dispatch(self, job: JobHandle) -> None:
        if JobPhase.coerce(job.phase) == JobPhase.EVALUATION:
            if str(job.id) in self._evaluated:
                return
            self._evaluated[str(job.id)] = None
            while len(self._evaluated) > self.max_evaluated:
                self._evaluated.popitem(last=False)
            coro = self.controller.handle_evaluate(job)
        else:
            coro = self.controller.handle_job(job)
        task = asyncio.create_task(coro, name=f"job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._done)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("job task crashed", task=task.get_name(), error=str(task.exception()))

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def poll_jobs(
    protocol: ProtocolClient,
    dispatcher: JobDispatcher,
    state: RuntimeState,
    interval: float,
    stop: asyncio.Event,
) -> None:
    while not stop.is_set():
        try:
            jobs = await protocol.get_active_jobs()
            state.last_poll = datetime.now(timezone.utc).isoformat()
            state.active_jobs = len(jobs)
            if jobs:
                logger.info("active jobs", count=len(jobs))
            for job in jobs:
                dispatcher.dispatch(job)
        except Exception as exc:
            logger.error("poll error", error=str(exc))
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def _run(settings: Settings) -> None:
    configure_logging(settings.log_level)
    logger.info(
        "starting pod publisher",
        entity_id=settings.acp_entity_id,
        wallet_address=settings.acp_wallet_address,
        poll_interval=settings.poll_interval_seconds,
    )

    context = await EngineContext.from_settings(settings).initialize()
    state = RuntimeState()
    health = HealthServer(settings.health_host, settings.health_port, state, context.dedup.count)
    await health.start()

    catalog = ReppoCatalog(
        settings.reppo_api_url,
        session_store=FileDocumentStore(settings.session_path, lock_attempts=settings.lock_attempts),
        buyer_store=FileDocumentStore(settings.buyer_sessions_path, lock_attempts=settings.lock_attempts),
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
    )
    session = await catalog.register_agent(settings.reppo_agent_name, settings.reppo_agent_description)
    logger.info("reppo session ready", agent_id=session.agent_id)

    minter = PodMinter(
        settings.private_key,
        rpc_url=settings.rpc_url,
        receipt_timeout=settings.tx_receipt_timeout,
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
    )
    logger.info("chain client ready", wallet=minter.address)

    fetcher = XClient(settings.twitter_bearer_token, base_url=settings.twitter_api_url)
    protocol = AcpHttpClient(
        settings.acp_api_url,
        wallet_address=settings.acp_wallet_address,
        api_key=settings.acp_api_key,
        page_size=settings.acp_page_size,
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay,
    )

    pipeline = ExecutionPipeline(context, fetcher, minter, catalog)
    controller = PhaseController(context, pipeline, min_fare=settings.min_fare_usdc)
    recovery = RecoveryRunner(
        context, pipeline, protocol, abandon_after=timedelta(hours=settings.recovery_abandon_hours)
    )
    await recovery.run()

    dispatcher = JobDispatcher(controller)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signame in ("SIGINT", "SIGTERM"):
        loop.add_signal_handler(getattr(signal, signame), stop.set)

    state.healthy = True
    logger.info("listening for jobs")
    try:
        await poll_jobs(protocol, dispatcher, state, settings.poll_interval_seconds, stop)
    finally:
        logger.info("shutting down")
        state.healthy = False
        await dispatcher.drain()
        await protocol.aclose()
        await fetcher.aclose()
        await catalog.aclose()
        await health.stop()
        logger.info("shutdown complete")


def main() -> None:  # pragma: no cover - thin wrapper
    settings = get_settings()
    asyncio.run(_run(settings))


if __name__ == "__main__":
    main()
