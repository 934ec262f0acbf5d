"""Phase-driven handling of protocol job notifications.

The protocol owns the job phase; this module only reacts to it:

* phase <= NEGOTIATION: validate, accept, post payment terms, write the work
  log entry, then let go of the item lock until the buyer pays.
* phase >= TRANSACTION: run (or continue) the execution pipeline, unless the
  job already settled.
* REJECTED / EXPIRED: drop an unpaid work log entry.
"""

from __future__ import annotations

from typing import Optional

from .context import EngineContext
from .errors import InvalidRequestError
from .logger import get_logger
from .metrics import DUPLICATES_IGNORED, JOB_ERRORS, JOBS_RECEIVED, JOBS_REJECTED
from .models import JobPhase, JobRequest
from .parser import buyer_id, parse_job_content, validate_request
from .pipeline import ExecutionPipeline
from .ports import JobHandle
from .worklog import WorkLogEntry, WorkStatus

logger = get_logger(__name__)

ACCEPT_MESSAGE = "Processing X post for pod minting"
REQUIREMENT_MESSAGE = "Pod minting for X post. Pay to proceed."
EVALUATION_MESSAGE = "Auto-approved by pod publisher"


class PhaseController:
    def __init__(self, context: EngineContext, pipeline: ExecutionPipeline, *, min_fare: float = 5.0):
        self.context = context
        self.pipeline = pipeline
        self.min_fare = min_fare

    async def handle_job(self, job: JobHandle) -> None:
        job_id = str(job.id)
        phase = JobPhase.coerce(job.phase)
        JOBS_RECEIVED.labels(phase=str(phase)).inc()
        log = logger.bind(job_id=job_id, phase=phase)
        log.info("processing job")

        if phase in (JobPhase.REJECTED, JobPhase.EXPIRED):
            await self._drop_unpaid(job_id)
            return
        if phase == JobPhase.COMPLETED:
            log.debug("job already completed")
            return

        price = float(job.price or 0)
        if self.min_fare and price < self.min_fare:
            log.warning("fare too low", price=price)
            await self._reject(job, f"Fare too low. Minimum: {self.min_fare:g} USDC. Got: {price:g}", "fare")
            return

        request = parse_job_content(job.memos)
        try:
            tweet_id = validate_request(request)
        except InvalidRequestError as exc:
            log.warning("invalid job payload", reason=exc.reason)
            await self._reject(job, exc.reason, "invalid")
            return
        log = log.bind(tweet_id=tweet_id)

        paid = phase >= JobPhase.TRANSACTION
        if paid and await self._settled(job_id):
            DUPLICATES_IGNORED.inc()
            log.info("job already minted and delivered, ignoring notification")
            return
        if self._processed_elsewhere(job_id, tweet_id):
            log.warning("tweet already processed")
            await self._reject(job, f"Tweet {tweet_id} already processed", "duplicate")
            return

        release = self.context.gate.acquire(tweet_id)
        if release is None:
            if paid:
                DUPLICATES_IGNORED.inc()
                log.warning("tweet currently being processed, skipping duplicate event")
                return
            await self._reject(job, f"Tweet {tweet_id} is already being processed", "busy")
            return

        try:
            if self._processed_elsewhere(job_id, tweet_id):
                log.warning("tweet was processed while waiting for lock")
                await self._reject(job, f"Tweet {tweet_id} already processed", "duplicate")
                return
            if not paid:
                await self._request_payment(job, request, tweet_id, phase)
                return
            if await self._settled(job_id):
                DUPLICATES_IGNORED.inc()
                return
            await self._execute(job, request, tweet_id)
        finally:
            release()

    async def handle_evaluate(self, job: JobHandle) -> None:
        try:
            await job.evaluate(True, EVALUATION_MESSAGE)
            logger.info("evaluation approved", job_id=str(job.id))
        except Exception as exc:
            logger.error("evaluation failed", job_id=str(job.id), error=str(exc))

    def _processed_elsewhere(self, job_id: str, tweet_id: str) -> bool:
        # A tweet marked processed by this very job is a resume, not a duplicate.
        dedup = self.context.dedup
        return dedup.has_processed(tweet_id) and not dedup.has_minted(job_id)

    async def _settled(self, job_id: str) -> bool:
        if self.context.worklog.get(job_id) is not None:
            return False
        if self.context.dedup.has_minted(job_id):
            return True
        record = await self.context.pods.get_job_mint(job_id)
        if record is None:
            return False
        logger.warning("job already minted (pod ledger)", job_id=job_id, pod_id=record.pod_id, tx_hash=record.mint_tx_hash)
        await self.context.dedup.mark_minted(job_id)
        return True

    def _new_entry(self, job: JobHandle, request: JobRequest, tweet_id: str) -> WorkLogEntry:
        return WorkLogEntry(
            job_id=str(job.id),
            tweet_id=tweet_id,
            post_url=request.post_url or "",
            categories=list(request.categories),
            agent_name=request.agent_name,
            agent_description=request.agent_description,
            pod_name=request.pod_name,
            pod_description=request.pod_description,
            buyer_id=buyer_id(job),
            status=WorkStatus.ACCEPTED,
        )

    async def _request_payment(self, job: JobHandle, request: JobRequest, tweet_id: str, phase: int) -> None:
        job_id = str(job.id)
        if self.context.worklog.get(job_id) is not None:
            logger.info("payment terms already posted, waiting for buyer", job_id=job_id, phase=phase)
            return
        try:
            if phase == JobPhase.REQUEST:
                await job.accept(ACCEPT_MESSAGE)
                logger.info("job accepted", job_id=job_id, tweet_id=tweet_id)
            await job.create_requirement(REQUIREMENT_MESSAGE)
        except Exception as exc:
            logger.warning("accept/requirement failed", job_id=job_id, tweet_id=tweet_id, error=str(exc))
            return
        await self.context.worklog.save(self._new_entry(job, request, tweet_id))
        logger.info("requirement posted, waiting for buyer payment", job_id=job_id, tweet_id=tweet_id)

    async def _execute(self, job: JobHandle, request: JobRequest, tweet_id: str) -> None:
        job_id = str(job.id)
        entry = self.context.worklog.get(job_id)
        if entry is None:
            logger.info("paid job without work log entry, creating it", job_id=job_id)
            entry = await self.context.worklog.save(self._new_entry(job, request, tweet_id))
        logger.info("buyer paid, processing", job_id=job_id, tweet_id=tweet_id, status=entry.status.value)
        try:
            if entry.status is WorkStatus.MINTED:
                await self.pipeline.resume(job, entry)
            else:
                await self.pipeline.run(job, entry)
        except Exception as exc:
            JOB_ERRORS.inc()
            logger.error("job processing failed", job_id=job_id, tweet_id=tweet_id, error=str(exc))
            await self.context.worklog.record_error(job_id, str(exc))

    async def _drop_unpaid(self, job_id: str) -> None:
        entry: Optional[WorkLogEntry] = self.context.worklog.get(job_id)
        if entry is not None and entry.status is WorkStatus.ACCEPTED:
            logger.info("job closed before payment, dropping work log entry", job_id=job_id)
            await self.context.worklog.remove(job_id)

    async def _reject(self, job: JobHandle, reason: str, kind: str) -> None:
        JOBS_REJECTED.labels(reason=kind).inc()
        try:
            await job.reject(reason)
        except Exception as exc:
            logger.error("failed to reject job", job_id=str(job.id), reason=reason, error=str(exc))
