from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .context import EngineContext
from .logger import get_logger
from .metrics import JOB_ERRORS, RECOVERY_OUTCOMES
from .models import JobPhase
from .pipeline import ExecutionPipeline
from .ports import JobHandle, ProtocolClient
from .worklog import WorkLogEntry, WorkStatus, utcnow

logger = get_logger(__name__)

ABANDON_AFTER = timedelta(hours=24)


@dataclass
class RecoverySummary:
    delivered: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    waiting: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def record(self, outcome: str, job_id: str) -> None:
        getattr(self, outcome).append(job_id)
        RECOVERY_OUTCOMES.labels(outcome=outcome).inc()


class RecoveryRunner:
    """Single startup pass over the work log. Failures stay on the entry for the next pass."""

    def __init__(
        self,
        context: EngineContext,
        pipeline: ExecutionPipeline,
        protocol: ProtocolClient,
        *,
        abandon_after: timedelta = ABANDON_AFTER,
    ):
        self.context = context
        self.pipeline = pipeline
        self.protocol = protocol
        self.abandon_after = abandon_after

    async def run(self, now: Optional[datetime] = None) -> RecoverySummary:
        now = now or utcnow()
        summary = RecoverySummary()
        entries = list(self.context.worklog.pending())
        logger.info("recovering pending jobs", count=len(entries))
        for entry in entries:
            try:
                outcome = await self._recover(entry, now)
            except Exception as exc:
                JOB_ERRORS.inc()
                logger.error("recovery failed", job_id=entry.job_id, status=entry.status.value, error=str(exc))
                await self.context.worklog.record_error(entry.job_id, str(exc))
                outcome = "failed"
            summary.record(outcome, entry.job_id)
        logger.info(
            "recovery finished",
            delivered=len(summary.delivered),
            abandoned=len(summary.abandoned),
            rejected=len(summary.rejected),
            waiting=len(summary.waiting),
            failed=len(summary.failed),
        )
        return summary

    async def _lookup(self, job_id: str) -> Optional[JobHandle]:
        try:
            return await self.protocol.get_job(job_id)
        except Exception as exc:
            logger.warning("job lookup failed", job_id=job_id, error=str(exc))
            return None

    async def _recover(self, entry: WorkLogEntry, now: datetime) -> str:
        if entry.status is WorkStatus.MINTED:
            return await self._resume_minted(entry)
        if entry.age(now) > self.abandon_after:
            return await self._abandon(entry)
        return await self._retry_accepted(entry)

    async def _abandon(self, entry: WorkLogEntry) -> str:
        hours = self.abandon_after.total_seconds() / 3600
        job = await self._lookup(entry.job_id)
        if job is not None:
            try:
                await job.reject(f"Job abandoned: payment not received within {hours:g}h")
            except Exception as exc:
                logger.warning("failed to reject abandoned job", job_id=entry.job_id, error=str(exc))
        await self.context.worklog.remove(entry.job_id)
        logger.info("abandoned stale job", job_id=entry.job_id, age=str(entry.age()))
        return "abandoned"

    async def _retry_accepted(self, entry: WorkLogEntry) -> str:
        dedup = self.context.dedup
        if dedup.has_processed(entry.tweet_id) and not dedup.has_minted(entry.job_id):
            job = await self._lookup(entry.job_id)
            if job is not None:
                await job.reject(f"Tweet {entry.tweet_id} already processed")
            await self.context.worklog.remove(entry.job_id)
            return "rejected"

        job = await self._lookup(entry.job_id)
        if job is None:
            raise LookupError(f"Job {entry.job_id} not found on protocol")
        phase = JobPhase.coerce(job.phase)
        if phase in (JobPhase.REJECTED, JobPhase.EXPIRED):
            await self.context.worklog.remove(entry.job_id)
            return "abandoned"
        if phase < JobPhase.TRANSACTION:
            logger.info("job still waiting for payment", job_id=entry.job_id, phase=phase)
            return "waiting"
        return await self._under_gate(entry, job, resume=False)

    async def _resume_minted(self, entry: WorkLogEntry) -> str:
        job = await self._lookup(entry.job_id)
        if job is None:
            raise LookupError(f"Job {entry.job_id} not found on protocol")
        return await self._under_gate(entry, job, resume=True)

    async def _under_gate(self, entry: WorkLogEntry, job: JobHandle, *, resume: bool) -> str:
        release = self.context.gate.acquire(entry.tweet_id)
        if release is None:
            return "skipped"
        try:
            if resume:
                await self.pipeline.resume(job, entry)
                return "delivered"
            deliverable = await self.pipeline.run(job, entry)
            return "delivered" if deliverable is not None else "rejected"
        finally:
            release()
