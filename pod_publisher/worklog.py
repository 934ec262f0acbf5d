"""Write-ahead log of in-flight jobs.

An entry is written when a job passes the payment gate and is removed only
after the deliverable reaches the protocol (or the job is abandoned). Every
checkpoint rewrites the whole document under the store's advisory lock.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .logger import get_logger
from .metrics import PENDING_JOBS, PERSISTENCE_FAILURES
from .storage import Document, DocumentStore

logger = get_logger(__name__)

COMPLETED_TTL = timedelta(days=7)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    MINTED = "minted"
    COMPLETED = "completed"


class WorkLogEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    job_id: str = Field(alias="jobId")
    tweet_id: str = Field(alias="tweetId")
    post_url: str = Field(alias="postUrl")
    categories: List[str] = Field(default_factory=list, alias="subnets")
    agent_name: Optional[str] = Field(None, alias="agentName")
    agent_description: Optional[str] = Field(None, alias="agentDescription")
    pod_name: Optional[str] = Field(None, alias="podName")
    pod_description: Optional[str] = Field(None, alias="podDescription")
    buyer_id: Optional[str] = Field(None, alias="buyerId")
    status: WorkStatus = WorkStatus.ACCEPTED
    mint_tx_hash: Optional[str] = Field(None, alias="mintTxHash")
    pod_id: Optional[int] = Field(None, alias="podId")
    published_categories: List[str] = Field(default_factory=list, alias="publishedSubnets")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")
    retry_count: int = Field(0, alias="retryCount")
    last_error: Optional[str] = Field(None, alias="lastError")

    def age(self, now: Optional[datetime] = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def pending_categories(self) -> List[str]:
        return [category for category in self.categories if category not in self.published_categories]

    def to_document(self) -> Dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


def _empty_state() -> Document:
    return {"jobs": [], "lastUpdated": utcnow().isoformat()}


class WorkLog:
    def __init__(self, store: DocumentStore):
        self.store = store
        self._entries: Dict[str, WorkLogEntry] = {}

    async def load(self, now: Optional[datetime] = None) -> None:
        """Populate memory from disk, dropping completed entries older than a week."""
        now = now or utcnow()
        state = await self.store.read(_empty_state)
        self._entries.clear()
        for raw in state.get("jobs") or []:
            if isinstance(raw, dict) and "subnets" not in raw and raw.get("subnet"):
                raw = {**raw, "subnets": [raw["subnet"]]}
            try:
                entry = WorkLogEntry.model_validate(raw)
            except ValueError as exc:
                logger.warning("skipping unreadable work log entry", error=str(exc))
                continue
            if entry.status is WorkStatus.COMPLETED and now - entry.updated_at > COMPLETED_TTL:
                continue
            self._entries[entry.job_id] = entry
        PENDING_JOBS.set(len(self.pending()))
        logger.info("loaded work log", total=len(self._entries))

    def get(self, job_id: str) -> Optional[WorkLogEntry]:
        return self._entries.get(str(job_id))

    def pending(self) -> List[WorkLogEntry]:
        return [entry for entry in self._entries.values() if entry.status is not WorkStatus.COMPLETED]

    def __len__(self) -> int:
        return len(self._entries)

    async def save(self, entry: WorkLogEntry) -> WorkLogEntry:
        entry.updated_at = utcnow()
        self._entries[entry.job_id] = entry
        await self._persist()
        logger.info("work log entry saved", job_id=entry.job_id, status=entry.status.value)
        return entry

    async def update_status(self, job_id: str, status: WorkStatus, **changes: object) -> Optional[WorkLogEntry]:
        entry = self._entries.get(str(job_id))
        if entry is None:
            return None
        entry.status = status
        for name, value in changes.items():
            setattr(entry, name, value)
        entry.updated_at = utcnow()
        await self._persist()
        logger.info("work log status updated", job_id=entry.job_id, status=status.value)
        return entry

    async def mark_published(self, job_id: str, category: str) -> Optional[WorkLogEntry]:
        entry = self._entries.get(str(job_id))
        if entry is None:
            return None
        if category not in entry.published_categories:
            entry.published_categories.append(category)
        entry.updated_at = utcnow()
        await self._persist()
        return entry

    async def record_error(self, job_id: str, message: str) -> Optional[WorkLogEntry]:
        entry = self._entries.get(str(job_id))
        if entry is None:
            return None
        entry.retry_count += 1
        entry.last_error = message
        entry.updated_at = utcnow()
        await self._persist()
        logger.warning("work log error recorded", job_id=entry.job_id, retry_count=entry.retry_count, error=message)
        return entry

    async def remove(self, job_id: str) -> None:
        if self._entries.pop(str(job_id), None) is None:
            return
        await self._persist()
        logger.info("work log entry removed", job_id=str(job_id))

    async def _persist(self) -> None:
        PENDING_JOBS.set(len(self.pending()))

        # Snapshot under the store lock so the last writer always carries the newest entries.
        def _apply(state: Document) -> Document:
            entries = list(self._entries.values())
            return {"jobs": [entry.to_document() for entry in entries], "lastUpdated": utcnow().isoformat()}

        try:
            await self.store.update(_apply, _empty_state)
        except Exception as exc:
            PERSISTENCE_FAILURES.labels(store="worklog").inc()
            logger.error("failed to persist work log", error=str(exc))
