from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Set

from .logger import get_logger
from .metrics import PERSISTENCE_FAILURES
from .storage import Document, DocumentStore

logger = get_logger(__name__)

MAX_ENTRIES = 10_000


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_state() -> Document:
    return {"processedTweets": [], "mintedJobs": [], "lastUpdated": _now_iso()}


class IdempotencyStore:
    """Durable record of processed tweets and minted jobs.

    Reads are served from memory. Writes update memory first and then persist;
    a failed persist is logged and swallowed so an otherwise successful job is
    never blocked by the cache.
    """

    def __init__(self, store: DocumentStore, max_entries: int = MAX_ENTRIES):
        self.store = store
        self.max_entries = max_entries
        self._processed: "OrderedDict[str, None]" = OrderedDict()
        self._minted: Set[str] = set()

    async def load(self) -> None:
        state = await self.store.read(_empty_state)
        self._processed = OrderedDict((str(item), None) for item in state.get("processedTweets") or [])
        self._trim_memory()
        self._minted = {str(job_id) for job_id in state.get("mintedJobs") or []}
        logger.info("loaded dedup state", tweets=len(self._processed), jobs=len(self._minted))

    def has_processed(self, item: str) -> bool:
        return str(item) in self._processed

    def has_minted(self, job_id: str | int) -> bool:
        return str(job_id) in self._minted

    def count(self) -> int:
        return len(self._processed)

    def _trim_memory(self) -> None:
        while len(self._processed) > self.max_entries:
            self._processed.popitem(last=False)

    async def mark_processed(self, item: str) -> None:
        item = str(item)
        self._processed[item] = None
        self._processed.move_to_end(item)
        self._trim_memory()

        def _apply(state: Document) -> None:
            # Same recency order as the in-memory mirror: a re-marked item moves to the end.
            processed = [str(entry) for entry in state.get("processedTweets") or [] if str(entry) != item]
            processed.append(item)
            state["processedTweets"] = processed[-self.max_entries :]
            state.setdefault("mintedJobs", [])
            state["lastUpdated"] = _now_iso()

        await self._persist(_apply, item=item)

    async def mark_minted(self, job_id: str | int) -> None:
        job_id = str(job_id)
        self._minted.add(job_id)

        def _apply(state: Document) -> None:
            minted = [str(entry) for entry in state.get("mintedJobs") or []]
            if job_id not in minted:
                minted.append(job_id)
            state["mintedJobs"] = minted
            state.setdefault("processedTweets", [])
            state["lastUpdated"] = _now_iso()

        await self._persist(_apply, job_id=job_id)

    async def _persist(self, mutator, **context) -> None:
        try:
            await self.store.update(mutator, _empty_state)
        except Exception as exc:
            PERSISTENCE_FAILURES.labels(store="dedup").inc()
            logger.warning("failed to persist dedup state", error=str(exc), **context)
