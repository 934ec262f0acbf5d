from __future__ import annotations

from dataclasses import dataclass, field

from .config import Settings
from .dedup import MAX_ENTRIES, IdempotencyStore
from .locks import ProcessingGate
from .pods import PodLedger
from .storage import FileDocumentStore, MemoryDocumentStore
from .worklog import WorkLog


@dataclass
class EngineContext:
    """The engine's shared mutable state, built once and passed to the controller and recovery runner."""

    dedup: IdempotencyStore
    worklog: WorkLog
    pods: PodLedger
    gate: ProcessingGate = field(default_factory=ProcessingGate)

    async def initialize(self) -> "EngineContext":
        await self.dedup.load()
        await self.worklog.load()
        return self

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineContext":
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        attempts = settings.lock_attempts
        return cls(
            dedup=IdempotencyStore(
                FileDocumentStore(settings.dedup_path, lock_attempts=attempts),
                max_entries=settings.dedup_max_entries,
            ),
            worklog=WorkLog(FileDocumentStore(settings.worklog_path, lock_attempts=attempts)),
            pods=PodLedger(FileDocumentStore(settings.pods_path, lock_attempts=attempts)),
        )

    @classmethod
    def in_memory(cls, max_entries: int = MAX_ENTRIES) -> "EngineContext":
        return cls(
            dedup=IdempotencyStore(MemoryDocumentStore(), max_entries=max_entries),
            worklog=WorkLog(MemoryDocumentStore()),
            pods=PodLedger(MemoryDocumentStore()),
        )
