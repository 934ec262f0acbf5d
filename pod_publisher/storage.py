"""Durable JSON document substrate shared by the dedup store, work log and pod ledger.

Each document is one file. Read-modify-write cycles hold an exclusive
``fcntl`` lock on a sidecar ``.lock`` file; acquisition is non-blocking and
retried a bounded number of times before :class:`PersistenceError` is raised.
Writers inside one process queue on a mutex first, so the lock retries only
ever contend with other processes.
"""

from __future__ import annotations

import asyncio
import copy
import fcntl
import os
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import orjson
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import PersistenceError
from .logger import get_logger

logger = get_logger(__name__)

Document = Dict[str, Any]
Mutator = Callable[[Document], Optional[Document]]
DefaultFactory = Callable[[], Document]


def _empty() -> Document:
    return {}


class DocumentStore(Protocol):
    async def read(self, default: DefaultFactory = _empty) -> Document: ...

    async def update(self, mutator: Mutator, default: DefaultFactory = _empty) -> Document: ...


class FileDocumentStore:
    def __init__(self, path: Path, *, lock_attempts: int = 3, lock_wait: float = 0.05):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.lock_attempts = lock_attempts
        self.lock_wait = lock_wait
        self._mutex = threading.Lock()

    async def read(self, default: DefaultFactory = _empty) -> Document:
        return await asyncio.to_thread(self._load, default)

    async def update(self, mutator: Mutator, default: DefaultFactory = _empty) -> Document:
        return await asyncio.to_thread(self._update, mutator, default)

    def _load(self, default: DefaultFactory) -> Document:
        if not self.path.exists():
            return default()
        try:
            data = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            logger.warning("failed to load document, starting fresh", path=str(self.path), error=str(exc))
            return default()
        if not isinstance(data, dict):
            logger.warning("document is not an object, starting fresh", path=str(self.path))
            return default()
        return data

    def _save(self, document: Document) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_bytes(orjson.dumps(document, option=orjson.OPT_INDENT_2))
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def _acquire(self, handle: Any) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.lock_attempts),
            wait=wait_exponential(multiplier=self.lock_wait, max=self.lock_wait * 8),
            retry=retry_if_exception_type(BlockingIOError),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise PersistenceError(f"could not lock {self.path} after {self.lock_attempts} attempts") from exc

    def _update(self, mutator: Mutator, default: DefaultFactory) -> Document:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._mutex, self.lock_path.open("a+") as handle:
            self._acquire(handle)
            try:
                document = self._load(default)
                result = mutator(document)
                if result is not None:
                    document = result
                self._save(document)
                return document
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class MemoryDocumentStore:
    """Process-local store with the same contract, used by tests and dry runs."""

    def __init__(self, initial: Document | None = None):
        self.document: Document | None = copy.deepcopy(initial) if initial is not None else None
        self.fail_writes = False
        self.writes = 0

    async def read(self, default: DefaultFactory = _empty) -> Document:
        if self.document is None:
            return default()
        return copy.deepcopy(self.document)

    async def update(self, mutator: Mutator, default: DefaultFactory = _empty) -> Document:
        if self.fail_writes:
            raise PersistenceError("simulated persistence failure")
        document = copy.deepcopy(self.document) if self.document is not None else default()
        result = mutator(document)
        if result is not None:
            document = result
        self.document = copy.deepcopy(document)
        self.writes += 1
        return document
