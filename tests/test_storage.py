from __future__ import annotations

import asyncio
import fcntl
import os
import stat

import orjson
import pytest

from pod_publisher.errors import PersistenceError
from pod_publisher.pods import PodLedger
from pod_publisher.storage import FileDocumentStore


def test_read_returns_default_when_missing(tmp_path):
    store = FileDocumentStore(tmp_path / "doc.json")

    assert asyncio.run(store.read(lambda: {"items": []})) == {"items": []}


def test_update_writes_atomically_with_private_mode(tmp_path):
    path = tmp_path / "nested" / "doc.json"
    store = FileDocumentStore(path)

    def _add(state):
        state.setdefault("items", []).append(1)

    asyncio.run(store.update(_add))
    result = asyncio.run(store.update(_add))

    assert result == {"items": [1, 1]}
    assert orjson.loads(path.read_bytes()) == {"items": [1, 1]}
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert not path.with_name("doc.json.tmp").exists()


def test_mutator_may_return_a_replacement(tmp_path):
    store = FileDocumentStore(tmp_path / "doc.json")

    asyncio.run(store.update(lambda state: {"replaced": True}))

    assert asyncio.run(store.read()) == {"replaced": True}


def test_corrupt_file_falls_back_to_default(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("{not json")
    store = FileDocumentStore(path)

    assert asyncio.run(store.read(lambda: {"fresh": True})) == {"fresh": True}

    path.write_text("[1, 2]")
    assert asyncio.run(store.read()) == {}


def test_lock_contention_raises_after_bounded_attempts(tmp_path):
    path = tmp_path / "doc.json"
    store = FileDocumentStore(path, lock_attempts=2, lock_wait=0.001)
    store.lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(store.lock_path, "a+") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        try:
            with pytest.raises(PersistenceError):
                asyncio.run(store.update(lambda state: None))
        finally:
            fcntl.flock(holder.fileno(), fcntl.LOCK_UN)

    assert not path.exists()


def test_pod_ledger_indexes_mints_by_job(tmp_path):
    ledger = PodLedger(FileDocumentStore(tmp_path / "pods.json"))

    asyncio.run(ledger.save_pod(5, "0xbuyer", "0xtx", job_id=101))
    asyncio.run(ledger.save_pod(5, "0xbuyer", "0xtx", job_id=101, buyer_agent_id="agent-1"))

    record = asyncio.run(ledger.get_job_mint("101"))
    assert record.pod_id == 5
    assert record.mint_tx_hash == "0xtx"
    assert record.buyer_agent_id == "agent-1"
    assert asyncio.run(ledger.get_job_mint("999")) is None
    assert len(asyncio.run(ledger.store.read())["pods"]) == 1
