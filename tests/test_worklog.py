from __future__ import annotations

import asyncio
from datetime import timedelta

from conftest import POST_URL, TWEET_ID

from pod_publisher.storage import FileDocumentStore, MemoryDocumentStore
from pod_publisher.worklog import WorkLog, WorkLogEntry, WorkStatus, utcnow


def _entry(job_id: str = "101", **overrides) -> WorkLogEntry:
    return WorkLogEntry(
        job_id=job_id, tweet_id=TWEET_ID, post_url=POST_URL, categories=["crypto", "defi"], **overrides
    )


def test_entries_are_written_with_wire_names():
    store = MemoryDocumentStore()
    worklog = WorkLog(store)

    asyncio.run(worklog.save(_entry(buyer_id="0xbuyer")))

    [raw] = store.document["jobs"]
    assert raw["jobId"] == "101"
    assert raw["subnets"] == ["crypto", "defi"]
    assert raw["buyerId"] == "0xbuyer"
    assert raw["status"] == "accepted"
    assert raw["publishedSubnets"] == []


def test_checkpoints_update_the_entry():
    worklog = WorkLog(MemoryDocumentStore())
    asyncio.run(worklog.save(_entry()))

    asyncio.run(worklog.update_status("101", WorkStatus.MINTED, mint_tx_hash="0xabc", pod_id=3))
    asyncio.run(worklog.mark_published("101", "crypto"))
    asyncio.run(worklog.mark_published("101", "crypto"))
    asyncio.run(worklog.record_error("101", "HTTP 503"))

    entry = worklog.get("101")
    assert entry.status is WorkStatus.MINTED
    assert entry.mint_tx_hash == "0xabc"
    assert entry.pod_id == 3
    assert entry.published_categories == ["crypto"]
    assert entry.pending_categories() == ["defi"]
    assert entry.retry_count == 1
    assert entry.last_error == "HTTP 503"


def test_updates_on_unknown_jobs_are_noops():
    store = MemoryDocumentStore()
    worklog = WorkLog(store)

    assert asyncio.run(worklog.update_status("nope", WorkStatus.MINTED)) is None
    assert asyncio.run(worklog.record_error("nope", "boom")) is None
    asyncio.run(worklog.remove("nope"))

    assert store.writes == 0


def test_load_migrates_legacy_subnet_and_purges_old_completed():
    now = utcnow()
    old = (now - timedelta(days=8)).isoformat()
    store = MemoryDocumentStore(
        {
            "jobs": [
                {"jobId": "1", "tweetId": "11", "postUrl": POST_URL, "subnet": "crypto", "status": "accepted"},
                {
                    "jobId": "2",
                    "tweetId": "22",
                    "postUrl": POST_URL,
                    "subnets": ["ai"],
                    "status": "completed",
                    "createdAt": old,
                    "updatedAt": old,
                },
                {"jobId": "3", "tweetId": "33", "postUrl": POST_URL, "subnets": ["ai"], "status": "completed"},
                {"jobId": "4"},
            ]
        }
    )
    worklog = WorkLog(store)

    asyncio.run(worklog.load(now=now))

    assert worklog.get("1").categories == ["crypto"]
    assert worklog.get("2") is None
    assert worklog.get("3") is not None
    assert worklog.get("4") is None
    assert [entry.job_id for entry in worklog.pending()] == ["1"]


def test_persist_failure_is_logged_not_raised():
    store = MemoryDocumentStore()
    store.fail_writes = True
    worklog = WorkLog(store)

    asyncio.run(worklog.save(_entry()))

    assert worklog.get("101") is not None


def test_entries_survive_restart(tmp_path):
    path = tmp_path / "pending.json"
    first = WorkLog(FileDocumentStore(path))
    asyncio.run(first.save(_entry()))
    asyncio.run(first.save(_entry("202")))
    asyncio.run(first.update_status("101", WorkStatus.MINTED, mint_tx_hash="0xabc"))
    asyncio.run(first.remove("202"))

    second = WorkLog(FileDocumentStore(path))
    asyncio.run(second.load())

    assert len(second) == 1
    entry = second.get("101")
    assert entry.status is WorkStatus.MINTED
    assert entry.mint_tx_hash == "0xabc"
    assert entry.created_at.tzinfo is not None


def test_concurrent_saves_all_reach_disk(tmp_path):
    path = tmp_path / "pending.json"
    worklog = WorkLog(FileDocumentStore(path))

    async def scenario():
        await asyncio.gather(*(worklog.save(_entry(str(job_id))) for job_id in range(30)))

    asyncio.run(scenario())

    reloaded = WorkLog(FileDocumentStore(path))
    asyncio.run(reloaded.load())
    assert len(reloaded) == 30
    assert not path.with_name(path.name + ".tmp").exists()
