"""Checkpointed execution of a paid job.

Steps: fetch the post, mint once, checkpoint the mint, publish metadata per
category, deliver, drop the work log entry. Everything up to the mint
checkpoint fails the job as a whole; everything after it degrades per category
and can be resumed from the work log.
"""

from __future__ import annotations

from typing import List, Optional

from .context import EngineContext
from .errors import PodPublisherError, is_insufficient_funds
from .logger import get_logger
from .metrics import JOBS_DELIVERED, JOBS_REJECTED, PODS_MINTED, PUBLISH_RESULTS
from .models import AgentSession, Deliverable, MintResult, PodMetadata, TweetData
from .ports import Catalog, ContentFetcher, JobHandle, Minter
from .worklog import WorkLogEntry, WorkStatus

logger = get_logger(__name__)

TITLE_LIMIT = 100


def build_title(entry: WorkLogEntry, tweet: Optional[TweetData]) -> str:
    if entry.pod_name:
        return entry.pod_name
    text = tweet.text if tweet else ""
    if not text:
        return entry.post_url
    return text if len(text) <= TITLE_LIMIT else text[: TITLE_LIMIT - 3] + "..."


def build_description(entry: WorkLogEntry, tweet: Optional[TweetData]) -> str:
    if entry.pod_description:
        return entry.pod_description
    if tweet and tweet.text:
        return tweet.text
    return entry.post_url


class ExecutionPipeline:
    def __init__(
        self,
        context: EngineContext,
        fetcher: ContentFetcher,
        minter: Minter,
        catalog: Catalog,
    ):
        self.context = context
        self.fetcher = fetcher
        self.minter = minter
        self.catalog = catalog

    async def run(self, job: JobHandle, entry: WorkLogEntry) -> Optional[Deliverable]:
        """Execute a paid job from the top. Returns ``None`` when the job was rejected."""
        log = logger.bind(job_id=entry.job_id, tweet_id=entry.tweet_id)

        log.info("fetching post")
        tweet = await self.fetcher.fetch(entry.tweet_id)
        log.info("post fetched", author=tweet.author_username, text_preview=tweet.text[:80])

        mint = await self._recorded_mint(entry)
        if mint is not None:
            log.warning("job already minted, skipping to publish", tx_hash=mint.tx_hash)
        else:
            log.info("minting pod")
            try:
                mint = await self.minter.mint()
            except Exception as exc:
                if not is_insufficient_funds(exc):
                    raise
                log.error("insufficient funds to mint", error=str(exc))
                JOBS_REJECTED.labels(reason="insufficient_funds").inc()
                await job.reject(f"Agent insufficient REPPO to mint pod: {exc}")
                await self.context.worklog.remove(entry.job_id)
                return None
            PODS_MINTED.inc()
            log.info("pod minted", tx_hash=mint.tx_hash, pod_id=mint.pod_id)
            await self._checkpoint_mint(entry, mint)

        return await self._publish_and_deliver(job, entry, mint, tweet)

    async def resume(self, job: JobHandle, entry: WorkLogEntry) -> Deliverable:
        """Continue a minted entry: publish the remaining categories and deliver."""
        if not entry.mint_tx_hash:
            raise PodPublisherError(f"Work log entry {entry.job_id} is minted but has no transaction hash")
        mint = MintResult(tx_hash=entry.mint_tx_hash, pod_id=entry.pod_id)
        tweet: Optional[TweetData] = None
        try:
            tweet = await self.fetcher.fetch(entry.tweet_id)
        except Exception as exc:
            logger.warning("post fetch failed during resume, using fallbacks", job_id=entry.job_id, error=str(exc))
        return await self._publish_and_deliver(job, entry, mint, tweet)

    async def _recorded_mint(self, entry: WorkLogEntry) -> Optional[MintResult]:
        dedup = self.context.dedup
        if entry.mint_tx_hash:
            if not dedup.has_minted(entry.job_id):
                await dedup.mark_minted(entry.job_id)
            return MintResult(tx_hash=entry.mint_tx_hash, pod_id=entry.pod_id)

        record = await self.context.pods.get_job_mint(entry.job_id)
        if record is not None:
            mint = MintResult(tx_hash=record.mint_tx_hash, pod_id=record.pod_id)
            await dedup.mark_minted(entry.job_id)
            await dedup.mark_processed(entry.tweet_id)
            await self.context.worklog.update_status(
                entry.job_id, WorkStatus.MINTED, mint_tx_hash=mint.tx_hash, pod_id=mint.pod_id
            )
            return mint

        if dedup.has_minted(entry.job_id):
            raise PodPublisherError(f"Job {entry.job_id} is marked minted but no mint record was found")
        return None

    async def _checkpoint_mint(self, entry: WorkLogEntry, mint: MintResult) -> None:
        # Nothing after this point may mint again for this job or tweet.
        await self.context.dedup.mark_minted(entry.job_id)
        await self.context.dedup.mark_processed(entry.tweet_id)
        await self.context.worklog.update_status(
            entry.job_id, WorkStatus.MINTED, mint_tx_hash=mint.tx_hash, pod_id=mint.pod_id
        )
        buyer_wallet = entry.buyer_id or self.minter.address
        try:
            await self.context.pods.save_pod(mint.pod_id, buyer_wallet, mint.tx_hash, job_id=entry.job_id)
        except Exception as exc:
            logger.error("failed to record pod ownership", job_id=entry.job_id, pod_id=mint.pod_id, error=str(exc))

    async def _publishing_session(self, entry: WorkLogEntry) -> Optional[AgentSession]:
        if entry.buyer_id and entry.agent_name:
            try:
                session = await self.catalog.get_or_create_buyer_agent(
                    entry.buyer_id, entry.agent_name, entry.agent_description
                )
            except Exception as exc:
                logger.warning("buyer profile unavailable, publishing as service", job_id=entry.job_id, error=str(exc))
            else:
                if session is not None:
                    logger.info("using buyer profile", job_id=entry.job_id, buyer_agent_id=session.agent_id)
                    return session
        return self.catalog.session

    async def _publish_and_deliver(
        self,
        job: JobHandle,
        entry: WorkLogEntry,
        mint: MintResult,
        tweet: Optional[TweetData],
    ) -> Deliverable:
        log = logger.bind(job_id=entry.job_id, tx_hash=mint.tx_hash)
        session = await self._publishing_session(entry)
        title = build_title(entry, tweet)
        description = build_description(entry, tweet)
        image_url = tweet.media_urls[0] if tweet and tweet.media_urls else None

        published = set(entry.published_categories)
        failed: List[str] = []
        for category in entry.pending_categories():
            try:
                if session is None:
                    raise PodPublisherError("no catalog session available")
                await self.catalog.publish(
                    session,
                    PodMetadata(
                        tx_hash=mint.tx_hash,
                        title=title,
                        description=description,
                        url=entry.post_url,
                        image_url=image_url,
                        pod_id=mint.pod_id,
                        category=category,
                    ),
                )
            except Exception as exc:
                PUBLISH_RESULTS.labels(outcome="failed").inc()
                log.warning("metadata submission failed, pod still minted", category=category, error=str(exc))
                failed.append(category)
                continue
            PUBLISH_RESULTS.labels(outcome="published").inc()
            published.add(category)
            await self.context.worklog.mark_published(entry.job_id, category)
            log.info("metadata submitted", category=category)

        deliverable = Deliverable(
            post_url=entry.post_url,
            tx_hash=mint.tx_hash,
            pod_id=mint.pod_id,
            categories=[category for category in entry.categories if category in published],
            failed_categories=failed,
        )
        await job.deliver(deliverable)
        JOBS_DELIVERED.labels(partial=str(bool(failed)).lower()).inc()
        log.info("job delivered", basescan_url=deliverable.basescan_url, failed_categories=failed)

        await self.context.worklog.remove(entry.job_id)
        return deliverable
