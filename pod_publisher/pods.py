from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from .logger import get_logger
from .storage import Document, DocumentStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class PodRecord:
    """Ownership of a minted pod, used for emissions and as the durable mint index."""

    pod_id: Optional[int]
    buyer_wallet: str
    mint_tx_hash: str
    job_id: Optional[str] = None
    buyer_agent_id: Optional[str] = None
    created_at: str = ""


def _empty_state() -> Document:
    return {"pods": []}


class PodLedger:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def save_pod(
        self,
        pod_id: Optional[int],
        buyer_wallet: str,
        mint_tx_hash: str,
        *,
        job_id: Optional[str] = None,
        buyer_agent_id: Optional[str] = None,
    ) -> PodRecord:
        record = PodRecord(
            pod_id=pod_id,
            buyer_wallet=buyer_wallet,
            mint_tx_hash=mint_tx_hash,
            job_id=str(job_id) if job_id is not None else None,
            buyer_agent_id=buyer_agent_id,
            created_at=datetime.now(timezone.utc).isoformat(),
        )

        def _apply(state: Document) -> None:
            pods = [pod for pod in state.get("pods") or [] if pod.get("mint_tx_hash") != mint_tx_hash]
            pods.append(asdict(record))
            state["pods"] = pods

        await self.store.update(_apply, _empty_state)
        logger.info("pod saved", pod_id=pod_id, buyer_wallet=buyer_wallet, job_id=record.job_id)
        return record

    async def get_job_mint(self, job_id: str) -> Optional[PodRecord]:
        state = await self.store.read(_empty_state)
        for pod in state.get("pods") or []:
            if pod.get("job_id") == str(job_id):
                return PodRecord(**pod)
        return None
