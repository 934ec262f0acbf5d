"""HTTP adapter for the Agent Commerce Protocol job endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import httpx

from .errors import is_retryable_error
from .logger import get_logger
from .models import Deliverable
from .retry import with_retry

logger = get_logger(__name__)


class AcpHttpClient:
    def __init__(
        self,
        base_url: str,
        *,
        wallet_address: str,
        api_key: Optional[str] = None,
        page_size: int = 10,
        client: Optional[httpx.AsyncClient] = None,
        attempts: int = 3,
        base_delay: float = 1.0,
    ):
        headers = {"wallet-address": wallet_address}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=httpx.Timeout(30.0)
        )
        self.page_size = page_size
        self.attempts = attempts
        self.base_delay = base_delay

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, label: str, **kwargs: Any) -> Any:
        async def _call() -> Any:
            response = await self._client.request(method, path, **kwargs)
            if response.status_code == 404 and method == "GET":
                return None
            if response.status_code >= 400:
                raise httpx.HTTPStatusError(
                    f"HTTP {response.status_code}: {response.text}", request=response.request, response=response
                )
            return response.json() if response.content else None

        return await with_retry(
            _call, label, attempts=self.attempts, base_delay=self.base_delay, should_retry=is_retryable_error
        )

    async def get_job(self, job_id: str) -> Optional["AcpJob"]:
        body = await self.request("GET", f"/jobs/{job_id}", "getJobById")
        data = body.get("data") if isinstance(body, dict) else None
        return AcpJob(data, self) if isinstance(data, dict) else None

    async def get_active_jobs(self) -> List["AcpJob"]:
        body = await self.request(
            "GET", "/jobs/active", "getActiveJobs", params={"page": 1, "pageSize": self.page_size}
        )
        items = body.get("data") if isinstance(body, dict) else body
        return [AcpJob(item, self) for item in items or [] if isinstance(item, dict)]


class AcpJob:
    """A job as seen through one protocol notification or lookup."""

    def __init__(self, data: Dict[str, Any], client: AcpHttpClient):
        self.data = data
        self._client = client
        self.id = str(data.get("id"))
        self.phase = data.get("phase")
        self.memos: Sequence[Any] = data.get("memos") or []
        price = data.get("price")
        self.price: Optional[float] = float(price) if price is not None else None
        self.client_address = data.get("clientAddress")
        self.buyer_address = data.get("buyerAddress")
        self.client = data.get("client")
        self.buyer = data.get("buyer")

    def __repr__(self) -> str:
        return f"AcpJob(id={self.id!r}, phase={self.phase!r})"

    async def _post(self, action: str, payload: Dict[str, Any]) -> None:
        await self._client.request("POST", f"/jobs/{self.id}/{action}", action, json=payload)
        logger.info("job action sent", job_id=self.id, action=action)

    async def accept(self, message: str) -> None:
        await self._post("respond", {"accept": True, "reason": message})

    async def create_requirement(self, message: str) -> None:
        await self._post("requirement", {"content": message})

    async def reject(self, reason: str) -> None:
        await self._post("reject", {"reason": reason})

    async def deliver(self, deliverable: Deliverable) -> None:
        await self._post("deliver", {"deliverable": deliverable.to_payload()})

    async def evaluate(self, approved: bool, reason: str) -> None:
        await self._post("evaluate", {"accept": approved, "reason": reason})
