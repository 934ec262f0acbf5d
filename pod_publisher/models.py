from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

BASESCAN_TX_URL = "https://basescan.org/tx/{tx_hash}"


class JobPhase(enum.IntEnum):
    REQUEST = 0
    NEGOTIATION = 1
    TRANSACTION = 2
    EVALUATION = 3
    COMPLETED = 4
    REJECTED = 5
    EXPIRED = 6

    @classmethod
    def coerce(cls, value: Any) -> int:
        """Protocol phases arrive as ints, enum names or numeric strings; unknown -> -1."""
        if isinstance(value, bool):
            return -1
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.lstrip("-").isdigit():
                return int(text)
            try:
                return int(cls[text.upper()])
            except KeyError:
                return -1
        return -1


@dataclass
class JobRequest:
    post_url: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    agent_name: Optional[str] = None
    agent_description: Optional[str] = None
    pod_name: Optional[str] = None
    pod_description: Optional[str] = None


@dataclass(frozen=True)
class TweetData:
    id: str
    text: str
    author_id: str = ""
    author_username: str = ""
    created_at: Optional[str] = None
    media_urls: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MintResult:
    tx_hash: str
    pod_id: Optional[int] = None


@dataclass(frozen=True)
class AgentSession:
    agent_id: str
    access_token: str
    wallet_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"agentId": self.agent_id, "accessToken": self.access_token}
        if self.wallet_address:
            data["walletAddress"] = self.wallet_address
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["AgentSession"]:
        agent_id = data.get("agentId") or data.get("id")
        token = data.get("accessToken")
        if not agent_id or not token:
            return None
        return cls(agent_id=str(agent_id), access_token=str(token), wallet_address=data.get("walletAddress"))


@dataclass(frozen=True)
class PodMetadata:
    tx_hash: str
    title: str
    url: str
    category: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    pod_id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.title,
            "description": self.description or self.title,
            "url": self.url,
            "platform": "x",
            "podMintTx": self.tx_hash,
            "category": "social",
            "subnetId": self.category,
        }
        if self.pod_id is not None:
            payload["tokenId"] = int(self.pod_id)
        if self.image_url:
            payload["imageUrl"] = self.image_url
        return payload


@dataclass
class Deliverable:
    post_url: str
    tx_hash: str
    categories: List[str]
    failed_categories: List[str] = field(default_factory=list)
    pod_id: Optional[int] = None

    @property
    def basescan_url(self) -> str:
        return BASESCAN_TX_URL.format(tx_hash=self.tx_hash)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "postUrl": self.post_url,
            "categories": list(self.categories),
            "txHash": self.tx_hash,
            "basescanUrl": self.basescan_url,
        }
        if self.pod_id is not None:
            payload["podId"] = str(self.pod_id)
        if self.failed_categories:
            payload["failedCategories"] = list(self.failed_categories)
        return payload
