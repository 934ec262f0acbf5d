"""On-chain pod minting on Base."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3
from web3.logs import DISCARD

from .errors import INSUFFICIENT_FUNDS_MARKER, InsufficientFundsError, PodPublisherError
from .logger import get_logger
from .models import MintResult
from .retry import with_retry

logger = get_logger(__name__)

POD_CONTRACT = "0xcfF0511089D0Fbe92E1788E4aFFF3E7930b3D47c"
REPPO_TOKEN = "0xFf8104251E7761163faC3211eF5583FB3F8583d6"
BASE_RPC_URL = "https://mainnet.base.org"
EMISSION_SHARE = 50

POD_ABI = [
    {
        "type": "function",
        "name": "mintPod",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "emissionSharePercent", "type": "uint8"},
        ],
        "outputs": [{"name": "podId", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "publishingFee",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
        ],
    },
]

ERC20_ABI = [
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "balanceOf",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


def format_units(value: int, decimals: int = 18) -> str:
    return format(Decimal(value) / (Decimal(10) ** decimals), "f")


class PodMinter:
    def __init__(
        self,
        private_key: str,
        *,
        rpc_url: Optional[str] = None,
        receipt_timeout: float = 120.0,
        attempts: int = 3,
        base_delay: float = 1.0,
    ):
        self.web3 = Web3(Web3.HTTPProvider(rpc_url or BASE_RPC_URL, request_kwargs={"timeout": 30}))
        self.account = Account.from_key(private_key)
        self.address: str = self.account.address
        self.pod = self.web3.eth.contract(address=Web3.to_checksum_address(POD_CONTRACT), abi=POD_ABI)
        self.token = self.web3.eth.contract(address=Web3.to_checksum_address(REPPO_TOKEN), abi=ERC20_ABI)
        self.receipt_timeout = receipt_timeout
        self.attempts = attempts
        self.base_delay = base_delay

    async def _read(self, label: str, call: Any) -> int:
        return await with_retry(
            lambda: asyncio.to_thread(call.call),
            label,
            attempts=self.attempts,
            base_delay=self.base_delay,
        )

    async def publishing_fee(self) -> int:
        return await self._read("getPublishingFee", self.pod.functions.publishingFee())

    async def reppo_balance(self) -> int:
        return await self._read("getReppoBalance", self.token.functions.balanceOf(self.address))

    async def allowance(self) -> int:
        return await self._read("getAllowance", self.token.functions.allowance(self.address, self.pod.address))

    def _transact(self, function: Any) -> Dict[str, Any]:
        tx = function.build_transaction(
            {
                "from": self.address,
                "nonce": self.web3.eth.get_transaction_count(self.address),
            }
        )
        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        return {"hash": Web3.to_hex(tx_hash), "receipt": receipt}

    def _pod_id(self, receipt: Any) -> Optional[int]:
        for event in self.pod.events.Transfer().process_receipt(receipt, errors=DISCARD):
            return int(event["args"]["tokenId"])
        return None

    async def mint(self) -> MintResult:
        fee = await self.publishing_fee()
        logger.info("publishing fee", fee=format_units(fee))

        if fee > 0:
            balance = await self.reppo_balance()
            logger.info("reppo balance", balance=format_units(balance))
            if balance < fee:
                raise InsufficientFundsError(
                    f"{INSUFFICIENT_FUNDS_MARKER} balance. Need {format_units(fee)}, have {format_units(balance)}"
                )
            if await self.allowance() < fee:
                logger.info("approving reppo spend")
                approval = await asyncio.to_thread(
                    self._transact, self.token.functions.approve(self.pod.address, fee)
                )
                if approval["receipt"]["status"] != 1:
                    raise PodPublisherError(f"Approval transaction reverted: {approval['hash']}")
                logger.info("reppo spend approved", tx_hash=approval["hash"])

        logger.info("minting pod on base")
        minted = await asyncio.to_thread(
            self._transact, self.pod.functions.mintPod(self.address, EMISSION_SHARE)
        )
        if minted["receipt"]["status"] != 1:
            raise PodPublisherError(f"Mint transaction reverted: {minted['hash']}")
        pod_id = self._pod_id(minted["receipt"])
        logger.info("pod minted", tx_hash=minted["hash"], block=minted["receipt"]["blockNumber"], pod_id=pod_id)
        return MintResult(tx_hash=minted["hash"], pod_id=pod_id)
