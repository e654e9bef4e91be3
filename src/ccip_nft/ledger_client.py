"""web3 adapter for the fee token, NFT and bridge contracts on the source chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, Web3
from web3.contract import Contract
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted

from .config import ContractAbis, DeploymentRecord
from .constants import ChainProfile
from .errors import (
    ConfigError,
    ConnectivityError,
    EstimationError,
    NotFoundError,
    TransactionError,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_RECEIPT_TIMEOUT = 180.0

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "approve",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "allowance",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "transferFrom",
        "inputs": [
            {"name": "sender", "type": "address"},
            {"name": "recipient", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
]


@dataclass
class SubmittedTransfer:
    tx_hash: str
    logs: Sequence[Any] = field(default_factory=list)


class LedgerClient(Protocol):
    """Capability surface the orchestrator needs from a connected chain."""

    @property
    def address(self) -> str: ...

    def read_owner(self, token_id: int) -> str: ...

    def read_token_uri(self, token_id: int) -> str: ...

    def read_balance(self, account: str) -> int: ...

    def read_allowance(self, owner: str, spender: str) -> int: ...

    def estimate_fee(self, destination_selector: int) -> int: ...

    def approve(self, spender: str, amount: int) -> str: ...

    def approve_asset(self, spender: str, token_id: int) -> str: ...

    def submit_transfer(
        self, destination_selector: int, receiver: str, token_id: int
    ) -> SubmittedTransfer: ...

    def parse_event(self, event_name: str, log: Any) -> Optional[Dict[str, Any]]: ...


def _revert_data(exc: BaseException) -> Optional[str]:
    data = getattr(exc, "data", None)
    if data is None:
        return None
    if isinstance(data, (bytes, bytearray)):
        return Web3.to_hex(data)
    return str(data)


class Web3LedgerClient:
    """Synchronous :class:`LedgerClient` backed by a web3 HTTP provider.

    Every write blocks until its receipt is available, so the caller never
    issues a dependent transaction before its predecessor is mined.
    """

    def __init__(
        self,
        web3: Web3,
        account: LocalAccount,
        profile: ChainProfile,
        deployment: DeploymentRecord,
        abis: ContractAbis,
        *,
        chain_id: Optional[int] = None,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ) -> None:
        self._web3 = web3
        self._account = account
        self._profile = profile
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self._bridge: Contract = web3.eth.contract(
            address=Web3.to_checksum_address(deployment.bridge_address), abi=abis.bridge
        )
        self._nft: Contract = web3.eth.contract(
            address=Web3.to_checksum_address(deployment.nft_address), abi=abis.nft
        )
        self._fee_token: Contract = web3.eth.contract(
            address=Web3.to_checksum_address(profile.fee_token), abi=ERC20_ABI
        )

    @classmethod
    def connect(
        cls,
        profile: ChainProfile,
        deployment: DeploymentRecord,
        private_key: str,
        abis: ContractAbis,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT,
    ) -> "Web3LedgerClient":
        """Open a provider for ``profile`` and probe it before returning."""

        try:
            account: LocalAccount = Account.from_key(private_key)
        except Exception as exc:
            raise ConfigError("PRIVATE_KEY is not a valid secp256k1 private key") from exc

        # Fee quotes and writes are never retried below the orchestrator.
        provider = HTTPProvider(
            profile.rpc_url,
            request_kwargs={"timeout": request_timeout},
            exception_retry_configuration=None,
        )
        web3 = Web3(provider)
        try:
            block = web3.eth.block_number
            chain_id = web3.eth.chain_id
        except Exception as exc:
            raise ConnectivityError(
                f"Could not connect to RPC: {profile.rpc_url} ({exc})",
                endpoint=profile.rpc_url,
            ) from exc

        logger.debug("RPC %s at block %s (chain id %s)", profile.rpc_url, block, chain_id)
        return cls(
            web3,
            account,
            profile,
            deployment,
            abis,
            chain_id=chain_id,
            receipt_timeout=receipt_timeout,
        )

    @property
    def address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def read_owner(self, token_id: int) -> str:
        try:
            return self._nft.functions.ownerOf(token_id).call()
        except (ContractLogicError, BadFunctionCallOutput) as exc:
            raise NotFoundError(f"Token #{token_id} does not exist on source chain") from exc
        except Exception as exc:
            raise self._unreachable("ownership", f"ownerOf({token_id})", exc) from exc

    def read_token_uri(self, token_id: int) -> str:
        try:
            uri = self._nft.functions.tokenURI(token_id).call()
        except Exception as exc:
            logger.debug("tokenURI(%s) unavailable: %s", token_id, exc)
            return ""
        return uri or ""

    def read_balance(self, account: str) -> int:
        try:
            return int(self._fee_token.functions.balanceOf(account).call())
        except Exception as exc:
            raise self._unreachable("balance", f"balanceOf({account})", exc) from exc

    def read_allowance(self, owner: str, spender: str) -> int:
        try:
            return int(self._fee_token.functions.allowance(owner, spender).call())
        except Exception as exc:
            raise self._unreachable("balance", f"allowance({owner}, {spender})", exc) from exc

    def _unreachable(self, gate: str, call: str, exc: Exception) -> ConnectivityError:
        return ConnectivityError(
            f"{call} failed against {self._profile.rpc_url}: {exc}",
            endpoint=self._profile.rpc_url,
            gate=gate,
        )

    def estimate_fee(self, destination_selector: int) -> int:
        try:
            return int(self._bridge.functions.estimateTransferCost(destination_selector).call())
        except Exception as exc:
            raise EstimationError(f"Failed to estimate transfer cost: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def approve(self, spender: str, amount: int) -> str:
        receipt = self._transact(
            "fee-token-approval", self._fee_token.functions.approve(spender, amount)
        )
        return Web3.to_hex(receipt["transactionHash"])

    def approve_asset(self, spender: str, token_id: int) -> str:
        receipt = self._transact(
            "asset-approval", self._nft.functions.approve(spender, token_id)
        )
        return Web3.to_hex(receipt["transactionHash"])

    def submit_transfer(
        self, destination_selector: int, receiver: str, token_id: int
    ) -> SubmittedTransfer:
        receipt = self._transact(
            "submit-transfer",
            self._bridge.functions.sendNFT(destination_selector, receiver, token_id),
        )
        return SubmittedTransfer(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            logs=list(receipt.get("logs") or []),
        )

    def _transact(self, step: str, fn: Any) -> Any:
        tx_hash: Optional[str] = None
        try:
            tx = fn.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": self._web3.eth.get_transaction_count(
                        self._account.address, "pending"
                    ),
                    **({"chainId": self._chain_id} if self._chain_id is not None else {}),
                }
            )
            signed = self._account.sign_transaction(tx)
            raw_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
            tx_hash = Web3.to_hex(raw_hash)
            logger.debug("%s broadcast as %s; waiting for receipt", step, tx_hash)
            receipt = self._web3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self._receipt_timeout
            )
        except ContractLogicError as exc:
            raise TransactionError(
                step,
                getattr(exc, "message", None) or str(exc),
                tx_hash=tx_hash,
                revert_data=_revert_data(exc),
            ) from exc
        except TimeExhausted as exc:
            raise TransactionError(
                step,
                f"transaction {tx_hash} was not mined within {self._receipt_timeout:.0f}s",
                tx_hash=tx_hash,
            ) from exc
        except Exception as exc:
            raise TransactionError(step, str(exc), tx_hash=tx_hash) from exc

        if receipt.get("status") != 1:
            raise TransactionError(
                step,
                f"transaction {tx_hash} reverted with status {receipt.get('status')}",
                tx_hash=tx_hash,
            )
        return receipt

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def parse_event(self, event_name: str, log: Any) -> Optional[Dict[str, Any]]:
        """Decode ``log`` as ``event_name`` from the bridge ABI, or return None."""

        try:
            event = getattr(self._bridge.events, event_name)()
        except Exception:
            return None
        try:
            decoded = event.process_log(log)
        except Exception:
            return None
        return dict(decoded["args"])
