"""Cross-chain NFT transfer workflow.

The run is a single forward-only sequence of gates. Each gate either
advances or raises a :class:`~ccip_nft.errors.TransferError`; nothing is
retried, and confirmed on-chain state (approvals) is never rolled back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from filelock import Timeout
from web3 import Web3

from .config import ContractAbis, DeploymentManifest, DeploymentRecord
from .constants import (
    CCIP_EXPLORER_URL,
    FEE_BUFFER_DENOMINATOR,
    FEE_BUFFER_NUMERATOR,
    ChainProfile,
    ChainRegistry,
)
from .errors import (
    ConfigError,
    CorrelationWarning,
    InsufficientFundsError,
    OwnershipError,
    PersistError,
)
from .ledger_client import LedgerClient
from .metadata import MetadataResolver
from .transfer_ledger import STATUS_INITIATED, TransferLedger, TransferRecord

logger = logging.getLogger(__name__)

NFT_SENT_EVENT = "NFTSent"
MESSAGE_ID_FIELD = "messageId"

Connector = Callable[..., LedgerClient]
EventDecoder = Callable[[str, Any], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class TransferRequest:
    token_id: int
    source_network: str
    destination_network: str
    receiver: str

    def __post_init__(self) -> None:
        if isinstance(self.token_id, bool) or not isinstance(self.token_id, int) or self.token_id < 0:
            raise ValueError(f"Invalid tokenId: {self.token_id}")
        if self.source_network == self.destination_network:
            raise ValueError("source and destination networks must differ")
        if not Web3.is_address(self.receiver):
            raise ValueError(f"Invalid receiver address: {self.receiver}")
        object.__setattr__(self, "receiver", Web3.to_checksum_address(self.receiver))


@dataclass(frozen=True)
class FeeQuote:
    base_fee: int

    @property
    def buffered_fee(self) -> int:
        return self.base_fee * FEE_BUFFER_NUMERATOR // FEE_BUFFER_DENOMINATOR


@dataclass
class TransferOutcome:
    record: TransferRecord
    warnings: List[CorrelationWarning] = field(default_factory=list)

    @property
    def tracking_url(self) -> Optional[str]:
        if self.record.ccip_message_id is None:
            return None
        return CCIP_EXPLORER_URL + self.record.ccip_message_id


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


def extract_message_id(
    logs: Iterable[Any],
    decode: EventDecoder,
    event_name: str = NFT_SENT_EVENT,
) -> Optional[str]:
    """Return the message id of the first log decoding to ``event_name``.

    Unrelated or undecodable entries are skipped. The ``messageId`` field
    wins; older bridge ABIs that name it differently fall back to the first
    decoded field.
    """

    for log in logs:
        try:
            decoded = decode(event_name, log)
        except Exception as exc:
            logger.debug("Skipping undecodable log entry: %s", exc)
            continue
        if not decoded:
            continue
        value = decoded.get(MESSAGE_ID_FIELD)
        if value is None:
            value = next(iter(decoded.values()), None)
        if value is None:
            continue
        return _to_hex(value)
    return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransferOrchestrator:
    def __init__(
        self,
        registry: ChainRegistry,
        deployments: DeploymentManifest,
        connector: Connector,
        metadata: MetadataResolver,
        ledger: TransferLedger,
        *,
        private_key: str,
        abis: ContractAbis,
        request_timeout: float = 10.0,
        receipt_timeout: float = 180.0,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._registry = registry
        self._deployments = deployments
        self._connector = connector
        self._metadata = metadata
        self._ledger = ledger
        self._private_key = private_key
        self._abis = abis
        self._request_timeout = request_timeout
        self._receipt_timeout = receipt_timeout
        self._clock = clock
        self._id_factory = id_factory

    def run(self, request: TransferRequest) -> TransferOutcome:
        logger.info(
            "Transfer started: tokenId=%s from=%s to=%s receiver=%s",
            request.token_id,
            request.source_network,
            request.destination_network,
            request.receiver,
        )

        source, destination, deployment = self._load(request)
        client = self._connect(source, deployment)
        signer = client.address
        logger.info("Connected as: %s", signer)

        self._check_ownership(client, request.token_id, signer)
        metadata = self._metadata.fetch(client.read_token_uri(request.token_id), request.token_id)

        quote = FeeQuote(client.estimate_fee(destination.selector))
        logger.info("Estimated CCIP fee: %s LINK", Web3.from_wei(quote.base_fee, "ether"))

        balance = client.read_balance(signer)
        if balance < quote.buffered_fee:
            raise InsufficientFundsError(quote.buffered_fee, balance)

        logger.info("Approving LINK token for bridge...")
        approve_hash = client.approve(deployment.bridge_address, quote.buffered_fee)
        logger.info("LINK approval tx: %s", approve_hash)

        logger.info("Approving NFT for bridge...")
        asset_hash = client.approve_asset(deployment.bridge_address, request.token_id)
        logger.info("NFT approval tx: %s", asset_hash)

        logger.info("Sending NFT via CCIP...")
        submitted = client.submit_transfer(destination.selector, request.receiver, request.token_id)
        logger.info("SOURCE TX HASH: %s", submitted.tx_hash)

        warnings: List[CorrelationWarning] = []
        message_id = extract_message_id(submitted.logs, client.parse_event)
        if message_id is not None:
            logger.info("CCIP MESSAGE ID: %s", message_id)
            logger.info(
                "Transfer initiated successfully. Track at: %s%s", CCIP_EXPLORER_URL, message_id
            )
        else:
            warning = CorrelationWarning(submitted.tx_hash, NFT_SENT_EVENT)
            warnings.append(warning)
            logger.info("%s", warning)

        record = TransferRecord(
            transfer_id=self._id_factory(),
            token_id=str(request.token_id),
            source_chain=request.source_network,
            destination_chain=request.destination_network,
            sender=signer,
            receiver=request.receiver,
            source_tx_hash=submitted.tx_hash,
            timestamp=self._clock().isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            ccip_message_id=message_id,
            destination_tx_hash=None,
            status=STATUS_INITIATED,
            metadata=metadata.to_payload(),
        )
        try:
            self._ledger.append(record)
        except (Timeout, OSError) as exc:
            raise PersistError(
                f"Transfer {submitted.tx_hash} was sent but could not be recorded in "
                f"{self._ledger.path}: {exc}"
            ) from exc
        return TransferOutcome(record=record, warnings=warnings)

    def _load(self, request: TransferRequest) -> tuple[ChainProfile, ChainProfile, DeploymentRecord]:
        source = self._registry.resolve(request.source_network)
        destination = self._registry.resolve(request.destination_network)
        if source.network == destination.network:
            raise ConfigError("source and destination networks must differ")
        return source, destination, self._deployments.for_network(source)

    def _connect(self, profile: ChainProfile, deployment: DeploymentRecord) -> LedgerClient:
        return self._connector(
            profile,
            deployment,
            self._private_key,
            self._abis,
            request_timeout=self._request_timeout,
            receipt_timeout=self._receipt_timeout,
        )

    def _check_ownership(self, client: LedgerClient, token_id: int, signer: str) -> None:
        owner = client.read_owner(token_id)
        if owner.lower() != signer.lower():
            raise OwnershipError(token_id, owner, signer)
