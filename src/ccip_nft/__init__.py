"""Cross-chain NFT transfers over Chainlink CCIP (Python)."""

from __future__ import annotations

from .constants import (
    DEFAULT_NETWORKS,
    SUPPORTED_NETWORKS,
    ChainProfile,
    ChainRegistry,
)
from .errors import (
    ConfigError,
    ConnectivityError,
    CorrelationWarning,
    EstimationError,
    InsufficientFundsError,
    NotFoundError,
    OwnershipError,
    PersistError,
    TransactionError,
    TransferError,
)
from .ledger_client import LedgerClient, SubmittedTransfer, Web3LedgerClient
from .metadata import AssetMetadata, MetadataResolver
from .orchestrator import (
    FeeQuote,
    TransferOrchestrator,
    TransferOutcome,
    TransferRequest,
    extract_message_id,
)
from .transfer_ledger import TransferLedger, TransferRecord

__all__ = [
    "SUPPORTED_NETWORKS",
    "DEFAULT_NETWORKS",
    "ChainProfile",
    "ChainRegistry",
    "TransferError",
    "ConfigError",
    "ConnectivityError",
    "NotFoundError",
    "OwnershipError",
    "EstimationError",
    "InsufficientFundsError",
    "PersistError",
    "TransactionError",
    "CorrelationWarning",
    "LedgerClient",
    "SubmittedTransfer",
    "Web3LedgerClient",
    "AssetMetadata",
    "MetadataResolver",
    "FeeQuote",
    "TransferRequest",
    "TransferOutcome",
    "TransferOrchestrator",
    "extract_message_id",
    "TransferLedger",
    "TransferRecord",
]
