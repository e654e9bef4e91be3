"""Error taxonomy for the transfer workflow."""

from __future__ import annotations

from typing import Optional


class TransferError(RuntimeError):
    """Base class for failures that abort a transfer run."""

    gate = "transfer"

    def __init__(self, message: str, *, gate: Optional[str] = None) -> None:
        super().__init__(message)
        if gate is not None:
            self.gate = gate


class ConfigError(TransferError):
    """Missing or invalid registry, deployment or credential data."""

    gate = "config"


class ConnectivityError(TransferError):
    """The RPC endpoint could not be reached. ``gate`` names the step that was running."""

    gate = "connect"

    def __init__(
        self,
        message: str,
        *,
        endpoint: Optional[str] = None,
        gate: Optional[str] = None,
    ) -> None:
        super().__init__(message, gate=gate)
        self.endpoint = endpoint


class NotFoundError(TransferError):
    gate = "ownership"


class OwnershipError(TransferError):
    gate = "ownership"

    def __init__(self, token_id: int, owner: str, signer: str) -> None:
        super().__init__(f"Wallet {signer} does not own token #{token_id}. Owner: {owner}")
        self.token_id = token_id
        self.owner = owner
        self.signer = signer


class EstimationError(TransferError):
    gate = "fee-estimation"


class InsufficientFundsError(TransferError):
    gate = "balance"

    def __init__(self, required: int, available: int, *, symbol: str = "LINK") -> None:
        super().__init__(
            f"Insufficient {symbol}. Need: {required} wei. Have: {available} wei"
        )
        self.required = required
        self.available = available


class PersistError(TransferError):
    """The transfer confirmed on chain but its record could not be written."""

    gate = "persist"


class TransactionError(TransferError):
    """A write transaction failed to broadcast, reverted, or never confirmed."""

    def __init__(
        self,
        step: str,
        message: str,
        *,
        tx_hash: Optional[str] = None,
        revert_data: Optional[str] = None,
    ) -> None:
        super().__init__(f"{step} failed: {message}", gate=step)
        self.step = step
        self.tx_hash = tx_hash
        self.revert_data = revert_data


class CorrelationWarning(UserWarning):
    """The transfer confirmed but no message id could be extracted from its logs."""

    def __init__(self, tx_hash: str, event_name: str) -> None:
        super().__init__(
            f"Transfer initiated but could not extract CCIP message ID from logs "
            f"(no {event_name} event in {tx_hash})"
        )
        self.tx_hash = tx_hash
        self.event_name = event_name
