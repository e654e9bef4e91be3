"""Append-only JSON store of initiated transfers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from filelock import FileLock

logger = logging.getLogger(__name__)

STATUS_INITIATED = "initiated"

DEFAULT_LOCK_TIMEOUT = 30.0


@dataclass
class TransferRecord:
    transfer_id: str
    token_id: str
    source_chain: str
    destination_chain: str
    sender: str
    receiver: str
    source_tx_hash: str
    timestamp: str
    ccip_message_id: Optional[str] = None
    destination_tx_hash: Optional[str] = None
    status: str = STATUS_INITIATED
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TransferRecord":
        return cls(
            transfer_id=str(payload.get("transferId", "")),
            token_id=str(payload.get("tokenId", "")),
            source_chain=str(payload.get("sourceChain", "")),
            destination_chain=str(payload.get("destinationChain", "")),
            sender=str(payload.get("sender", "")),
            receiver=str(payload.get("receiver", "")),
            source_tx_hash=str(payload.get("sourceTxHash", "")),
            timestamp=str(payload.get("timestamp", "")),
            ccip_message_id=payload.get("ccipMessageId"),
            destination_tx_hash=payload.get("destinationTxHash"),
            status=str(payload.get("status", STATUS_INITIATED)),
            metadata=dict(payload.get("metadata") or {}),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "tokenId": self.token_id,
            "sourceChain": self.source_chain,
            "destinationChain": self.destination_chain,
            "sender": self.sender,
            "receiver": self.receiver,
            "ccipMessageId": self.ccip_message_id,
            "sourceTxHash": self.source_tx_hash,
            "destinationTxHash": self.destination_tx_hash,
            "status": self.status,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }


class TransferLedger:
    """File-backed collection of :class:`TransferRecord` entries.

    ``append`` holds an inter-process file lock across the whole
    read-modify-write, so concurrent runs do not lose each other's records.
    A missing or corrupt file reads as an empty collection.
    """

    def __init__(self, path: Path, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self._lock = FileLock(f"{self.path}.lock", timeout=lock_timeout)

    def _read_raw(self) -> List[Any]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as exc:
            logger.warning("Transfer ledger %s is unreadable (%s); starting fresh", self.path, exc)
            return []
        if not isinstance(data, list):
            logger.warning("Transfer ledger %s is not a JSON list; starting fresh", self.path)
            return []
        return data

    def _write_raw(self, entries: List[Any]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(entries, handle, indent=2)
                handle.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def load(self) -> List[TransferRecord]:
        return [
            TransferRecord.from_payload(entry)
            for entry in self._read_raw()
            if isinstance(entry, dict)
        ]

    def append(self, record: TransferRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            entries = self._read_raw()
            entries.append(record.to_payload())
            self._write_raw(entries)
        logger.info("Transfer record saved to %s", self.path)
