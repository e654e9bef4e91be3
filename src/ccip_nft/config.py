"""Environment, deployment manifest and ABI loading."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from dotenv import find_dotenv, load_dotenv
from web3 import Web3

from .constants import ChainProfile
from .errors import ConfigError

JsonDict = Dict[str, Any]

BUNDLED_ABI_DIR = Path(__file__).with_name("abis")
BRIDGE_ABI_FILE = "CCIPNFTBridge.json"
NFT_ABI_FILE = "CrossChainNFT.json"

DEFAULT_DEPLOYMENT_FILE = "deployment.json"
DEFAULT_TRANSFERS_FILE = "data/nft_transfers.json"
DEFAULT_LOG_FILE = "logs/transfers.log"
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"


def resolve_config_value(
    keys: Union[str, Sequence[str]],
    environ: Mapping[str, str],
    *,
    required: bool = True,
    default: Optional[str] = None,
) -> Optional[str]:
    if isinstance(keys, str):
        key_list = (keys,)
    else:
        key_list = tuple(keys)

    for key in key_list:
        value = environ.get(key)
        if value is not None and value.strip():
            return value.strip()

    if required:
        joined = "/".join(key_list)
        raise ConfigError(f"missing configuration value for {joined}")
    return default


def _parse_seconds(raw: Optional[str], *, field: str) -> float:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field} must be a number of seconds, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{field} must be positive")
    return value


@dataclass(frozen=True)
class Settings:
    private_key: str
    deployment_path: Path
    transfers_path: Path
    log_path: Path
    abi_dir: Path
    rpc_timeout: float = 10.0
    receipt_timeout: float = 180.0
    metadata_timeout: float = 10.0
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        env_file: Optional[Path] = None,
    ) -> "Settings":
        if environ is None:
            if env_file is not None:
                load_dotenv(env_file)
            else:
                load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ

        private_key = resolve_config_value("PRIVATE_KEY", environ) or ""
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key

        return cls(
            private_key=private_key,
            deployment_path=Path(
                resolve_config_value(
                    "DEPLOYMENT_FILE", environ, required=False, default=DEFAULT_DEPLOYMENT_FILE
                )
            ),
            transfers_path=Path(
                resolve_config_value(
                    "TRANSFERS_FILE", environ, required=False, default=DEFAULT_TRANSFERS_FILE
                )
            ),
            log_path=Path(
                resolve_config_value(
                    "TRANSFER_LOG_FILE", environ, required=False, default=DEFAULT_LOG_FILE
                )
            ),
            abi_dir=Path(
                resolve_config_value(
                    "ABI_DIR", environ, required=False, default=str(BUNDLED_ABI_DIR)
                )
            ),
            rpc_timeout=_parse_seconds(
                resolve_config_value("RPC_TIMEOUT", environ, required=False, default="10"),
                field="RPC_TIMEOUT",
            ),
            receipt_timeout=_parse_seconds(
                resolve_config_value("RECEIPT_TIMEOUT", environ, required=False, default="180"),
                field="RECEIPT_TIMEOUT",
            ),
            metadata_timeout=_parse_seconds(
                resolve_config_value("METADATA_TIMEOUT", environ, required=False, default="10"),
                field="METADATA_TIMEOUT",
            ),
            ipfs_gateway=resolve_config_value(
                "IPFS_GATEWAY", environ, required=False, default=DEFAULT_IPFS_GATEWAY
            )
            or DEFAULT_IPFS_GATEWAY,
        )


@dataclass(frozen=True)
class DeploymentRecord:
    bridge_address: str
    nft_address: str

    @classmethod
    def from_payload(cls, network: str, payload: JsonDict) -> "DeploymentRecord":
        bridge = payload.get("bridgeContractAddress")
        nft = payload.get("nftContractAddress")
        if not bridge or not nft:
            raise ConfigError(f"Deployment for {network} is missing contract addresses")
        for label, address in (("bridge", bridge), ("nft", nft)):
            if not Web3.is_address(address):
                raise ConfigError(f"Deployment for {network} has invalid {label} address: {address}")
        return cls(
            bridge_address=Web3.to_checksum_address(bridge),
            nft_address=Web3.to_checksum_address(nft),
        )


class DeploymentManifest:
    """Read-only view of ``deployment.json``: manifest key to contract addresses."""

    def __init__(self, entries: Mapping[str, JsonDict]) -> None:
        self._entries = dict(entries)

    @classmethod
    def load(cls, path: Path) -> "DeploymentManifest":
        if not path.exists():
            raise ConfigError(f"{path} not found. Please deploy contracts first.")
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Could not read deployment manifest {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Deployment manifest {path} must be a JSON object")
        return cls(data)

    def for_network(self, profile: ChainProfile) -> DeploymentRecord:
        payload = self._entries.get(profile.deployment_key)
        if not isinstance(payload, dict):
            raise ConfigError(f"No deployment found for chain: {profile.network}")
        return DeploymentRecord.from_payload(profile.network, payload)


@dataclass(frozen=True)
class ContractAbis:
    bridge: List[JsonDict]
    nft: List[JsonDict]


def load_abi(path: Path) -> List[JsonDict]:
    """Load an ABI from a Foundry artifact (``{"abi": [...]}``) or a bare ABI list."""

    if not path.exists():
        raise ConfigError(f"ABI file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Could not parse ABI file {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("abi")
    if not isinstance(data, list):
        raise ConfigError(f"ABI file {path} does not contain an ABI list")
    return data


def load_abis(abi_dir: Path = BUNDLED_ABI_DIR) -> ContractAbis:
    return ContractAbis(
        bridge=load_abi(abi_dir / BRIDGE_ABI_FILE),
        nft=load_abi(abi_dir / NFT_ABI_FILE),
    )
