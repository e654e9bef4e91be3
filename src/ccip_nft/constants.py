"""Supported CCIP networks and their static defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, TypedDict

from .errors import ConfigError


SUPPORTED_NETWORKS: List[str] = ["avalanche-fuji", "arbitrum-sepolia"]

CCIP_EXPLORER_URL = "https://ccip.chain.link/msg/"

# Fixed 10% margin on the estimated CCIP fee.
FEE_BUFFER_NUMERATOR = 110
FEE_BUFFER_DENOMINATOR = 100

MAX_CHAIN_SELECTOR = 2**64 - 1


class NetworkDefaults(TypedDict):
    rpc_url: str
    chain_selector: str
    fee_token: str
    deployment_key: str
    env_prefix: str
    link_env: str


DEFAULT_NETWORKS: Dict[str, NetworkDefaults] = {
    "avalanche-fuji": {
        "rpc_url": "https://api.avax-test.network/ext/bc/C/rpc",
        "chain_selector": "14767482510784806043",
        "fee_token": "0x0b9d5D9136855f6FEc3c0993feE6E9CE8a297846",
        "deployment_key": "avalancheFuji",
        "env_prefix": "FUJI",
        "link_env": "LINK_TOKEN_FUJI",
    },
    "arbitrum-sepolia": {
        "rpc_url": "https://sepolia-rollup.arbitrum.io/rpc",
        "chain_selector": "3478487238524512106",
        "fee_token": "0xb1D4538B4571d411F07960EF2838Ce337FE1E80E",
        "deployment_key": "arbitrumSepolia",
        "env_prefix": "ARBITRUM_SEPOLIA",
        "link_env": "LINK_TOKEN_ARBITRUM_SEPOLIA",
    },
}


@dataclass(frozen=True)
class ChainProfile:
    network: str
    rpc_url: str
    # Decimal string as read from the environment; validated by ChainRegistry.resolve.
    chain_selector: str
    fee_token: str
    deployment_key: str

    @property
    def selector(self) -> int:
        return int(self.chain_selector)


class ChainRegistry:
    """Immutable lookup of network name to :class:`ChainProfile`."""

    def __init__(self, profiles: Iterable[ChainProfile]) -> None:
        self._profiles: Dict[str, ChainProfile] = {}
        for profile in profiles:
            if profile.network in self._profiles:
                raise ConfigError(f"Duplicate chain profile for network {profile.network}")
            self._profiles[profile.network] = profile

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ChainRegistry":
        env = os.environ if environ is None else environ

        def pick(key: str, default: str) -> str:
            value = env.get(key)
            if value is not None and value.strip():
                return value.strip()
            return default

        profiles = []
        for network in SUPPORTED_NETWORKS:
            defaults = DEFAULT_NETWORKS[network]
            prefix = defaults["env_prefix"]
            profiles.append(
                ChainProfile(
                    network=network,
                    rpc_url=pick(f"{prefix}_RPC_URL", defaults["rpc_url"]),
                    chain_selector=pick(f"{prefix}_CHAIN_SELECTOR", defaults["chain_selector"]),
                    fee_token=pick(defaults["link_env"], defaults["fee_token"]),
                    deployment_key=defaults["deployment_key"],
                )
            )
        return cls(profiles)

    @property
    def networks(self) -> List[str]:
        return list(self._profiles)

    def resolve(self, network: str) -> ChainProfile:
        try:
            profile = self._profiles[network]
        except KeyError as exc:
            raise ConfigError(f"No chain profile configured for network {network}") from exc

        if not profile.rpc_url:
            raise ConfigError(f"RPC URL for {network} is empty")
        if not profile.chain_selector:
            raise ConfigError(f"CCIP chain selector for {network} is empty")
        try:
            selector = int(profile.chain_selector)
        except ValueError as exc:
            raise ConfigError(
                f"CCIP chain selector for {network} must be an integer: {profile.chain_selector!r}"
            ) from exc
        if not 0 <= selector <= MAX_CHAIN_SELECTOR:
            raise ConfigError(f"CCIP chain selector for {network} must fit in a uint64")
        if not profile.fee_token:
            raise ConfigError(f"Fee token address for {network} is empty")
        return profile
