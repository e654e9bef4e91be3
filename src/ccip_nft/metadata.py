"""Best-effort resolution of off-chain token metadata."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

from .config import DEFAULT_IPFS_GATEWAY

logger = logging.getLogger(__name__)

DEFAULT_METADATA_TIMEOUT = 10.0


@dataclass(frozen=True)
class AssetMetadata:
    name: str
    description: str = ""
    image: str = ""

    @classmethod
    def defaults(cls, token_id: int) -> "AssetMetadata":
        return cls(name=f"Asset #{token_id}")

    def to_payload(self) -> Dict[str, str]:
        return asdict(self)


class MetadataResolver:
    """Fetch ``{name, description, image}`` from a token URI.

    Metadata is cosmetic: every failure degrades to :meth:`AssetMetadata.defaults`.
    """

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        *,
        timeout: float = DEFAULT_METADATA_TIMEOUT,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
    ) -> None:
        self._client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._ipfs_gateway = ipfs_gateway.rstrip("/") + "/"

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout, follow_redirects=True)
        return self._client

    def resolve_url(self, uri: str) -> str:
        if uri.startswith("ipfs://"):
            path = uri[len("ipfs://"):]
            if path.startswith("ipfs/"):
                path = path[len("ipfs/"):]
            return self._ipfs_gateway + path
        return uri

    def fetch(self, uri: str, token_id: int) -> AssetMetadata:
        defaults = AssetMetadata.defaults(token_id)
        if not uri:
            return defaults

        url = self.resolve_url(uri)
        try:
            response = self._get_client().get(url)
        except Exception as exc:
            logger.info("Could not fetch metadata from tokenURI, using defaults (%s)", exc)
            return defaults

        if not response.is_success:
            logger.info(
                "Metadata request to %s returned %s, using defaults", url, response.status_code
            )
            return defaults

        try:
            payload: Any = response.json()
        except ValueError:
            logger.info("Metadata at %s is not valid JSON, using defaults", url)
            return defaults
        if not isinstance(payload, dict):
            logger.info("Metadata at %s is not a JSON object, using defaults", url)
            return defaults

        def pick(key: str, default: str) -> str:
            value = payload.get(key)
            if value and isinstance(value, str):
                return value
            return default

        return AssetMetadata(
            name=pick("name", defaults.name),
            description=pick("description", defaults.description),
            image=pick("image", defaults.image),
        )
