from datetime import datetime, timezone

import httpx
import pytest

from ccip_nft.config import DeploymentManifest, load_abis
from ccip_nft.constants import ChainRegistry
from ccip_nft.errors import TransactionError
from ccip_nft.ledger_client import SubmittedTransfer
from ccip_nft.metadata import MetadataResolver
from ccip_nft.orchestrator import TransferOrchestrator, TransferRequest
from ccip_nft.transfer_ledger import TransferLedger

SIGNER = "0x00000000000000000000000000000000000000a1"
OTHER = "0x00000000000000000000000000000000000000b2"
RECEIVER = "0x00000000000000000000000000000000000000c3"
BRIDGE = "0x00000000000000000000000000000000000000d4"
NFT = "0x00000000000000000000000000000000000000e5"
PRIVATE_KEY = "0x" + "1" * 64
MESSAGE_ID = "0x" + "77" * 32
SOURCE_TX = "0x" + "aa" * 32

ONE_LINK = 10**18


class FakeLedgerClient:
    """Deterministic LedgerClient that records every call in order."""

    def __init__(
        self,
        *,
        owner=SIGNER,
        token_uri="",
        fee=ONE_LINK,
        balance=2 * ONE_LINK,
        logs=None,
        fail_step=None,
        revert_data=None,
    ):
        self.owner = owner
        self.token_uri = token_uri
        self.fee = fee
        self.balance = balance
        self.logs = (
            logs
            if logs is not None
            else [{"event": "NFTSent", "args": {"messageId": bytes.fromhex("77" * 32)}}]
        )
        self.fail_step = fail_step
        self.revert_data = revert_data
        self.calls = []

    @property
    def address(self):
        return SIGNER

    def read_owner(self, token_id):
        self.calls.append(("read_owner", token_id))
        if isinstance(self.owner, Exception):
            raise self.owner
        return self.owner

    def read_token_uri(self, token_id):
        self.calls.append(("read_token_uri", token_id))
        return self.token_uri

    def read_balance(self, account):
        self.calls.append(("read_balance", account))
        if isinstance(self.balance, Exception):
            raise self.balance
        return self.balance

    def read_allowance(self, owner, spender):
        self.calls.append(("read_allowance", owner, spender))
        return 0

    def estimate_fee(self, destination_selector):
        self.calls.append(("estimate_fee", destination_selector))
        if isinstance(self.fee, Exception):
            raise self.fee
        return self.fee

    def _maybe_fail(self, step):
        if self.fail_step == step:
            raise TransactionError(step, "execution reverted", revert_data=self.revert_data)

    def approve(self, spender, amount):
        self.calls.append(("approve", spender, amount))
        self._maybe_fail("fee-token-approval")
        return "0x" + "01" * 32

    def approve_asset(self, spender, token_id):
        self.calls.append(("approve_asset", spender, token_id))
        self._maybe_fail("asset-approval")
        return "0x" + "02" * 32

    def submit_transfer(self, destination_selector, receiver, token_id):
        self.calls.append(("submit_transfer", destination_selector, receiver, token_id))
        self._maybe_fail("submit-transfer")
        return SubmittedTransfer(tx_hash=SOURCE_TX, logs=list(self.logs))

    def parse_event(self, event_name, log):
        if not isinstance(log, dict):
            raise ValueError("cannot decode log")
        if log.get("event") != event_name:
            return None
        return log.get("args")

    def call_names(self):
        return [call[0] for call in self.calls]


def metadata_handler_ok(request):
    return httpx.Response(
        200,
        json={"name": "Dragon #7", "description": "Fire", "image": "ipfs://img"},
    )


@pytest.fixture
def manifest():
    return DeploymentManifest(
        {"avalancheFuji": {"bridgeContractAddress": BRIDGE, "nftContractAddress": NFT}}
    )


@pytest.fixture
def ledger(tmp_path):
    return TransferLedger(tmp_path / "data" / "nft_transfers.json")


@pytest.fixture
def request_7():
    return TransferRequest(
        token_id=7,
        source_network="avalanche-fuji",
        destination_network="arbitrum-sepolia",
        receiver=RECEIVER,
    )


@pytest.fixture
def make_orchestrator(manifest, ledger):
    created = []

    def factory(client, *, handler=metadata_handler_ok, connector=None, clock=None):
        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        created.append(http_client)
        resolver = MetadataResolver(http_client)

        def default_connector(profile, deployment, private_key, abis, **kwargs):
            return client

        return TransferOrchestrator(
            registry=ChainRegistry.from_env({}),
            deployments=manifest,
            connector=connector or default_connector,
            metadata=resolver,
            ledger=ledger,
            private_key=PRIVATE_KEY,
            abis=load_abis(),
            clock=clock or (lambda: datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
            id_factory=lambda: "transfer-1",
        )

    yield factory

    for http_client in created:
        http_client.close()
