from datetime import datetime, timezone

import httpx
import pytest
from filelock import Timeout
from web3 import Web3

from conftest import (
    BRIDGE,
    MESSAGE_ID,
    ONE_LINK,
    OTHER,
    RECEIVER,
    SIGNER,
    SOURCE_TX,
    FakeLedgerClient,
)
from ccip_nft.config import DeploymentManifest
from ccip_nft.errors import (
    ConfigError,
    ConnectivityError,
    CorrelationWarning,
    EstimationError,
    InsufficientFundsError,
    NotFoundError,
    OwnershipError,
    PersistError,
    TransactionError,
)
from ccip_nft.orchestrator import FeeQuote, TransferRequest, extract_message_id

ARBITRUM_SEPOLIA_SELECTOR = 3478487238524512106
WRITES = {"approve", "approve_asset", "submit_transfer"}


def test_fee_quote_buffers_ten_percent_truncating():
    assert FeeQuote(100).buffered_fee == 110
    assert FeeQuote(0).buffered_fee == 0
    assert FeeQuote(9).buffered_fee == 9  # 9.9 truncates
    assert FeeQuote(123456789).buffered_fee == 123456789 * 110 // 100


def test_transfer_request_validation():
    with pytest.raises(ValueError):
        TransferRequest(-1, "avalanche-fuji", "arbitrum-sepolia", RECEIVER)
    with pytest.raises(ValueError):
        TransferRequest(1, "avalanche-fuji", "avalanche-fuji", RECEIVER)
    with pytest.raises(ValueError):
        TransferRequest(1, "avalanche-fuji", "arbitrum-sepolia", "0x1234")
    req = TransferRequest(1, "avalanche-fuji", "arbitrum-sepolia", RECEIVER)
    assert req.receiver == Web3.to_checksum_address(RECEIVER)


def test_scenario_a_successful_transfer_is_persisted(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(token_uri="https://meta.test/7.json")
    outcome = make_orchestrator(client).run(request_7)

    record = outcome.record
    assert record.status == "initiated"
    assert record.source_tx_hash == SOURCE_TX
    assert record.ccip_message_id == MESSAGE_ID
    assert record.destination_tx_hash is None
    assert record.token_id == "7"
    assert record.sender == SIGNER
    assert record.receiver == Web3.to_checksum_address(RECEIVER)
    assert record.metadata == {"name": "Dragon #7", "description": "Fire", "image": "ipfs://img"}
    assert record.timestamp == "2026-01-02T03:04:05.000Z"
    assert outcome.warnings == []
    assert outcome.tracking_url == "https://ccip.chain.link/msg/" + MESSAGE_ID

    stored = ledger.load()
    assert stored == [record]


def test_writes_use_buffered_fee_and_destination_selector(make_orchestrator, request_7):
    client = FakeLedgerClient(fee=1000)
    make_orchestrator(client).run(request_7)

    bridge = Web3.to_checksum_address(BRIDGE)
    assert ("estimate_fee", ARBITRUM_SEPOLIA_SELECTOR) in client.calls
    assert ("approve", bridge, 1100) in client.calls
    assert ("approve_asset", bridge, 7) in client.calls
    assert (
        "submit_transfer",
        ARBITRUM_SEPOLIA_SELECTOR,
        Web3.to_checksum_address(RECEIVER),
        7,
    ) in client.calls


def test_approvals_precede_submission(make_orchestrator, request_7):
    client = FakeLedgerClient()
    make_orchestrator(client).run(request_7)

    assert client.call_names() == [
        "read_owner",
        "read_token_uri",
        "estimate_fee",
        "read_balance",
        "approve",
        "approve_asset",
        "submit_transfer",
    ]


def test_owner_comparison_is_case_insensitive(make_orchestrator, request_7):
    client = FakeLedgerClient(owner=SIGNER.upper().replace("0X", "0x"))
    outcome = make_orchestrator(client).run(request_7)
    assert outcome.record.ccip_message_id == MESSAGE_ID


def test_scenario_b_not_owner_stops_before_fee_estimation(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(owner=OTHER)

    with pytest.raises(OwnershipError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.gate == "ownership"
    assert client.call_names() == ["read_owner"]
    assert ledger.load() == []
    assert not ledger.path.exists()


def test_missing_token_raises_not_found(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(owner=NotFoundError("Token #7 does not exist on source chain"))

    with pytest.raises(NotFoundError):
        make_orchestrator(client).run(request_7)

    assert "estimate_fee" not in client.call_names()
    assert ledger.load() == []


def test_scenario_c_balance_one_below_buffer_blocks_approvals(make_orchestrator, request_7, ledger):
    fee = 3 * ONE_LINK
    buffered = FeeQuote(fee).buffered_fee
    client = FakeLedgerClient(fee=fee, balance=buffered - 1)

    with pytest.raises(InsufficientFundsError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.required == buffered
    assert excinfo.value.available == buffered - 1
    assert not WRITES & set(client.call_names())
    assert ledger.load() == []


def test_balance_equal_to_buffer_is_enough(make_orchestrator, request_7):
    client = FakeLedgerClient(fee=1000, balance=1100)
    outcome = make_orchestrator(client).run(request_7)
    assert outcome.record.status == "initiated"


def test_balance_check_uses_buffered_not_raw_fee(make_orchestrator, request_7):
    # Covers the raw quote but not the 10% margin.
    client = FakeLedgerClient(fee=1000, balance=1050)
    with pytest.raises(InsufficientFundsError):
        make_orchestrator(client).run(request_7)


def test_estimation_failure_aborts_before_balance(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(fee=EstimationError("Failed to estimate transfer cost: boom"))

    with pytest.raises(EstimationError):
        make_orchestrator(client).run(request_7)

    assert client.call_names()[-1] == "estimate_fee"
    assert ledger.load() == []


def test_fee_token_approval_failure_never_touches_asset(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(fail_step="fee-token-approval")

    with pytest.raises(TransactionError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.gate == "fee-token-approval"
    assert "approve_asset" not in client.call_names()
    assert "submit_transfer" not in client.call_names()
    assert ledger.load() == []


def test_submit_failure_surfaces_revert_data(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(fail_step="submit-transfer", revert_data="0x08c379a0dead")

    with pytest.raises(TransactionError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.revert_data == "0x08c379a0dead"
    assert ledger.load() == []


def test_missing_event_still_persists_with_null_message_id(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(logs=[{"event": "Approval", "args": {"owner": SIGNER}}, b"junk"])

    outcome = make_orchestrator(client).run(request_7)

    assert outcome.record.ccip_message_id is None
    assert outcome.tracking_url is None
    assert len(outcome.warnings) == 1
    assert isinstance(outcome.warnings[0], CorrelationWarning)
    assert [r.ccip_message_id for r in ledger.load()] == [None]


def test_scenario_d_metadata_timeout_uses_defaults(make_orchestrator, request_7, ledger):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    client = FakeLedgerClient(token_uri="https://meta.test/7.json")
    outcome = make_orchestrator(client, handler=handler).run(request_7)

    assert outcome.record.metadata == {"name": "Asset #7", "description": "", "image": ""}
    assert ledger.load()[0].metadata["name"] == "Asset #7"


def test_missing_deployment_fails_before_connecting(ledger, request_7, make_orchestrator, monkeypatch):
    connected = []

    def connector(*args, **kwargs):
        connected.append(args)
        return FakeLedgerClient()

    orchestrator = make_orchestrator(FakeLedgerClient(), connector=connector)
    monkeypatch.setattr(orchestrator, "_deployments", DeploymentManifest({}))

    with pytest.raises(ConfigError):
        orchestrator.run(request_7)
    assert connected == []


def test_connectivity_failure_propagates(make_orchestrator, request_7, ledger):
    def connector(*args, **kwargs):
        raise ConnectivityError("Could not connect to RPC: http://down")

    with pytest.raises(ConnectivityError):
        make_orchestrator(FakeLedgerClient(), connector=connector).run(request_7)
    assert ledger.load() == []


def test_appends_do_not_touch_previous_records(make_orchestrator, request_7, ledger):
    make_orchestrator(FakeLedgerClient()).run(request_7)
    make_orchestrator(FakeLedgerClient(logs=[])).run(request_7)

    records = ledger.load()
    assert len(records) == 2
    assert records[0].ccip_message_id == MESSAGE_ID
    assert records[1].ccip_message_id is None


def test_extract_message_id_skips_unrelated_and_broken_entries():
    def decode(name, log):
        if log == "boom":
            raise ValueError("bad log")
        if log.get("event") != name:
            return None
        return log["args"]

    logs = [
        "boom",
        {"event": "Transfer", "args": {"tokenId": 7}},
        {"event": "NFTSent", "args": {"messageId": b"\x01" * 32}},
        {"event": "NFTSent", "args": {"messageId": b"\x02" * 32}},
    ]
    assert extract_message_id(logs, decode) == "0x" + "01" * 32


def test_extract_message_id_falls_back_to_first_field():
    def decode(name, log):
        return {"id": "0xabc", "tokenId": 7}

    assert extract_message_id([object()], decode) == "0xabc"


def test_extract_message_id_none_when_nothing_decodes():
    assert extract_message_id([], lambda name, log: None) is None
    assert extract_message_id([{}, {}], lambda name, log: None) is None


def test_timestamp_is_millisecond_precision_utc(make_orchestrator, request_7):
    def clock():
        return datetime(2026, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)

    record = make_orchestrator(FakeLedgerClient(), clock=clock).run(request_7).record

    assert record.timestamp == "2026-01-02T03:04:05.123Z"


def test_balance_read_failure_is_reported_against_balance_step(make_orchestrator, request_7, ledger):
    client = FakeLedgerClient(
        balance=ConnectivityError("balanceOf failed: read timed out", gate="balance")
    )

    with pytest.raises(ConnectivityError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.gate == "balance"
    assert not WRITES & set(client.call_names())
    assert ledger.load() == []


def test_unwritable_ledger_raises_persist_error(make_orchestrator, request_7, ledger):
    ledger.path.mkdir(parents=True)
    client = FakeLedgerClient()

    with pytest.raises(PersistError) as excinfo:
        make_orchestrator(client).run(request_7)

    assert excinfo.value.gate == "persist"
    assert SOURCE_TX in str(excinfo.value)
    assert client.call_names()[-1] == "submit_transfer"
    assert not ledger.path.with_name(ledger.path.name + ".tmp").exists()


def test_ledger_lock_timeout_raises_persist_error(make_orchestrator, request_7, ledger, monkeypatch):
    def locked(record):
        raise Timeout(f"{ledger.path}.lock")

    monkeypatch.setattr(ledger, "append", locked)

    with pytest.raises(PersistError) as excinfo:
        make_orchestrator(FakeLedgerClient()).run(request_7)
    assert isinstance(excinfo.value.__cause__, Timeout)
