#!/usr/bin/env python3
"""Command-line entrypoint: send an NFT to another chain over CCIP.

    ccip-nft-transfer --token-id 7 --from avalanche-fuji --to arbitrum-sepolia \\
        --receiver 0xReceiver
"""
from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from web3 import Web3

from .config import DeploymentManifest, Settings, load_abis
from .constants import SUPPORTED_NETWORKS, ChainRegistry
from .errors import TransactionError, TransferError
from .ledger_client import Web3LedgerClient
from .metadata import MetadataResolver
from .orchestrator import TransferOrchestrator, TransferRequest
from .transfer_ledger import TransferLedger

logger = logging.getLogger("ccip_nft")

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

EXIT_OK = 0
EXIT_FAILURE = 1


def _token_id(value: str) -> int:
    # Plain ASCII digits only: int() would also take "+7", "1_000" and non-Latin digits.
    if not (value.isascii() and value.isdigit()):
        raise argparse.ArgumentTypeError(f"Invalid tokenId: {value}")
    return int(value, 10)


def _receiver(value: str) -> str:
    if not Web3.is_address(value):
        raise argparse.ArgumentTypeError(f"Invalid receiver address: {value}")
    return Web3.to_checksum_address(value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccip-nft-transfer",
        description="Transfer an NFT to another chain through the CCIP NFT bridge.",
    )
    parser.add_argument(
        "--token-id",
        "--tokenId",
        dest="token_id",
        type=_token_id,
        required=True,
        help="Token ID to transfer",
    )
    parser.add_argument(
        "--from",
        dest="source",
        choices=SUPPORTED_NETWORKS,
        required=True,
        help="Source chain",
    )
    parser.add_argument(
        "--to",
        dest="destination",
        choices=SUPPORTED_NETWORKS,
        required=True,
        help="Destination chain",
    )
    parser.add_argument(
        "--receiver",
        type=_receiver,
        required=True,
        help="Receiver address on destination chain",
    )
    parser.add_argument(
        "--deployment",
        type=Path,
        help="Deployment manifest (defaults to DEPLOYMENT_FILE or deployment.json)",
    )
    parser.add_argument(
        "--ledger",
        type=Path,
        help="Transfer ledger file (defaults to TRANSFERS_FILE or data/nft_transfers.json)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.source == args.destination:
        parser.error("--from and --to must be different chains")
    return args


def configure_logging(log_path: Optional[Path], *, verbose: bool = False) -> None:
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def build_orchestrator(settings: Settings, metadata: MetadataResolver) -> TransferOrchestrator:
    return TransferOrchestrator(
        registry=ChainRegistry.from_env(),
        deployments=DeploymentManifest.load(settings.deployment_path),
        connector=Web3LedgerClient.connect,
        metadata=metadata,
        ledger=TransferLedger(settings.transfers_path),
        private_key=settings.private_key,
        abis=load_abis(settings.abi_dir),
        request_timeout=settings.rpc_timeout,
        receipt_timeout=settings.receipt_timeout,
    )


def run(args: argparse.Namespace) -> int:
    request = TransferRequest(
        token_id=args.token_id,
        source_network=args.source,
        destination_network=args.destination,
        receiver=args.receiver,
    )
    settings = Settings.from_env(env_file=args.env_file)
    overrides = {}
    if args.deployment is not None:
        overrides["deployment_path"] = args.deployment
    if args.ledger is not None:
        overrides["transfers_path"] = args.ledger
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    configure_logging(settings.log_path, verbose=args.verbose)

    metadata = MetadataResolver(
        timeout=settings.metadata_timeout, ipfs_gateway=settings.ipfs_gateway
    )
    try:
        outcome = build_orchestrator(settings, metadata).run(request)
    finally:
        metadata.close()

    if outcome.tracking_url is None:
        logger.info("Message tracking unavailable for %s", outcome.record.source_tx_hash)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(None, verbose=args.verbose)
    try:
        return run(args)
    except TransactionError as err:
        logger.error("[%s] %s", err.gate, err)
        if err.revert_data:
            logger.error("Revert data: %s", err.revert_data)
        return EXIT_FAILURE
    except TransferError as err:
        logger.error("[%s] %s", err.gate, err)
        return EXIT_FAILURE
    except Exception as exc:
        logger.error("Unexpected error: %s", exc, exc_info=True)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
