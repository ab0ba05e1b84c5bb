# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.service module

Wires the pipeline stages together for callers:

    Report -> personal signature -> signed submitReport tx -> broadcast
           -> confirmation polling -> TxOutcome

Configuration is loaded from environment variables, optionally seeded from
a .env file, with sensible defaults.

Nonce discipline: the account nonce is read from the node ("latest") right
before signing the envelope. ReportSubmitter holds a lock around
fetch-nonce/sign/broadcast so that concurrent submissions through the same
submitter never reuse a nonce. Separate processes or submitters sharing one
account must coordinate on their own.
"""

import concurrent.futures
import logging
import os
import threading

from dotenv import find_dotenv, load_dotenv
from web3 import Web3

from report_submitter.errors import ConstructionError, SubmitterError
from report_submitter.poller import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    ConfirmationPoller,
)
from report_submitter.rpc import MultiRPCProvider, ReportRPC
from report_submitter.signing import KeyPair, sign_report
from report_submitter.transactions import (
    DEFAULT_GAS_LIMIT,
    build_report_tx,
    submit_report_tx,
)

logger = logging.getLogger("report_submitter")

# Default configuration values
DEFAULTS = {
    "ETH_RPC_URL": "http://127.0.0.1:8545",
    "ETH_CONTRACT_ADDRESS": "",
    "ETH_PRIVATE_KEY": "",
    "ETH_CHAIN_ID": "",
    "GAS_LIMIT": str(DEFAULT_GAS_LIMIT),
    "POLL_ATTEMPTS": str(DEFAULT_MAX_ATTEMPTS),
    "POLL_INTERVAL": str(DEFAULT_POLL_INTERVAL),
}

# Variable names used by earlier deployments of the submitter
FALLBACK_NAMES = {
    "ETH_RPC_URL": "SEI_RPC",
    "ETH_CONTRACT_ADDRESS": "CONTRACT_ADDRESS",
    "ETH_PRIVATE_KEY": "PRIVATE_KEY",
}


def load_config(environ=None, dotenv_path=None):
    """Load submitter configuration from environment variables.

    When reading the process environment, a .env file (dotenv_path, or the
    nearest one above the working directory) is loaded first. Variables
    already set in the environment take precedence over the file.

    Args:
        environ: mapping to read from; os.environ when None.
        dotenv_path: explicit .env file, only used when environ is None.

    Returns:
        dict with all configuration values. ETH_CHAIN_ID is None when unset.
    """
    if environ is None:
        dotenv_path = dotenv_path or find_dotenv(usecwd=True)
        if dotenv_path:
            load_dotenv(dotenv_path)
        environ = os.environ

    config = {}
    for key, default in DEFAULTS.items():
        value = environ.get(key)
        if not value and key in FALLBACK_NAMES:
            value = environ.get(FALLBACK_NAMES[key])
        config[key] = value if value else default

    try:
        config["ETH_CHAIN_ID"] = int(config["ETH_CHAIN_ID"]) if config["ETH_CHAIN_ID"] else None
        config["GAS_LIMIT"] = int(config["GAS_LIMIT"])
        config["POLL_ATTEMPTS"] = int(config["POLL_ATTEMPTS"])
        config["POLL_INTERVAL"] = float(config["POLL_INTERVAL"])
    except ValueError as exc:
        raise ConstructionError(f"invalid numeric configuration: {exc}") from exc
    return config


def setup_web3(config):
    """Create the RPC access object for the configured endpoint(s).

    Supports comma-separated URLs for failover via MultiRPCProvider.

    Returns:
        A tuple of (rpc, provider) where provider is None for single-URL
        configurations.
    """
    urls = [u.strip() for u in config["ETH_RPC_URL"].split(",") if u.strip()]
    if not urls:
        raise ConstructionError("ETH_RPC_URL is empty")
    if len(urls) > 1:
        provider = MultiRPCProvider(urls)
        return ReportRPC(provider=provider), provider
    return ReportRPC(w3=Web3(Web3.HTTPProvider(urls[0]))), None


class ReportSubmitter:
    """Runs sign -> submit -> poll for reports from one account.

    Args:
        rpc: ReportRPC.
        keypair: KeyPair of the reporting account.
        contract_address: destination contract address.
        poller: ConfirmationPoller; one is built on rpc when None.
        gas_limit: fixed gas limit per transaction.
        chain_id: EIP-155 chain id; fetched from the node once when None.
    """

    def __init__(self, rpc, keypair, contract_address, poller=None,
                 gas_limit=DEFAULT_GAS_LIMIT, chain_id=None):
        if not Web3.is_address(contract_address):
            raise ConstructionError(f"invalid contract address {contract_address!r}")
        self.rpc = rpc
        self.keypair = keypair
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.poller = poller if poller is not None else ConfirmationPoller(rpc)
        self.gas_limit = gas_limit
        self.chain_id = chain_id
        self._nonce_lock = threading.Lock()

    @classmethod
    def from_config(cls, config=None):
        """Build a submitter from load_config() output."""
        if config is None:
            config = load_config()
        if not config["ETH_PRIVATE_KEY"]:
            raise ConstructionError("ETH_PRIVATE_KEY not set")
        if not config["ETH_CONTRACT_ADDRESS"]:
            raise ConstructionError("ETH_CONTRACT_ADDRESS not set")
        rpc, _ = setup_web3(config)
        poller = ConfirmationPoller(
            rpc,
            max_attempts=config["POLL_ATTEMPTS"],
            interval=config["POLL_INTERVAL"],
        )
        return cls(
            rpc,
            KeyPair.from_hex(config["ETH_PRIVATE_KEY"]),
            config["ETH_CONTRACT_ADDRESS"],
            poller=poller,
            gas_limit=config["GAS_LIMIT"],
            chain_id=config["ETH_CHAIN_ID"],
        )

    def submit(self, report):
        """Sign and broadcast one report. Exactly one broadcast per call.

        Returns:
            The transaction hash (0x hex).

        Raises:
            SigningError, RpcError, SubmissionRejected, ConstructionError.
        """
        digest, signature = sign_report(report, self.keypair)
        logger.info(
            "Submitting report server=%s timestamp=%s payload=0x%s",
            report.server_id, report.timestamp, digest.hex(),
        )
        with self._nonce_lock:
            signed = build_report_tx(
                self.rpc, self.keypair, self.contract_address, report, signature,
                gas_limit=self.gas_limit, chain_id=self.chain_id,
            )
            return submit_report_tx(self.rpc, signed)

    def submit_and_confirm(self, report, cancel_event=None, timeout=None):
        """Submit a report and poll until it reaches a terminal outcome."""
        tx_hash = self.submit(report)
        return self.poller.wait(tx_hash, cancel_event=cancel_event, timeout=timeout)

    def check(self, tx_hash):
        """Look up a previously submitted (e.g. timed-out) transaction once."""
        return self.poller.check(tx_hash)

    def submit_many(self, reports, max_workers=4, cancel_event=None):
        """Submit and confirm reports concurrently.

        Each report runs its own pipeline; broadcasts are serialised by the
        nonce lock, polling runs in parallel.

        Returns:
            A list of (report, TxOutcome or exception) in input order. A
            report that fails never stops the others from being collected.
        """
        def _run(report):
            return self.submit_and_confirm(report, cancel_event=cancel_event)

        reports = list(reports)
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = [pool.submit(_run, report) for report in reports]
            results = []
            for report, future in zip(reports, futures):
                try:
                    results.append((report, future.result()))
                except SubmitterError as exc:
                    logger.error(
                        "Report server=%s timestamp=%s failed: %s",
                        report.server_id, report.timestamp, exc,
                    )
                    results.append((report, exc))
                except Exception as exc:
                    logger.exception(
                        "Report server=%s timestamp=%s failed unexpectedly",
                        report.server_id, report.timestamp,
                    )
                    results.append((report, exc))
        return results

