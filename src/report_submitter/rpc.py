# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.rpc module

JSON-RPC access for the submitter, on top of web3.py.

ReportRPC exposes exactly the four node calls the pipeline needs (plus the
chain id for EIP-155 signing) and turns web3/transport exceptions into the
package's RpcError / SubmissionRejected. It never retries.

MultiRPCProvider rotates between several endpoints with exponential backoff
on the failing ones. ReportRPC reports failures to it so that the *next*
call, made by whoever decides to retry, goes to a healthy node.
"""

import logging
import threading
import time

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound, Web3Exception, Web3RPCError

from report_submitter.errors import RpcError, SubmissionRejected

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0     # seconds
DEFAULT_BACKOFF_FACTOR = 2.0

TRANSPORT_ERRORS = (Web3Exception, requests.exceptions.RequestException, OSError)


class MultiRPCProvider:
    """A ring of Web3 HTTP endpoints with per-endpoint backoff.

    Failures and successes are reported against the index returned by
    acquire(), so a slow call that fails after another caller already
    rotated away blames the endpoint it actually used.

    Usage:
        provider = MultiRPCProvider(["http://rpc1:8545", "http://rpc2:8545"])
        rpc = ReportRPC(provider=provider)
    """

    def __init__(
        self,
        urls,
        initial_backoff=DEFAULT_INITIAL_BACKOFF,
        max_backoff=DEFAULT_MAX_BACKOFF,
        backoff_factor=DEFAULT_BACKOFF_FACTOR,
    ):
        if not urls:
            raise ValueError("At least one RPC URL is required")

        self._urls = list(urls)
        self._instances = [Web3(Web3.HTTPProvider(url)) for url in self._urls]
        self._current = 0
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._backoff_factor = backoff_factor
        self._backoffs = [initial_backoff] * len(self._urls)
        self._blocked_until = [0.0] * len(self._urls)
        self._lock = threading.Lock()

    def acquire(self):
        """The (index, Web3) pair for the active endpoint."""
        with self._lock:
            return self._current, self._instances[self._current]

    def get_web3(self):
        """The Web3 instance for the active endpoint."""
        return self.acquire()[1]

    def report_failure(self, idx=None):
        """Back off endpoint idx (the active one when None).

        Rotation only happens when idx is still the active endpoint.
        """
        with self._lock:
            if idx is None:
                idx = self._current
            backoff = self._backoffs[idx]
            self._blocked_until[idx] = time.monotonic() + backoff
            self._backoffs[idx] = min(backoff * self._backoff_factor, self._max_backoff)
            logger.warning(
                "RPC endpoint %s failed, backing off for %.1fs", self._urls[idx], backoff
            )
            if idx != self._current:
                return self._instances[self._current]
            return self._rotate()

    def report_success(self, idx=None):
        with self._lock:
            if idx is None:
                idx = self._current
            self._backoffs[idx] = self._initial_backoff
            self._blocked_until[idx] = 0.0

    def _rotate(self):
        # caller holds self._lock
        now = time.monotonic()
        n = len(self._urls)
        for offset in range(1, n + 1):
            candidate = (self._current + offset) % n
            if self._blocked_until[candidate] <= now:
                self._current = candidate
                logger.info("Switched to RPC endpoint %s", self._urls[candidate])
                return self._instances[candidate]

        # everything is backing off: settle on the endpoint that frees up first
        soonest = min(range(n), key=self._blocked_until.__getitem__)
        self._current = soonest
        logger.warning(
            "All RPC endpoints backing off, using %s (free in %.1fs)",
            self._urls[soonest],
            max(self._blocked_until[soonest] - now, 0.0),
        )
        return self._instances[soonest]

    @property
    def current_url(self):
        return self._urls[self._current]

    @property
    def endpoint_count(self):
        return len(self._urls)


class ReportRPC:
    """The node calls used by the submit and poll stages.

    Args:
        w3: a Web3 instance. Ignored when provider is given.
        provider: optional MultiRPCProvider for endpoint failover.
    """

    def __init__(self, w3=None, provider=None):
        if w3 is None and provider is None:
            raise ValueError("ReportRPC needs a Web3 instance or a provider")
        self._w3 = w3
        self._provider = provider

    @property
    def w3(self):
        if self._provider is not None:
            return self._provider.get_web3()
        return self._w3

    def _endpoint(self):
        if self._provider is not None:
            return self._provider.acquire()
        return None, self._w3

    def _failed(self, idx):
        if self._provider is not None:
            self._provider.report_failure(idx)

    def _succeeded(self, idx):
        if self._provider is not None:
            self._provider.report_success(idx)

    def _call(self, name, fn):
        """Run fn(w3) against one endpoint and report the outcome for it."""
        idx, w3 = self._endpoint()
        try:
            result = fn(w3)
        except TRANSPORT_ERRORS as exc:
            self._failed(idx)
            raise RpcError(f"{name} failed: {exc}") from exc
        self._succeeded(idx)
        return result

    def get_transaction_count(self, address, block="latest"):
        return self._call(
            "eth_getTransactionCount",
            lambda w3: w3.eth.get_transaction_count(address, block),
        )

    def get_gas_price(self):
        return self._call("eth_gasPrice", lambda w3: w3.eth.gas_price)

    def get_chain_id(self):
        return self._call("eth_chainId", lambda w3: w3.eth.chain_id)

    def send_raw_transaction(self, raw_tx):
        """Broadcast a signed transaction.

        Returns:
            The transaction hash as a 0x-prefixed hex string.

        Raises:
            SubmissionRejected: the node answered with a JSON-RPC error
                (bad nonce, underpriced, insufficient funds, ...).
            RpcError: the node could not be reached.
        """
        idx, w3 = self._endpoint()
        try:
            tx_hash = w3.eth.send_raw_transaction(raw_tx)
        except Web3RPCError as exc:
            raise SubmissionRejected(getattr(exc, "message", None) or str(exc)) from exc
        except TRANSPORT_ERRORS as exc:
            self._failed(idx)
            raise RpcError(f"eth_sendRawTransaction failed: {exc}") from exc
        self._succeeded(idx)
        return Web3.to_hex(tx_hash)

    def get_transaction_receipt(self, tx_hash):
        """The receipt for tx_hash, or None if it is not mined yet."""
        def _fetch(w3):
            try:
                return w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return self._call("eth_getTransactionReceipt", _fetch)
