# -*- encoding: utf-8 -*-
"""
Report Submitter Test Configuration

Shared pytest fixtures for the report submitter test suite.

Signing and encoding run on the real eth_keys / eth_abi / eth_account
stack. The node is replaced by FakeRPC, which implements the same five
calls as ReportRPC and records what the pipeline asked for.
"""

import threading
from collections import Counter

import pytest
from web3 import Web3

from report_submitter.hashing import keccak256
from report_submitter.report import Report
from report_submitter.signing import KeyPair

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# anvil's deterministic account #0
ANVIL_DEPLOYER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ANVIL_DEPLOYER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

# anvil's deterministic account #1
ANVIL_REPORTER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
ANVIL_REPORTER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

CONTRACT_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
CHAIN_ID = 31337

SAMPLE_FIELDS = {
    "server_id": "linux-0000-0008",
    "user_code": "abc8-ece8-acde-12de",
    "timestamp": 1700000000,
    "sensors": [12, 270, 13, 633, 633, 71],
    "location": [1132344449, 362311116],
}


def make_receipt(status=1, block_number=1234, gas_used=87_654):
    """A receipt shaped like web3's AttributeDict (plain dict here)."""
    return {"status": status, "blockNumber": block_number, "gasUsed": gas_used}


# ---------------------------------------------------------------------------
# Fake node
# ---------------------------------------------------------------------------

class FakeRPC:
    """In-memory stand-in for ReportRPC.

    receipts maps tx_hash -> list of scripted responses (None, a receipt,
    or an exception to raise). Responses are consumed in order and the last
    one repeats. Hashes without a script get default_receipt.
    """

    def __init__(self, nonce=0, gas_price=2_000_000_000, chain_id=CHAIN_ID,
                 receipts=None, default_receipt=None, send_error=None):
        self.nonce = nonce
        self.gas_price = gas_price
        self.chain_id = chain_id
        self.receipts = receipts if receipts is not None else {}
        self.default_receipt = default_receipt
        self.send_error = send_error
        self.sent = []
        self.issued_nonces = []
        self.nonce_requests = []
        self.receipt_queries = Counter()
        self._lock = threading.Lock()

    def get_transaction_count(self, address, block="latest"):
        with self._lock:
            self.nonce_requests.append((address, block))
            self.issued_nonces.append(self.nonce)
            return self.nonce

    def get_gas_price(self):
        return self.gas_price

    def get_chain_id(self):
        return self.chain_id

    def send_raw_transaction(self, raw_tx):
        if self.send_error is not None:
            raise self.send_error
        with self._lock:
            self.sent.append(bytes(raw_tx))
            self.nonce += 1
        return Web3.to_hex(keccak256(raw_tx))

    def get_transaction_receipt(self, tx_hash):
        with self._lock:
            self.receipt_queries[tx_hash] += 1
            script = self.receipts.get(tx_hash)
            if script is None:
                item = self.default_receipt
            elif len(script) > 1:
                item = script.pop(0)
            else:
                item = script[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def total_receipt_queries(self):
        return sum(self.receipt_queries.values())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def keypair():
    """KeyPair for anvil account #1, the reporting account."""
    return KeyPair.from_hex(ANVIL_REPORTER_KEY)


@pytest.fixture(scope="session")
def other_keypair():
    """KeyPair for anvil account #0, never the configured reporter."""
    return KeyPair.from_hex(ANVIL_DEPLOYER_KEY)


@pytest.fixture
def sample_report():
    """The reference report behind the golden payload."""
    return Report(**SAMPLE_FIELDS)

