# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.transactions module

Transaction construction and submission for the report contract.

The contract entry point is

    submitReport(string,string,uint256,uint256[6],int256[2],bytes)

where the trailing bytes argument is the 65-byte personal signature over
the payload hash. The signature travels as a dynamic `bytes` value with its
own length word and padding, unlike the fixed-layout payload it signs.

The transaction envelope itself is a legacy gasPrice transaction signed
with the same account under EIP-155. That is a separate signature from the
one embedded in the call data.
"""

import logging

from eth_abi import encode as abi_encode
from web3 import Web3

from report_submitter.encoding import PAYLOAD_TYPES
from report_submitter.errors import ConstructionError
from report_submitter.hashing import keccak256
from report_submitter.signing import EthSignature

logger = logging.getLogger(__name__)

SUBMIT_REPORT_SIGNATURE = "submitReport(string,string,uint256,uint256[6],int256[2],bytes)"
SUBMIT_REPORT_TYPES = PAYLOAD_TYPES + ["bytes"]
DEFAULT_GAS_LIMIT = 500_000  # fixed upper bound, no estimation

SUBMIT_REPORT_ABI = [
    {
        "type": "function",
        "name": "submitReport",
        "inputs": [
            {"name": "serverId", "type": "string"},
            {"name": "userCode", "type": "string"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "sensors", "type": "uint256[6]"},
            {"name": "location", "type": "int256[2]"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
]


def function_selector(signature_text):
    """First 4 bytes of keccak256 of a canonical function signature."""
    return keccak256(signature_text.encode("ascii"))[:4]


SUBMIT_REPORT_SELECTOR = function_selector(SUBMIT_REPORT_SIGNATURE)


def _signature_bytes(signature):
    if isinstance(signature, EthSignature):
        return signature.to_bytes()
    # validates length and v
    return EthSignature.from_bytes(signature).to_bytes()


def encode_submit_call(report, signature):
    """Call data for submitReport(report..., signature).

    Args:
        report: Report to submit.
        signature: EthSignature (or its 65 raw bytes) over the report's
            payload hash.

    Returns:
        selector ++ ABI-encoded arguments, as bytes.
    """
    args = report.as_abi_args() + [_signature_bytes(signature)]
    return SUBMIT_REPORT_SELECTOR + abi_encode(SUBMIT_REPORT_TYPES, args)


def build_report_tx(
    rpc, keypair, contract_address, report, signature,
    gas_limit=DEFAULT_GAS_LIMIT, chain_id=None,
):
    """Build and sign a submitReport transaction.

    Fetches the account nonce ("latest") and the current gas price from the
    node. Callers sharing one account between concurrent submissions must
    serialise this call together with submit_report_tx(), otherwise two
    transactions can be built with the same nonce.

    Args:
        rpc: ReportRPC (or anything with the same methods).
        keypair: KeyPair of the reporting account (pays gas, signs envelope).
        contract_address: destination contract, 20-byte hex.
        report: Report to submit.
        signature: personal signature over the report's payload hash.
        gas_limit: fixed gas limit for the call.
        chain_id: EIP-155 chain id; asked from the node when None.

    Returns:
        A signed transaction (eth_account SignedTransaction).

    Raises:
        ConstructionError: the contract address is malformed.
        RpcError: nonce, gas price or chain id could not be fetched.
    """
    if not Web3.is_address(contract_address):
        raise ConstructionError(f"invalid contract address {contract_address!r}")

    data = encode_submit_call(report, signature)
    nonce = rpc.get_transaction_count(keypair.address, "latest")
    gas_price = rpc.get_gas_price()
    if chain_id is None:
        chain_id = rpc.get_chain_id()

    tx = {
        "nonce": nonce,
        "gasPrice": gas_price,
        "gas": gas_limit,
        "to": Web3.to_checksum_address(contract_address),
        "value": 0,
        "data": data,
        "chainId": chain_id,
    }
    logger.debug(
        "Built submitReport tx nonce=%d gasPrice=%d gas=%d chainId=%d",
        nonce, gas_price, gas_limit, chain_id,
    )
    return keypair.account.sign_transaction(tx)


def submit_report_tx(rpc, signed_tx):
    """Broadcast a signed transaction and return its hash (0x hex)."""
    tx_hash = rpc.send_raw_transaction(signed_tx.raw_transaction)
    logger.info("Broadcast report tx %s", tx_hash)
    return tx_hash
