# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.encoding module

Canonical ABI encoding of a Report.

The payload is encoded exactly as Solidity's abi.encode(serverId, userCode,
timestamp, sensors, location) and as the JavaScript web3/ethers encoders do:
two dynamic strings (offset word in the head, length word plus right-padded
UTF-8 bytes in the tail), then the uint256 and the two fixed arrays inlined
in the head. The contract re-encodes the same tuple on-chain and recovers
the signer from its hash, so the bytes must match exactly.
"""

from eth_abi import encode as abi_encode

from report_submitter.hashing import keccak256

PAYLOAD_TYPES = ["string", "string", "uint256", "uint256[6]", "int256[2]"]


def encode_payload(report):
    """ABI-encode a Report. Output length is always a multiple of 32."""
    return abi_encode(PAYLOAD_TYPES, report.as_abi_args())


def payload_hash(report):
    """keccak256 of the encoded payload; the digest that gets personal-signed."""
    return keccak256(encode_payload(report))
