# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.hashing module

The single hash primitive used by the pipeline: original Keccak-256, as used
by the EVM. This is not NIST SHA3-256 (hashlib.sha3_256), whose padding
differs and yields a different digest for the same input.
"""

from web3 import Web3

DIGEST_SIZE = 32


def keccak256(data):
    """Return the 32-byte Keccak-256 digest of data (bytes)."""
    return bytes(Web3.keccak(primitive=bytes(data)))
