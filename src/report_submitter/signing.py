# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.signing module

Ethereum "personal sign" over a 32-byte payload hash.

The contract verifies reports with

    ecrecover(keccak256("\\x19Ethereum Signed Message:\\n32" ++ payloadHash), v, r, s)

which is what web3.eth.accounts.sign() and ethers' signMessage() produce
for a 32-byte message. personal_sign() below is the only place in the
package that builds that digest and signs it; the raw payload hash is never
signed directly.

Signatures are r ++ s ++ v, with s in the lower half of the curve order and
v = recovery id + 27.
"""

import logging
from collections import namedtuple

from eth_account import Account
from eth_keys import keys
from eth_keys.constants import SECPK1_N
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import decode_hex

from report_submitter.encoding import payload_hash as compute_payload_hash
from report_submitter.errors import ConstructionError, SigningError
from report_submitter.hashing import DIGEST_SIZE, keccak256

logger = logging.getLogger(__name__)

PERSONAL_SIGN_PREFIX = b"\x19Ethereum Signed Message:\n32"
SIGNATURE_SIZE = 65
V_OFFSET = 27
RECOVERY_IDS = (0, 1, 2, 3)


class KeyPair:
    """A secp256k1 private key with its derived public key and address.

    Read-only after construction, so it can be shared by concurrent signing
    flows. The private scalar is never included in repr() or logs.
    """

    __slots__ = ("_private_key", "public_key", "address", "account")

    def __init__(self, private_key_bytes):
        if len(private_key_bytes) != 32:
            raise ConstructionError(
                f"private key must be 32 bytes, got {len(private_key_bytes)}"
            )
        scalar = int.from_bytes(private_key_bytes, "big")
        if not 0 < scalar < SECPK1_N:
            raise ConstructionError("private key is outside the secp256k1 range")
        self._private_key = keys.PrivateKey(private_key_bytes)
        self.public_key = self._private_key.public_key
        self.address = self.public_key.to_checksum_address()
        # transaction envelope signing (EIP-155) goes through eth_account
        self.account = Account.from_key(private_key_bytes)

    @classmethod
    def from_hex(cls, private_key_hex):
        """Build a KeyPair from a hex private key, with or without 0x."""
        if not isinstance(private_key_hex, str) or not private_key_hex.strip():
            raise ConstructionError("private key is empty")
        try:
            raw = decode_hex(private_key_hex.strip())
        except ValueError as exc:
            raise ConstructionError("private key is not valid hex") from exc
        return cls(raw)

    def sign_digest(self, digest):
        """Raw ECDSA over a 32-byte digest; returns (r, s)."""
        sig = self._private_key.sign_msg_hash(digest)
        return sig.r, sig.s

    def __repr__(self):
        return f"KeyPair(address={self.address})"


class EthSignature(namedtuple("EthSignature", ["r", "s", "v"])):
    """A 65-byte Ethereum signature. v is always 27 or 28."""

    __slots__ = ()

    def to_bytes(self):
        return (
            self.r.to_bytes(32, "big")
            + self.s.to_bytes(32, "big")
            + bytes([self.v])
        )

    def hex(self):
        return "0x" + self.to_bytes().hex()

    @property
    def recovery_id(self):
        return self.v - V_OFFSET

    @classmethod
    def from_bytes(cls, raw):
        raw = bytes(raw)
        if len(raw) != SIGNATURE_SIZE:
            raise ConstructionError(
                f"signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}"
            )
        v = raw[64]
        if v not in (V_OFFSET, V_OFFSET + 1):
            raise ConstructionError(f"signature v must be 27 or 28, got {v}")
        return cls(
            int.from_bytes(raw[:32], "big"),
            int.from_bytes(raw[32:64], "big"),
            v,
        )


def _check_digest(digest):
    digest = bytes(digest)
    if len(digest) != DIGEST_SIZE:
        raise ConstructionError(
            f"digest must be {DIGEST_SIZE} bytes, got {len(digest)}"
        )
    return digest


def prefixed_digest(payload_hash):
    """keccak256(PERSONAL_SIGN_PREFIX ++ payload_hash)."""
    return keccak256(PERSONAL_SIGN_PREFIX + _check_digest(payload_hash))


def _recover(digest, r, s, recovery_id):
    """Public key for (r, s, recovery_id) over digest, or None."""
    try:
        candidate = keys.Signature(vrs=(recovery_id, r, s))
        return candidate.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError):
        # ids 2 and 3 (r >= n) are not representable; treat as no match
        return None


def find_recovery_id(digest, r, s, public_key):
    """Smallest id in 0..3 whose recovered key equals public_key.

    Raises:
        SigningError: if no candidate matches.
    """
    for recovery_id in RECOVERY_IDS:
        if _recover(digest, r, s, recovery_id) == public_key:
            return recovery_id
    raise SigningError("unable to calculate recovery id for signature")


def personal_sign(payload_hash, keypair):
    """Sign a 32-byte payload hash the way web3.eth.accounts.sign() does.

    Args:
        payload_hash: 32-byte keccak256 of the encoded payload.
        keypair: KeyPair of the reporting account.

    Returns:
        EthSignature with low s and v in {27, 28}.
    """
    digest = prefixed_digest(payload_hash)
    r, s = keypair.sign_digest(digest)
    if s > SECPK1_N // 2:
        s = SECPK1_N - s
    recovery_id = find_recovery_id(digest, r, s, keypair.public_key)
    return EthSignature(r, s, recovery_id + V_OFFSET)


def recover_signer(payload_hash, signature):
    """Recover the signing address the way the contract does.

    Args:
        payload_hash: 32-byte payload hash.
        signature: EthSignature or 65 raw bytes.

    Returns:
        Checksum address, or None if no key can be recovered.
    """
    if not isinstance(signature, EthSignature):
        signature = EthSignature.from_bytes(signature)
    public_key = _recover(
        prefixed_digest(payload_hash), signature.r, signature.s, signature.recovery_id
    )
    if public_key is None:
        return None
    return public_key.to_checksum_address()


def sign_report(report, keypair):
    """Hash and personal-sign a Report.

    Returns:
        tuple of (payload_hash, EthSignature).
    """
    digest = compute_payload_hash(report)
    signature = personal_sign(digest, keypair)
    logger.debug(
        "Signed report %s/%s, payload hash 0x%s",
        report.server_id, report.timestamp, digest.hex(),
    )
    return digest, signature
