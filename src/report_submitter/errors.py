# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.errors module

Exception taxonomy for the encode-sign-submit pipeline.

Every error carries the pipeline stage it was raised from. The raw cause,
when there is one, is chained with ``raise ... from exc``. Nothing in the
core retries on its own; the caller decides what to do with each type.
"""


class SubmitterError(Exception):
    """Base class for all report submission failures."""

    stage = "unknown"

    def __init__(self, message, stage=None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self):
        return f"[{self.stage}] {super().__str__()}"


class ConstructionError(SubmitterError, ValueError):
    """Malformed report or key material. Fatal, never retried."""

    stage = "construct"


class SigningError(SubmitterError):
    """No recovery id reproduces the signer's public key.

    An internal consistency fault: the signature and key pair disagree.
    """

    stage = "sign"


class RpcError(SubmitterError):
    """Transport or node failure on an RPC call.

    Safe to retry from the caller with a fresh nonce and gas price.
    """

    stage = "rpc"


class SubmissionRejected(SubmitterError):
    """The node refused the transaction before broadcast.

    Not retryable with identical arguments.
    """

    stage = "submit"

    def __init__(self, reason, stage=None):
        super().__init__(f"transaction rejected: {reason}", stage=stage)
        self.reason = reason
