# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.poller module

Confirmation polling for a submitted report transaction.

    submitted --(receipt, status 1)--> confirmed
              --(receipt, status 0)--> reverted
              --(no receipt after max_attempts, timeout, cancel)--> timed_out
              --(RPC failure)--> rpc_error

Every outcome except pending is terminal. A reverted transaction is never
polled again: it is mined and will not succeed without new parameters.
A timed-out one may still be mined later; use ConfirmationPoller.check() to
look again.

The poller holds configuration only. Counters live on the stack of each
wait() call, so one poller can serve many threads at once.
"""

import logging
import threading
import time
from collections import namedtuple

from report_submitter.errors import RpcError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_POLL_INTERVAL = 2.0  # seconds

PENDING = "pending"
CONFIRMED = "confirmed"
REVERTED = "reverted"
TIMED_OUT = "timed_out"
RPC_ERROR = "rpc_error"

TERMINAL_STATUSES = frozenset((CONFIRMED, REVERTED, TIMED_OUT, RPC_ERROR))


class TxOutcome(namedtuple(
    "TxOutcome",
    ["status", "tx_hash", "block_number", "gas_used", "attempts", "detail"],
)):
    """Result of submitting and polling a report transaction."""

    __slots__ = ()

    @classmethod
    def pending(cls, tx_hash):
        return cls(PENDING, tx_hash, None, None, 0, None)

    @classmethod
    def confirmed(cls, tx_hash, block_number, gas_used, attempts=0):
        return cls(CONFIRMED, tx_hash, block_number, gas_used, attempts, None)

    @classmethod
    def reverted(cls, tx_hash, block_number, gas_used, attempts=0):
        return cls(REVERTED, tx_hash, block_number, gas_used, attempts, None)

    @classmethod
    def timed_out(cls, tx_hash, attempts, detail=None):
        return cls(TIMED_OUT, tx_hash, None, None, attempts, detail)

    @classmethod
    def rpc_error(cls, tx_hash, detail, attempts=0):
        return cls(RPC_ERROR, tx_hash, None, None, attempts, detail)

    @property
    def terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def ok(self):
        return self.status == CONFIRMED


def _field(receipt, name):
    try:
        return receipt[name]
    except (KeyError, TypeError):
        return getattr(receipt, name, None)


def _as_int(value):
    """Receipt numbers arrive as ints from web3 or as 0x strings from raw JSON."""
    if isinstance(value, str):
        return int(value, 16)
    return value


def classify_receipt(tx_hash, receipt, attempts=0):
    """Map a mined receipt onto a confirmed or reverted TxOutcome."""
    status = _as_int(_field(receipt, "status"))
    block_number = _as_int(_field(receipt, "blockNumber"))
    gas_used = _as_int(_field(receipt, "gasUsed"))
    if status == 1:
        return TxOutcome.confirmed(tx_hash, block_number, gas_used, attempts)
    # status 0, or anything else a node might return, is not a success
    return TxOutcome.reverted(tx_hash, block_number, gas_used, attempts)


class ConfirmationPoller:
    """Polls for a transaction receipt at a fixed interval.

    Args:
        rpc: object with get_transaction_receipt(tx_hash) returning a
             receipt or None (ReportRPC in production).
        max_attempts: receipt queries before giving up.
        interval: seconds between queries. No backoff.
    """

    def __init__(self, rpc, max_attempts=DEFAULT_MAX_ATTEMPTS,
                 interval=DEFAULT_POLL_INTERVAL):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self.rpc = rpc
        self.max_attempts = max_attempts
        self.interval = interval

    def check(self, tx_hash):
        """Query once. Returns pending when there is no receipt yet."""
        try:
            receipt = self.rpc.get_transaction_receipt(tx_hash)
        except RpcError as exc:
            return TxOutcome.rpc_error(tx_hash, str(exc), attempts=1)
        if receipt is None:
            return TxOutcome.pending(tx_hash)
        return classify_receipt(tx_hash, receipt, attempts=1)

    def wait(self, tx_hash, cancel_event=None, timeout=None):
        """Block until tx_hash is mined or polling gives up.

        Args:
            tx_hash: transaction hash to poll.
            cancel_event: optional threading.Event; setting it stops the
                wait at the next sleep with a timed_out outcome.
            timeout: optional caller deadline in seconds, applied on top of
                max_attempts.

        Returns:
            A terminal TxOutcome.
        """
        if cancel_event is None:
            cancel_event = threading.Event()
        deadline = None if timeout is None else time.monotonic() + timeout

        attempts = 0
        while attempts < self.max_attempts:
            if cancel_event.is_set():
                return self._give_up(tx_hash, attempts, "cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                return self._give_up(tx_hash, attempts, "deadline exceeded")

            attempts += 1
            try:
                receipt = self.rpc.get_transaction_receipt(tx_hash)
            except RpcError as exc:
                logger.warning(
                    "Receipt query for %s failed on attempt %d: %s",
                    tx_hash, attempts, exc,
                )
                return TxOutcome.rpc_error(tx_hash, str(exc), attempts)

            if receipt is not None:
                outcome = classify_receipt(tx_hash, receipt, attempts)
                if outcome.status == CONFIRMED:
                    logger.info(
                        "Transaction %s confirmed in block %s, gas used %s",
                        tx_hash, outcome.block_number, outcome.gas_used,
                    )
                else:
                    logger.warning(
                        "Transaction %s reverted in block %s, gas used %s",
                        tx_hash, outcome.block_number, outcome.gas_used,
                    )
                return outcome

            if attempts >= self.max_attempts:
                break
            wait_for = self.interval
            if deadline is not None:
                wait_for = min(wait_for, max(deadline - time.monotonic(), 0.0))
            if cancel_event.wait(timeout=wait_for):
                return self._give_up(tx_hash, attempts, "cancelled")

        return self._give_up(
            tx_hash, attempts, f"no receipt after {attempts} attempts"
        )

    def _give_up(self, tx_hash, attempts, reason):
        logger.warning(
            "Transaction %s not confirmed (%s); it may still be mined, "
            "re-check before resubmitting", tx_hash, reason,
        )
        return TxOutcome.timed_out(tx_hash, attempts, reason)
