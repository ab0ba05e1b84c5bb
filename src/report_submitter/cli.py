# -*- encoding: utf-8 -*-
"""
Report Submitter
report_submitter.cli module

Command-line interface for the report submitter.

Commands:
  report-submitter info    - Show account address and configuration
  report-submitter sign    - Print the payload hash and personal signature
  report-submitter submit  - Sign, submit and wait for confirmation
"""

import argparse
import logging
import sys
import time

from report_submitter.encoding import encode_payload
from report_submitter.errors import SubmitterError
from report_submitter.report import Report
from report_submitter.service import ReportSubmitter, load_config
from report_submitter.signing import KeyPair, recover_signer, sign_report


def _report_from_args(args):
    timestamp = args.timestamp
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    return Report(
        server_id=args.server_id,
        user_code=args.user_code,
        timestamp=timestamp,
        sensors=args.sensors,
        location=args.location,
    )


def cmd_info(args):
    """Show account address and configuration."""
    config = load_config()

    address = ""
    if config["ETH_PRIVATE_KEY"]:
        address = KeyPair.from_hex(config["ETH_PRIVATE_KEY"]).address

    print(f"Account:           {address or '(no ETH_PRIVATE_KEY set)'}")
    print(f"Contract address:  {config['ETH_CONTRACT_ADDRESS'] or '(not set)'}")
    print(f"Chain ID:          {config['ETH_CHAIN_ID'] or '(from node)'}")
    print(f"RPC URL:           {config['ETH_RPC_URL']}")
    print(f"Gas limit:         {config['GAS_LIMIT']}")
    print(f"Poll:              {config['POLL_ATTEMPTS']} x {config['POLL_INTERVAL']}s")
    return 0


def cmd_sign(args):
    """Sign a report offline and print what would be submitted."""
    config = load_config()
    if not config["ETH_PRIVATE_KEY"]:
        print("Error: ETH_PRIVATE_KEY not set", file=sys.stderr)
        return 1

    keypair = KeyPair.from_hex(config["ETH_PRIVATE_KEY"])
    report = _report_from_args(args)
    digest, signature = sign_report(report, keypair)

    print(f"Account:       {keypair.address}")
    print(f"Payload:       0x{encode_payload(report).hex()}")
    print(f"Payload hash:  0x{digest.hex()}")
    print(f"Signature:     {signature.hex()}")
    print(f"Recovers to:   {recover_signer(digest, signature)}")
    return 0


def cmd_submit(args):
    """Sign, submit, and optionally wait for the receipt."""
    config = load_config()
    submitter = ReportSubmitter.from_config(config)
    report = _report_from_args(args)

    print(f"Account:   {submitter.keypair.address}")
    print(f"Contract:  {submitter.contract_address}")
    print(f"Sensors:   {list(report.sensors)}")

    tx_hash = submitter.submit(report)
    print(f"Tx hash:   {tx_hash}")
    if args.no_wait:
        return 0

    outcome = submitter.poller.wait(tx_hash, timeout=args.timeout)
    print(f"Status:    {outcome.status}")
    if outcome.block_number is not None:
        print(f"Block:     {outcome.block_number}")
        print(f"Gas used:  {outcome.gas_used}")
    if outcome.detail:
        print(f"Detail:    {outcome.detail}")
    return 0 if outcome.ok else 1


def _add_report_arguments(parser):
    parser.add_argument("--server-id", required=True, help="Server identifier")
    parser.add_argument("--user-code", required=True, help="User code")
    parser.add_argument(
        "--timestamp", type=int, default=None,
        help="Report timestamp (default: now, in milliseconds)",
    )
    parser.add_argument(
        "--sensors", required=True, type=int, nargs="+",
        help="Six unsigned sensor readings",
    )
    parser.add_argument(
        "--location", required=True, type=int, nargs="+",
        help="Two signed location coordinates",
    )


def main(argv=None):
    """Entry point for the report-submitter CLI."""
    parser = argparse.ArgumentParser(
        prog="report-submitter",
        description="Sign and submit sensor reports to the report contract",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    info_parser = subparsers.add_parser("info", help="Show account and configuration")
    info_parser.set_defaults(func=cmd_info)

    sign_parser = subparsers.add_parser(
        "sign", help="Print payload hash and signature without submitting"
    )
    _add_report_arguments(sign_parser)
    sign_parser.set_defaults(func=cmd_sign)

    submit_parser = subparsers.add_parser("submit", help="Submit a report")
    _add_report_arguments(submit_parser)
    submit_parser.add_argument(
        "--no-wait", action="store_true", help="Do not poll for the receipt"
    )
    submit_parser.add_argument(
        "--timeout", type=float, default=None,
        help="Stop polling after this many seconds",
    )
    submit_parser.set_defaults(func=cmd_submit)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    try:
        return args.func(args)
    except SubmitterError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
