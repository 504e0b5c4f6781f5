#!/usr/bin/env python3
"""
Depositor CLI - builds, co-signs and verifies a Taproot deposit

Spends a funding UTXO locked to the operator's key into a deposit output
whose script is chosen by a remote signer, after obtaining and verifying a
presigned spend of that output to a fallback address.
"""

import argparse
import json
import logging
import sys

from depositor.constants import NETWORKS
from depositor.deposit import DepositConfig
from depositor.errors import DepositorError
from depositor.setup import setup
from depositor.workflow import KeyInfo, run


def build_parser():
    parser = argparse.ArgumentParser(
        description="Depositor - Taproot deposit with a presigned fallback spend"
    )
    parser.add_argument("--prevout", help="Funding UTXO as txid:vout")
    parser.add_argument("--prev-amt", dest="prev_amt", help="Value of the funding UTXO (sat)")
    parser.add_argument(
        "--fallback-addr", dest="fallback_addr", help="Address the presigned spend may pay to"
    )
    parser.add_argument(
        "--output-amt", dest="output_amt", help="Value sent into the deposit output (sat)"
    )
    parser.add_argument("--change-addr", dest="change_addr", help="Change destination")
    parser.add_argument("--change-amt", dest="change_amt", help="Change value (sat)")
    parser.add_argument("--client-url", dest="client_url", help="Signer endpoint as host:port")
    parser.add_argument(
        "--priv-key", dest="priv_key", help='Secret key as hex or WIF, or "new" to generate one'
    )
    parser.add_argument(
        "--network", choices=NETWORKS, default="signet", help="Bitcoin network to use"
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logs"
    )
    return parser


def print_json(title, obj):
    print(f"{title}:")
    print(json.dumps(obj, indent=2))


def print_result(result):
    """Prints a successful run to standard output"""

    if isinstance(result, KeyInfo):
        print(f"Secret key: {result.secret_hex}")
        print(f"Internal key: {result.internal_key_hex}")
        print(f"Address: {result.address}")
        return

    print(f"Funding TxOut: {result.funding_txout.to_hex()}")
    print_json("Presigned Details", result.spend_tx.to_dict())
    print(f"Raw presigned Transaction: {result.spend_tx.to_hex()}")
    print_json("Deposit PSBT", result.deposit_psbt.to_dict())
    print_json("Deposit Details", result.deposit_tx.to_dict())
    print(f"Raw deposit Transaction: {result.deposit_tx.to_hex()}")
    print(f"Deposit verification: {result.deposit_verification}")
    print(f"Pre-signed verification: {result.spend_verification}")


def main(argv=None):
    """Main entry point for the CLI"""
    args = build_parser().parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level, stream=sys.stderr, format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    setup(args.network)

    config = DepositConfig(
        prevout=args.prevout,
        prev_amt=args.prev_amt,
        fallback_addr=args.fallback_addr,
        output_amt=args.output_amt,
        change_addr=args.change_addr,
        change_amt=args.change_amt,
        client_url=args.client_url,
        priv_key=args.priv_key,
        network=args.network,
    )

    try:
        result = run(config)
    except DepositorError as e:
        print(e.describe(), file=sys.stderr)
        return 1

    print_result(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
