"""
diffprop CLI - Command-line interface for (differential) proportionality.

Commands:
    diffprop propd   - Differential proportionality between two groups
    diffprop propr   - Proportionality between every pair of features
"""

import argparse
import logging
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for diffprop."""
    parser = argparse.ArgumentParser(
        prog="diffprop",
        description="Proportionality and differential proportionality for count data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  propd   Differential proportionality (theta) between two groups, with FDR
  propr   Proportionality (rho, phi, phs, cor) between every feature pair

Examples:
  diffprop propd --counts counts.csv --groups groups.csv --permutations 200 --seed 1
  diffprop propd --config run.yaml --moderated
  diffprop propr --counts counts.csv --metric rho --cutoff 0.8
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug-level logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from diffprop.cli import propd, propr
    propd.register_parser(subparsers)
    propr.register_parser(subparsers)

    raw_args = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(raw_args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    return parsed_args.func(parsed_args, raw_args)


if __name__ == "__main__":
    sys.exit(main())
