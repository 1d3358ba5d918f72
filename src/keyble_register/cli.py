"""CLI entry point for registering users on eQ-3 eqiva smart locks."""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from . import feed
from .client import CONNECT_TIMEOUT, bleak_session_factory
from .registrar import DEFAULT_GRACE_PERIOD, DEFAULT_USER_NAME, Registrar, RegistrarConfig
from .session import SessionFactory

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    if not verbose:
        logging.getLogger("bleak").setLevel(logging.WARNING)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Register users on eQ-3 eqiva Bluetooth smart locks.",
    )
    parser.add_argument(
        "-n", "--user_name", "--user-name",
        dest="user_name",
        type=str,
        default=DEFAULT_USER_NAME,
        help=f'The name of the user to register (default: "{DEFAULT_USER_NAME}")',
    )
    parser.add_argument(
        "-q", "--qr_code_data", "--qr-code-data",
        dest="qr_code_data",
        type=str,
        help="The information encoded in the QR-Code of the key card. "
             "If not provided on the command line, the data will be read "
             "as input lines from STDIN instead",
    )
    parser.add_argument(
        "--grace-period",
        type=float,
        default=DEFAULT_GRACE_PERIOD,
        help="Seconds to wait for pairing mode when --qr_code_data is given "
             f"(default: {DEFAULT_GRACE_PERIOD})",
    )
    parser.add_argument(
        "-t", "--timeout",
        type=float,
        default=CONNECT_TIMEOUT,
        help=f"BLE connection and response timeout in seconds (default: {CONNECT_TIMEOUT})",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


async def register_users(
    args: argparse.Namespace,
    session_factory: Optional[SessionFactory] = None,
    stream=None,
) -> int:
    """
    Register users for the parsed arguments.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    if session_factory is None:
        session_factory = bleak_session_factory(
            timeout=args.timeout,
            response_timeout=args.timeout,
        )

    registrar = Registrar(
        session_factory,
        RegistrarConfig(user_name=args.user_name, grace_period=args.grace_period),
    )
    result = await registrar.run(feed.from_options(args.qr_code_data, stream))

    print()
    if result.success:
        print(f"✓ Registered {len(result.outcomes)} user(s)")
    else:
        print(f"✗ {result.outcomes[-1].error}")
    return result.exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the registration and return the exit code."""
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        return asyncio.run(register_users(args))
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1


def run() -> None:
    """
    Console script entry point.

    bleak does not always release its resources, which can keep the
    interpreter alive after the event loop is gone, so the process is
    terminated explicitly once logs and stdio are flushed.
    """
    code = main()
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


if __name__ == "__main__":
    run()
