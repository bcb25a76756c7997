from __future__ import annotations

import argparse
import logging
from typing import Callable, Optional

from . import __version__
from .action import Action
from .chaincode import run_invoke, run_query
from .config import load_config
from .listener import EventKind, run_listen
from .logging_utils import resolve_log_level
from .printer import Printer, WriterType

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def _common_parser() -> argparse.ArgumentParser:
    # Every default is None so that unset flags do not override the config file.
    parser = argparse.ArgumentParser(add_help=False)
    group = parser.add_argument_group("global options")
    group.add_argument("--config", default=None, help="YAML configuration file.")
    group.add_argument(
        "--sdk-provider",
        dest="sdk_provider",
        default=None,
        help="SDK provider as 'module:Class' or '/path/to/file.py[:Class]'.",
    )
    group.add_argument(
        "--logging-level",
        dest="logging_level",
        default=None,
        help="Logging level: CRITICAL, ERROR, WARNING, NOTICE, INFO or DEBUG (default: ERROR).",
    )
    group.add_argument(
        "--format",
        dest="print_format",
        choices=["display", "json", "raw"],
        default=None,
        help="Output format (default: display).",
    )
    group.add_argument(
        "--writer",
        choices=["stdout", "stderr", "log"],
        default=None,
        help="Where output is written (default: stdout).",
    )
    group.add_argument(
        "--base64",
        action="store_const",
        const=True,
        default=None,
        help="Encode payloads as base64.",
    )
    group.add_argument("--progress-file", dest="progress_file", default=None, help="Write progress snapshots to this JSON file.")
    group.add_argument(
        "--progress-interval",
        dest="progress_interval_s",
        type=float,
        default=None,
        help="Seconds between progress reports (default: 3).",
    )
    group.add_argument("--seed", type=int, default=None, help="Seed for $rand() expressions.")
    group.add_argument("--cid", dest="channel_id", default=None, help="Channel ID.")
    group.add_argument("--orgid", dest="org_ids", default=None, help="Comma-separated organization IDs.")
    group.add_argument("--peer", dest="peer_urls", default=None, help="Comma-separated peer URLs to target.")
    group.add_argument("--timeout", dest="timeout_ms", type=int, default=None, help="Timeout in milliseconds (default: 5000).")
    return parser


def _add_chaincode_args(parser: argparse.ArgumentParser, *, invoke: bool) -> None:
    parser.add_argument("--ccid", dest="chaincode_id", default=None, help="Chaincode ID.")
    parser.add_argument(
        "--args",
        default=None,
        help='Chaincode arguments as JSON, e.g. {"Func":"move","Args":["a","b","1"]} or a list of such objects.',
    )
    parser.add_argument("--iterations", type=int, default=None, help="Number of times to run every arg set (default: 1).")
    parser.add_argument("--concurrency", type=int, default=None, help="Number of concurrent requests (default: 1).")
    parser.add_argument("--verbose", action="store_const", const=True, default=None, help="Print every response.")
    parser.add_argument(
        "--payload",
        dest="payload_only",
        action="store_const",
        const=True,
        default=None,
        help="Print only the response payloads.",
    )
    if invoke:
        parser.add_argument("--attempts", dest="max_attempts", type=int, default=None, help="Maximum attempts per invocation (default: 3).")
        parser.add_argument(
            "--resubmitdelay",
            dest="resubmit_delay_ms",
            type=int,
            default=None,
            help="Delay in milliseconds before resubmitting (default: 1000).",
        )


def _add_listen_args(parser: argparse.ArgumentParser, *, count: bool = True) -> None:
    if count:
        parser.add_argument("--count", dest="max_events", type=int, default=None, help="Stop after this many events.")
    parser.add_argument("--duration", dest="duration_s", type=float, default=None, help="Stop after this many seconds.")


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    parser = argparse.ArgumentParser(prog="fabcli", description="Command-line client for a permissioned blockchain network.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    groups = parser.add_subparsers(dest="group", required=True)

    chaincode = groups.add_parser("chaincode", help="Invoke or query chaincode.")
    chaincode_cmds = chaincode.add_subparsers(dest="command", required=True)
    invoke = chaincode_cmds.add_parser("invoke", parents=[common], help="Invoke a chaincode transaction.")
    _add_chaincode_args(invoke, invoke=True)
    invoke.set_defaults(handler=run_invoke)
    query = chaincode_cmds.add_parser("query", parents=[common], help="Query chaincode.")
    _add_chaincode_args(query, invoke=False)
    query.set_defaults(handler=run_query)

    event = groups.add_parser("event", help="Listen for events.")
    event_cmds = event.add_subparsers(dest="command", required=True)

    block = event_cmds.add_parser(EventKind.BLOCK.value, parents=[common], help="Listen for block events.")
    _add_listen_args(block)
    block.set_defaults(handler=_listen_handler(EventKind.BLOCK))

    filtered = event_cmds.add_parser(EventKind.FILTERED_BLOCK.value, parents=[common], help="Listen for filtered block events.")
    _add_listen_args(filtered)
    filtered.set_defaults(handler=_listen_handler(EventKind.FILTERED_BLOCK))

    cc = event_cmds.add_parser(EventKind.CHAINCODE.value, parents=[common], help="Listen for chaincode events.")
    cc.add_argument("--ccid", dest="chaincode_id", default=None, help="Chaincode ID.")
    cc.add_argument("--event", dest="event_filter", default=None, help="Regular expression matching event names (default: .*).")
    _add_listen_args(cc)
    cc.set_defaults(handler=_listen_handler(EventKind.CHAINCODE))

    tx = event_cmds.add_parser(EventKind.TX_STATUS.value, parents=[common], help="Wait for the status event of a transaction.")
    tx.add_argument("--txid", dest="tx_id", default=None, help="Transaction ID.")
    _add_listen_args(tx, count=False)
    tx.set_defaults(handler=_listen_handler(EventKind.TX_STATUS))
    return parser


def _listen_handler(kind: EventKind) -> Callable[[Action], int]:
    def _handler(action: Action) -> int:
        return run_listen(action, kind)

    return _handler


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=resolve_log_level(args.logging_level, logging.ERROR),
        format=LOG_FORMAT,
    )

    printer: Optional[Printer] = None
    try:
        config = load_config(args)
        logging.getLogger().setLevel(resolve_log_level(config.logging_level, logging.ERROR))
        with Action(config) as action:
            printer = action.printer
            return int(args.handler(action))
    except Exception as exc:
        logger.critical("%s %s failed: %s", args.group, args.command, exc)
        logger.debug("Command failure details", exc_info=True)
        (printer or Printer(writer_type=WriterType.STDERR)).print("Error: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
