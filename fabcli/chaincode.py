from __future__ import annotations

import logging
import random
from pathlib import Path

from .action import Action, on_stop_signal
from .argexpr import ArgExpander
from .config import parse_arg_sets
from .coordinator import InvocationConfig, InvocationCoordinator
from .errors import ConfigError, InvocationAbortedError
from .models import Summary
from .progress import FileProgressPublisher, PrinterProgressPublisher, ProgressPublisher

logger = logging.getLogger(__name__)


def run_invoke(action: Action) -> int:
    return _run(action, query=False)


def run_query(action: Action) -> int:
    return _run(action, query=True)


def build_invocation_config(action: Action) -> InvocationConfig:
    config = action.config
    if not config.chaincode_id:
        raise ConfigError("must specify the chaincode ID")
    return InvocationConfig(
        chaincode_id=config.chaincode_id,
        arg_sets=parse_arg_sets(config.args),
        iterations=config.iterations,
        concurrency=config.concurrency,
        max_attempts=config.max_attempts,
        resubmit_delay_s=config.resubmit_delay_s,
        timeout_s=config.timeout_s,
        verbose=config.verbose,
        payload_only=config.payload_only,
        targets=action.peers(),
    )


def _run(action: Action, *, query: bool) -> int:
    config = action.config
    invocation = build_invocation_config(action)
    client = action.channel_client()

    publishers: list[ProgressPublisher] = [PrinterProgressPublisher(action.printer)]
    if config.progress_file:
        publishers.append(FileProgressPublisher(Path(config.progress_file)))

    coordinator = InvocationCoordinator(
        client,
        action.printer,
        expander=ArgExpander(random.Random(config.seed)),
        publishers=publishers,
        progress_interval_s=config.progress_interval_s,
    )

    with on_stop_signal(coordinator.abort):
        try:
            summary = coordinator.query(invocation) if query else coordinator.invoke(invocation)
        except InvocationAbortedError as exc:
            logger.warning("%s", exc)
            action.printer.print("Run aborted: %s", exc)
            return 1
    return _exit_code(summary)


def _exit_code(summary: Summary) -> int:
    if summary.errors:
        logger.error("%d of %d task(s) failed; first error: %s", len(summary.errors), summary.invocation_count, summary.first_error)
        return 1
    return 0
