from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import Callable, Iterator, Optional

from .config import CliConfig
from .errors import ConfigError
from .printer import Printer
from .sdk import ChannelClient, EventService, Peer, SdkProvider, load_provider

logger = logging.getLogger(__name__)


class Action:
    """
    Shared state of one CLI command: configuration, printer and SDK provider.

    The provider is loaded lazily so that argument errors are reported before
    any connection to the network is made.
    """

    def __init__(self, config: CliConfig, *, provider: Optional[SdkProvider] = None, printer: Optional[Printer] = None) -> None:
        self.config = config
        self.printer = printer or Printer(config.print_format, config.writer, base64_encode=config.base64)
        self._provider = provider

    @property
    def provider(self) -> SdkProvider:
        if self._provider is None:
            if not self.config.sdk_provider:
                raise ConfigError("no SDK provider configured; use --sdk-provider or the FABCLI_SDK_PROVIDER variable")
            logger.debug("Loading SDK provider %s", self.config.sdk_provider)
            self._provider = load_provider(self.config.sdk_provider, self.config.sdk_args)
        return self._provider

    def channel_client(self) -> ChannelClient:
        return self.provider.channel_client(self.config.channel_id, org_ids=self.config.org_ids)

    def peers(self) -> list[Peer]:
        if not self.config.peer_urls:
            return []
        return self.provider.peers(self.config.peer_urls)

    def event_service(self) -> EventService:
        return self.provider.event_service(self.config.channel_id)

    def close(self) -> None:
        if self._provider is not None:
            self._provider.close()

    def __enter__(self) -> "Action":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@contextlib.contextmanager
def on_stop_signal(callback: Callable[[], None]) -> Iterator[None]:
    """Runs ``callback`` on SIGINT/SIGTERM while the block executes, then restores the old handlers."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _stop(signum: int, _frame: object) -> None:
        logger.info("Received signal %s; stopping.", signum)
        callback()

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
