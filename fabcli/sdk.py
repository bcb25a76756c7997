from __future__ import annotations

import hashlib
import importlib.util
import logging
import queue
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from importlib import import_module
from pathlib import Path
from typing import Optional, Sequence

from .errors import ConfigError
from .models import ChaincodeRequest, ExecuteResponse

logger = logging.getLogger(__name__)


class Peer(ABC):
    @abstractmethod
    def url(self) -> str:
        raise NotImplementedError

    def msp_id(self) -> str:
        return ""


class ChannelClient(ABC):
    """
    Channel client of the platform SDK.

    Implementations must be safe for concurrent use: one client is shared by
    all workers of a run. ``timeout_s`` is the per-call deadline; a call that
    proposes successfully but sees no commit status in time raises
    ``TimeoutError``.
    """

    @abstractmethod
    def execute(
        self,
        request: ChaincodeRequest,
        *,
        targets: Optional[Sequence[Peer]] = None,
        timeout_s: Optional[float] = None,
    ) -> ExecuteResponse:
        raise NotImplementedError

    @abstractmethod
    def query(
        self,
        request: ChaincodeRequest,
        *,
        targets: Optional[Sequence[Peer]] = None,
        timeout_s: Optional[float] = None,
    ) -> ExecuteResponse:
        raise NotImplementedError


@dataclass(slots=True, frozen=True)
class Registration:
    reg_id: str
    kind: str


class EventService(ABC):
    """Event hub of a channel; every register call returns a handle and the queue events arrive on."""

    @abstractmethod
    def register_block_event(self) -> tuple[Registration, queue.Queue]:
        raise NotImplementedError

    @abstractmethod
    def register_filtered_block_event(self) -> tuple[Registration, queue.Queue]:
        raise NotImplementedError

    @abstractmethod
    def register_chaincode_event(self, chaincode_id: str, event_filter: str) -> tuple[Registration, queue.Queue]:
        raise NotImplementedError

    @abstractmethod
    def register_tx_status_event(self, tx_id: str) -> tuple[Registration, queue.Queue]:
        raise NotImplementedError

    @abstractmethod
    def unregister(self, registration: Registration) -> None:
        raise NotImplementedError


class SdkProvider(ABC):
    def __init__(self, *, provider_args: Optional[dict] = None) -> None:
        self.provider_args = provider_args or {}

    @classmethod
    def name(cls) -> str:
        return cls.__name__

    @abstractmethod
    def channel_client(self, channel_id: str, *, org_ids: Sequence[str] = ()) -> ChannelClient:
        raise NotImplementedError

    @abstractmethod
    def peers(self, urls: Sequence[str]) -> list[Peer]:
        raise NotImplementedError

    def event_service(self, channel_id: str) -> EventService:
        raise NotImplementedError(f"{self.name()} does not provide an event service")

    def close(self) -> None:
        return


class ProviderLoadError(ConfigError):
    """The SDK provider reference could not be resolved to a provider instance."""


@dataclass(slots=True, frozen=True)
class ProviderRef:
    """
    Parsed ``--sdk-provider`` value.

    ``source`` is a dotted module name or a path to a ``.py`` file; without a
    ``class_name`` the source must be a file defining exactly one provider.
    """

    source: str
    class_name: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.source.endswith(".py")

    @classmethod
    def parse(cls, qualname: str) -> "ProviderRef":
        text = (qualname or "").strip()
        source, sep, class_name = text.rpartition(":")
        if not sep:
            source, class_name = text, ""
        if sep and not class_name:
            raise ProviderLoadError(f"SDK provider '{qualname}': class name missing after ':'")
        if not source:
            raise ProviderLoadError("SDK provider reference is empty")
        ref = cls(source=source, class_name=class_name or None)
        if ref.class_name is None and not ref.is_file:
            raise ProviderLoadError(
                f"SDK provider '{qualname}' must be 'package.module:ClassName' or '/path/to/provider.py[:ClassName]'"
            )
        return ref

    def __str__(self) -> str:
        return f"{self.source}:{self.class_name}" if self.class_name else self.source


def _import_provider_file(path: Path):
    resolved = path.expanduser().resolve()
    if not resolved.is_file():
        raise ProviderLoadError(f"SDK provider file not found: {resolved}")

    # Key on the path so that loading the same file twice reuses the module.
    digest = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:16]
    module_name = f"fabcli_provider_{resolved.stem}_{digest}"
    if module_name in sys.modules:
        return sys.modules[module_name]

    spec = importlib.util.spec_from_file_location(module_name, resolved)
    if spec is None or spec.loader is None:
        raise ProviderLoadError(f"SDK provider file cannot be imported: {resolved}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        del sys.modules[module_name]
        raise
    return module


def _import_provider_module(ref: ProviderRef):
    if ref.is_file:
        return _import_provider_file(Path(ref.source))
    try:
        return import_module(ref.source)
    except ImportError as exc:
        raise ProviderLoadError(f"SDK provider module '{ref.source}' cannot be imported: {exc}") from exc


def _provider_class(module, ref: ProviderRef) -> type[SdkProvider]:
    if ref.class_name is not None:
        cls = getattr(module, ref.class_name, None)
        if cls is None:
            raise ProviderLoadError(f"SDK provider '{ref}': no class '{ref.class_name}' in '{ref.source}'")
        if not isinstance(cls, type) or not issubclass(cls, SdkProvider):
            raise ProviderLoadError(f"SDK provider '{ref}' does not subclass SdkProvider")
        return cls

    # Only classes defined in the file count; imported base or helper providers are ignored.
    defined = [
        obj
        for obj in vars(module).values()
        if isinstance(obj, type) and issubclass(obj, SdkProvider) and obj.__module__ == module.__name__
    ]
    if len(defined) != 1:
        found = ", ".join(sorted(cls.__name__ for cls in defined)) or "none"
        raise ProviderLoadError(
            f"SDK provider file '{ref.source}' must define exactly one SdkProvider (found: {found}); "
            f"name one with '{ref.source}:ClassName'"
        )
    return defined[0]


def load_provider(qualname: str, provider_args: Optional[dict] = None) -> SdkProvider:
    ref = ProviderRef.parse(qualname)
    cls = _provider_class(_import_provider_module(ref), ref)
    logger.debug("Creating SDK provider %s from %s", cls.__name__, ref)
    return cls(provider_args=dict(provider_args or {}))
