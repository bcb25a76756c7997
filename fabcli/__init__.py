"""fabcli runs chaincode invocations, queries and event listeners against a permissioned blockchain network."""

from importlib import metadata as _metadata

from .argexpr import ArgExpander
from .coordinator import InvocationConfig, InvocationCoordinator
from .errors import ConfigError, ErrorCode, InvocationAbortedError, InvokeError, PoolStoppedError
from .models import ArgStruct, Summary, TaskState
from .progress import (
    FileProgressPublisher,
    NoopProgressPublisher,
    ProgressPublisher,
    ProgressSnapshot,
    snapshot_from_dict,
    snapshot_to_dict,
)
from .sdk import ChannelClient, EventService, Peer, ProviderLoadError, SdkProvider, load_provider

__all__ = [
    "__version__",
    "ArgExpander",
    "ArgStruct",
    "ChannelClient",
    "ConfigError",
    "ErrorCode",
    "EventService",
    "FileProgressPublisher",
    "InvocationAbortedError",
    "InvocationConfig",
    "InvocationCoordinator",
    "InvokeError",
    "NoopProgressPublisher",
    "Peer",
    "PoolStoppedError",
    "ProgressPublisher",
    "ProgressSnapshot",
    "ProviderLoadError",
    "SdkProvider",
    "Summary",
    "TaskState",
    "load_provider",
    "snapshot_from_dict",
    "snapshot_to_dict",
]

try:
    __version__ = _metadata.version(__name__)
except _metadata.PackageNotFoundError:  # pragma: no cover - during editable installs pre-build
    __version__ = "0.0.0"
