from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError
from .models import ArgStruct

logger = logging.getLogger(__name__)

SDK_PROVIDER_ENV = "FABCLI_SDK_PROVIDER"

# Keys accepted in the config file besides the CliConfig field names.
_NESTED_SDK_KEY = "sdk"


@dataclass(slots=True)
class CliConfig:
    sdk_provider: Optional[str] = None
    sdk_args: dict = field(default_factory=dict)
    logging_level: str = "ERROR"

    channel_id: str = ""
    chaincode_id: str = ""
    args: str = ""
    peer_urls: list[str] = field(default_factory=list)
    org_ids: list[str] = field(default_factory=list)

    iterations: int = 1
    concurrency: int = 1
    max_attempts: int = 3
    resubmit_delay_ms: int = 1000
    timeout_ms: int = 5000
    verbose: bool = False
    payload_only: bool = False

    print_format: str = "display"
    writer: str = "stdout"
    base64: bool = False
    progress_interval_s: float = 3.0
    progress_file: Optional[str] = None
    seed: Optional[int] = None

    tx_id: str = ""
    event_filter: str = ".*"
    max_events: int = 0
    duration_s: float = 0.0

    def validate(self) -> None:
        if self.iterations < 0:
            raise ConfigError(f"iterations must be >= 0, got {self.iterations}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_attempts < 1:
            raise ConfigError(f"attempts must be >= 1, got {self.max_attempts}")
        if self.resubmit_delay_ms < 0:
            raise ConfigError(f"resubmitdelay must be >= 0, got {self.resubmit_delay_ms}")
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout_ms}")
        if self.print_format not in {"display", "json", "raw"}:
            raise ConfigError(f"unsupported format: {self.print_format}")
        if self.writer not in {"stdout", "stderr", "log"}:
            raise ConfigError(f"unsupported writer: {self.writer}")

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def resubmit_delay_s(self) -> float:
        return self.resubmit_delay_ms / 1000.0


_FIELD_NAMES = {f.name for f in dataclasses.fields(CliConfig)}
_LIST_FIELDS = {"peer_urls", "org_ids"}


def load_config_file(path: Path) -> dict[str, Any]:
    path = Path(path).expanduser()
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"unable to read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in config file {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key == _NESTED_SDK_KEY:
            if not isinstance(value, dict):
                raise ConfigError(f"'{_NESTED_SDK_KEY}' in {path} must be a mapping")
            values["sdk_args"] = dict(value)
        elif key in _FIELD_NAMES:
            values[key] = split_list(value) if key in _LIST_FIELDS else value
        else:
            logger.warning("Ignoring unknown key '%s' in config file %s", key, path)
    return values


def load_config(args: argparse.Namespace) -> CliConfig:
    """
    Build the CLI configuration.

    Precedence, lowest first: defaults, config file, environment, explicit flags.
    """
    values: dict[str, Any] = {}
    config_path = getattr(args, "config", None)
    if config_path:
        values.update(load_config_file(Path(config_path)))

    env_provider = os.getenv(SDK_PROVIDER_ENV)
    if env_provider:
        values["sdk_provider"] = env_provider

    for name in _FIELD_NAMES:
        value = getattr(args, name, None)
        if value is None:
            continue
        values[name] = split_list(value) if name in _LIST_FIELDS else value

    try:
        config = CliConfig(**values)
    except TypeError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    _coerce_types(config)
    config.validate()
    return config


def _coerce_types(config: CliConfig) -> None:
    try:
        for name in ("iterations", "concurrency", "max_attempts", "resubmit_delay_ms", "timeout_ms", "max_events"):
            setattr(config, name, int(getattr(config, name)))
        for name in ("progress_interval_s", "duration_s"):
            setattr(config, name, float(getattr(config, name)))
        if config.seed is not None:
            config.seed = int(config.seed)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric value in configuration: {exc}") from exc
    for name in ("verbose", "payload_only", "base64"):
        setattr(config, name, bool(getattr(config, name)))
    config.print_format = str(config.print_format).lower()
    config.writer = str(config.writer).lower()


def split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = []
        for item in value:
            items.extend(str(item).split(","))
    else:
        raise ConfigError(f"expected a comma-separated string or a list, got {type(value).__name__}")
    return [item.strip() for item in items if item.strip()]


def parse_arg_sets(raw: str) -> list[ArgStruct]:
    """
    Parse the ``--args`` JSON.

    Accepts ``{"Func": "fn", "Args": ["a", "b"]}`` or a non-empty list of such
    objects.
    """
    if not raw or not raw.strip():
        raise ConfigError("chaincode args are required")
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"error unmarshalling JSON arg string: {exc}") from exc

    if isinstance(decoded, dict):
        return [_arg_struct(decoded, 0)]
    if isinstance(decoded, list):
        if not decoded:
            raise ConfigError("chaincode args list must not be empty")
        return [_arg_struct(item, idx) for idx, item in enumerate(decoded)]
    raise ConfigError("chaincode args must be a JSON object or a list of objects")


def _arg_struct(value: Any, idx: int) -> ArgStruct:
    if not isinstance(value, dict):
        raise ConfigError(f"args[{idx}] must be a JSON object")
    func = value.get("Func")
    if not isinstance(func, str) or not func:
        raise ConfigError(f"args[{idx}].Func must be a non-empty string")
    args = value.get("Args", [])
    if args is None:
        args = []
    if not isinstance(args, list) or not all(isinstance(arg, str) for arg in args):
        raise ConfigError(f"args[{idx}].Args must be a list of strings")
    return ArgStruct(func=func, args=list(args))
