"""
Argument template expansion.

Chaincode arguments may embed expressions that are evaluated each time a task
builds its request:

    $rand(N)          random integer in [0, N)
    $pad(N,S)         S repeated N times
    $seq()            next value of a sequence shared by all tasks of a run
    $set(name,value)  emits value and remembers it under name
    ${name}           value remembered by an earlier $set of the same task
    $file(path)       contents of a file

Arguments of an expression are expanded before the expression itself, so
``$pad($rand(3),X)`` and ``$set(k,key_$seq())`` work. Anything that does not
parse, or is nested more than MAX_NESTING levels deep, is copied to the
output unchanged.
"""

from __future__ import annotations

import logging
import random
import threading
from pathlib import Path
from typing import Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

_FUNCTIONS = ("rand", "pad", "seq", "set", "file")
# Expressions nested deeper than this are copied unchanged.
MAX_NESTING = 32


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


class ArgExpander:
    def __init__(self, rng: Optional[RandomSource] = None, *, seq_start: int = 0) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._seq = int(seq_start)
        self._lock = threading.Lock()

    def expand_args(self, args: Iterable[str]) -> list[str]:
        variables: dict[str, str] = {}
        return [self._expand(arg, variables, 0) for arg in args]

    def expand(self, template: str, variables: Optional[dict[str, str]] = None) -> str:
        if variables is None:
            variables = {}
        return self._expand(template, variables, 0)

    def _expand(self, template: str, variables: dict[str, str], depth: int) -> str:
        if depth > MAX_NESTING:
            logger.debug("Expression nested deeper than %d levels left as is: %s", MAX_NESTING, template)
            return template

        out: list[str] = []
        pos = 0
        size = len(template)
        while pos < size:
            marker = template.find("$", pos)
            if marker < 0:
                out.append(template[pos:])
                break
            out.append(template[pos:marker])
            consumed, text = self._expand_at(template, marker, variables, depth)
            out.append(text)
            pos = marker + consumed
        return "".join(out)

    def next_seq(self) -> int:
        with self._lock:
            self._seq += 1
            return self._seq

    def _rand(self, bound: int) -> int:
        with self._lock:
            return int(self._rng.randrange(bound))

    def _expand_at(self, template: str, pos: int, variables: dict[str, str], depth: int) -> tuple[int, str]:
        if template.startswith("${", pos):
            end = template.find("}", pos + 2)
            if end < 0:
                return 1, "$"
            raw = template[pos : end + 1]
            name = template[pos + 2 : end]
            return len(raw), variables.get(name, raw)

        for name in _FUNCTIONS:
            prefix = f"${name}("
            if not template.startswith(prefix, pos):
                continue
            open_idx = pos + len(prefix) - 1
            close_idx = _matching_paren(template, open_idx)
            if close_idx is None:
                return 1, "$"
            raw = template[pos : close_idx + 1]
            value = self._evaluate(name, template[open_idx + 1 : close_idx], variables, depth + 1)
            if value is None:
                logger.debug("Leaving malformed expression as is: %s", raw)
                return len(raw), raw
            return len(raw), value

        return 1, "$"

    def _evaluate(self, name: str, inner: str, variables: dict[str, str], depth: int) -> Optional[str]:
        if name == "rand":
            bound = _parse_count(self._expand(inner, variables, depth))
            if bound is None or bound <= 0:
                return None
            return str(self._rand(bound))

        if name == "pad":
            parts = _split_top_level(inner)
            if parts is None:
                return None
            count = _parse_count(self._expand(parts[0], variables, depth))
            if count is None:
                return None
            return self._expand(parts[1].strip(), variables, depth) * count

        if name == "seq":
            if inner.strip():
                return None
            return str(self.next_seq())

        if name == "set":
            parts = _split_top_level(inner)
            if parts is None:
                return None
            var_name = parts[0].strip()
            if not var_name:
                return None
            value = self._expand(parts[1].strip(), variables, depth)
            variables[var_name] = value
            return value

        if name == "file":
            path = self._expand(inner, variables, depth).strip()
            if not path:
                return None
            try:
                return Path(path).expanduser().read_text(encoding="utf-8").rstrip("\r\n")
            except OSError as exc:
                logger.debug("Unable to read file for $file(%s): %s", path, exc)
                return None

        return None


def _matching_paren(text: str, open_idx: int) -> Optional[int]:
    depth = 0
    for idx in range(open_idx, len(text)):
        ch = text[idx]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return idx
    return None


def _split_top_level(inner: str) -> Optional[tuple[str, str]]:
    depth = 0
    for idx, ch in enumerate(inner):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            return inner[:idx], inner[idx + 1 :]
    return None


def _parse_count(text: str) -> Optional[int]:
    value = text.strip()
    if not value or not value.isascii() or not value.isdigit():
        return None
    return int(value)
