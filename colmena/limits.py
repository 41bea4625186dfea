"""Parallelism and evaluation limits."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = ["ParallelismLimit", "LimitMode", "EvaluationNodeLimit"]

#: RAM reserved for the system, in MB.
EVAL_RESERVE_MB = 1024

#: Estimated RAM needed to evaluate one host, in MB.
EVAL_PER_HOST_MB = 512

_FALLBACK_LIMIT = 10
_NUMBER = re.compile(r"\+?[0-9]+")
_PARSE_ERROR = "The value must be a valid number or `auto`"


class ParallelismLimit:
    """Semaphores bounding concurrent evaluation and apply work."""

    def __init__(self, evaluation: int = 1, apply: int = 10) -> None:
        self.evaluation = asyncio.Semaphore(evaluation)
        self.apply = asyncio.Semaphore(apply)

    def set_apply_limit(self, limit: int) -> None:
        """Replace the concurrent apply limit."""
        self.apply = asyncio.Semaphore(limit)


class LimitMode(Enum):
    HEURISTIC = "heuristic"
    MANUAL = "manual"
    UNLIMITED = "unlimited"


@dataclass(frozen=True)
class EvaluationNodeLimit:
    """Limit of the number of nodes in each evaluation process.

    Evaluation memory grows with the number of nodes evaluated together,
    so evaluation is split into chunks sized by a memory heuristic, by a
    supplied number, or not at all.
    """

    mode: LimitMode = LimitMode.HEURISTIC
    nodes: int = 0

    def __post_init__(self) -> None:
        if self.mode is LimitMode.MANUAL and self.nodes < 1:
            raise ValueError("A manual evaluation node limit must be at least 1")

    @classmethod
    def heuristic(cls) -> "EvaluationNodeLimit":
        return cls(LimitMode.HEURISTIC)

    @classmethod
    def manual(cls, nodes: int) -> "EvaluationNodeLimit":
        return cls(LimitMode.MANUAL, nodes)

    @classmethod
    def unlimited(cls) -> "EvaluationNodeLimit":
        return cls(LimitMode.UNLIMITED)

    @classmethod
    def parse(cls, value: str) -> "EvaluationNodeLimit":
        """Parse `auto`, `0` (no limit) or a positive number of nodes."""
        if value == "auto":
            return cls.heuristic()
        if not _NUMBER.fullmatch(value):
            raise ValueError(_PARSE_ERROR)
        nodes = int(value)
        if nodes == 0:
            return cls.unlimited()
        return cls.manual(nodes)

    def __str__(self) -> str:
        if self.mode is LimitMode.HEURISTIC:
            return "auto"
        if self.mode is LimitMode.UNLIMITED:
            return "0"
        return str(self.nodes)

    def get_limit(self) -> int | None:
        """Return the maximum number of hosts per evaluation, or None for no limit."""
        if self.mode is LimitMode.MANUAL:
            return self.nodes
        if self.mode is LimitMode.UNLIMITED:
            return None

        available_kb = _available_memory_kb()
        if available_kb is None:
            return _FALLBACK_LIMIT

        mb = available_kb // 1024
        if mb >= EVAL_RESERVE_MB:
            mb -= EVAL_RESERVE_MB
        return max(mb // EVAL_PER_HOST_MB, 1)


def _available_memory_kb() -> int | None:
    try:
        text = Path("/proc/meminfo").read_text()
    except OSError:
        return None
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        if key == "MemAvailable":
            fields = rest.split()
            if fields and fields[0].isdigit():
                return int(fields[0])
    return None