"""Deployment options."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = ["EvaluatorType", "Options"]


class EvaluatorType(Enum):
    """Which evaluator to use."""

    CHUNKED = "chunked"
    STREAMING = "streaming"

    @classmethod
    def parse(cls, value: str) -> "EvaluatorType":
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(
                f"invalid evaluator {value!r}; expected one of: {choices}"
            ) from None

    def __str__(self) -> str:
        return self.value


@dataclass
class Options:
    """Options for a deployment."""

    #: Use binary caches when copying closures to remote hosts.
    substituters_push: bool = True
    #: Use gzip when copying closures to remote hosts.
    gzip: bool = True
    #: Upload keys when deploying.
    upload_keys: bool = True
    #: Reboot the hosts after activation.
    reboot: bool = False
    #: Create GC roots for node profiles under the hive's context directory.
    create_gc_roots: bool = False
    #: Override the per-node setting to build on the nodes themselves.
    force_build_on_target: bool | None = None
    #: Ignore the node-level `deployment.replaceUnknownProfiles` option.
    force_replace_unknown_profiles: bool = False
    #: Which evaluator to use.
    evaluator: EvaluatorType = EvaluatorType.CHUNKED